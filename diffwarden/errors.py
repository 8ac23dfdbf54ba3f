"""Exception types raised across the review pipeline."""

from typing import Optional


class DiffwardenError(Exception):
    """Base class for all diffwarden errors."""


class DiffParseError(DiffwardenError):
    """A file section of a diff could not be parsed."""

    def __init__(self, file_path: str, message: str):
        self.file_path = file_path
        self.message = message
        super().__init__(f"{file_path or '<unknown>'}: {message}")


class RuleLoadError(DiffwardenError):
    """A rule definition does not follow the rule schema."""

    def __init__(self, source: str, message: str, rule_id: Optional[str] = None):
        self.source = source
        self.rule_id = rule_id
        self.message = message
        prefix = f"{source} [{rule_id}]" if rule_id else source
        super().__init__(f"{prefix}: {message}")


class RegexCompileError(RuleLoadError):
    """A rule pattern is not a valid regular expression."""

    def __init__(self, source: str, rule_id: str, pattern: str, reason: str):
        self.pattern = pattern
        super().__init__(source, f"invalid pattern {pattern!r}: {reason}", rule_id=rule_id)


class EmptyRuleRegistryError(DiffwardenError):
    """No enabled rule is left for any language."""


class ExternalToolError(DiffwardenError):
    """The external fixer failed to produce a result."""


class ExternalToolTimeout(ExternalToolError):
    """The external fixer did not answer in time."""


class FixValidationError(DiffwardenError):
    """A proposed fix failed structural validation."""


class GitCommandError(DiffwardenError):
    """A git command exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"{' '.join(command)} exited with {returncode}{detail}")


class ConfigError(DiffwardenError):
    """The project configuration file is malformed."""
