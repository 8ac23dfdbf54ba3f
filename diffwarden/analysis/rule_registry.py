"""Rule definitions and the immutable, language-indexed rule registry."""

import re
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence, Union

import yaml

from diffwarden.analysis.custom_detectors import CUSTOM_DETECTORS
from diffwarden.errors import RegexCompileError, RuleLoadError
from diffwarden.git.models import Language, Severity

logger = logging.getLogger(__name__)

BUILTIN_RULES_DIR = Path(__file__).resolve().parent.parent / "rules" / "builtin"


class RuleScope(str, Enum):
    GLOBAL = "global"
    PROJECT = "project"


@dataclass(frozen=True)
class RegexDetection:
    pattern: str
    regex: Optional[re.Pattern] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class RatioDetection:
    pattern: str
    threshold: float
    regex: Optional[re.Pattern] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class LineCountDetection:
    """Opening construct plus the occurrences counted inside its region."""
    pattern: str
    threshold: int
    count_pattern: Optional[str] = None
    regex: Optional[re.Pattern] = field(default=None, compare=False, repr=False)
    count_regex: Optional[re.Pattern] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class CustomDetection:
    name: str


Detection = Union[RegexDetection, RatioDetection, LineCountDetection, CustomDetection]

DETECTION_TYPES = {
    RegexDetection: "regex",
    RatioDetection: "ratio",
    LineCountDetection: "line_count",
    CustomDetection: "custom",
}


@dataclass(frozen=True)
class RuleExample:
    bad: str
    good: str
    explanation: str = ""


@dataclass(frozen=True)
class Rule:
    """An anti-pattern rule for one language."""
    id: str
    name: str
    language: Language
    severity: Severity
    description: str
    detection: Optional[Detection]
    fix_suggestion: str = ""
    ai_fixable: bool = False
    enabled: bool = True
    scope: RuleScope = RuleScope.GLOBAL
    source_url: str = ""
    examples: tuple[RuleExample, ...] = ()
    tags: tuple[str, ...] = ()

    @property
    def detection_type(self) -> str:
        if self.detection is None:
            return "invalid"
        return DETECTION_TYPES[type(self.detection)]

    @property
    def is_usable(self) -> bool:
        return self.enabled and self.detection is not None

    def matches_keyword(self, keyword: str) -> bool:
        needle = keyword.lower()
        haystacks = [self.id, self.id.replace("_", " "), self.name, self.description, *self.tags]
        return any(needle in text.lower() for text in haystacks)

    def to_dict(self) -> dict:
        detection: dict = {"type": self.detection_type}
        if isinstance(self.detection, CustomDetection):
            detection["name"] = self.detection.name
        elif self.detection is not None:
            detection["pattern"] = self.detection.pattern
            if isinstance(self.detection, (RatioDetection, LineCountDetection)):
                detection["threshold"] = self.detection.threshold
            if isinstance(self.detection, LineCountDetection) and self.detection.count_pattern:
                detection["count_pattern"] = self.detection.count_pattern
        return {
            "id": self.id,
            "name": self.name,
            "language": self.language.value,
            "severity": self.severity.value,
            "description": self.description,
            "detection_method": detection,
            "fix_suggestion": self.fix_suggestion,
            "ai_fixable": self.ai_fixable,
            "enabled": self.enabled,
            "scope": self.scope.value,
            "source_url": self.source_url,
            "examples": [
                {"bad": e.bad, "good": e.good, "explanation": e.explanation} for e in self.examples
            ],
            "tags": list(self.tags),
        }


class RuleLoader:
    """Parses rule files into Rule objects, collecting load warnings."""

    def __init__(self, custom_detectors: Optional[Iterable[str]] = None):
        self.custom_detectors = set(CUSTOM_DETECTORS if custom_detectors is None else custom_detectors)
        self.warnings: list[str] = []

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def load_file(self, path: Path | str, scope: RuleScope,
                  project_root: Optional[Path] = None) -> list[Rule]:
        """
        Load rules from a YAML file.

        Accepted layouts are a list of rules, a mapping with a ``rules`` list,
        a mapping of language name to rule list, and the per-project layout
        ``projects: {name: {path, rules: {language: [...]}}}`` in which only
        the project whose path is ``project_root`` applies.

        Args:
            path: Rule file path.
            scope: Scope assigned to every rule in the file.
            project_root: Repository root used to select per-project rules.

        Returns:
            Parsed rules in file order. Unreadable files yield no rules.
        """
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            self.warn(f"Could not read rule file {path}: {e}")
            return []
        except yaml.YAMLError as e:
            self.warn(f"Invalid YAML in rule file {path}: {e}")
            return []

        rules = []
        for raw, language, entry_scope in self._entries(data, str(path), scope, project_root):
            try:
                rules.append(self.build_rule(raw, entry_scope, str(path), default_language=language))
            except RuleLoadError as e:
                self.warn(f"Skipping rule: {e}")

        logger.info(f"Loaded {len(rules)} rules from {path}")
        return rules

    def _entries(self, data, source: str, scope: RuleScope, project_root: Optional[Path]):
        if data is None:
            return
        if isinstance(data, list):
            for raw in data:
                yield raw, None, scope
            return
        if not isinstance(data, dict):
            self.warn(f"{source}: expected a list or mapping of rules")
            return

        if "rules" in data:
            yield from self._entries(data["rules"], source, scope, project_root)
        if "projects" in data:
            yield from self._project_entries(data["projects"], source, project_root)

        for key, value in data.items():
            if key in ("rules", "projects"):
                continue
            try:
                language = Language(str(key).lower())
            except ValueError:
                self.warn(f"{source}: ignoring unknown section {key!r}")
                continue
            if not isinstance(value, list):
                self.warn(f"{source}: section {key!r} is not a list of rules")
                continue
            for raw in value:
                yield raw, language, scope

    def _project_entries(self, projects, source: str, project_root: Optional[Path]):
        if not isinstance(projects, dict) or project_root is None:
            return
        for name, project in projects.items():
            if not isinstance(project, dict) or not project.get("path"):
                continue
            if Path(project["path"]).expanduser().resolve() != Path(project_root).resolve():
                continue
            logger.debug(f"Applying rules for project {name} from {source}")
            yield from self._entries(project.get("rules") or {}, source, RuleScope.PROJECT, project_root)

    def build_rule(self, raw, scope: RuleScope, source: str,
                   default_language: Optional[Language] = None) -> Rule:
        """
        Build one Rule from its raw mapping.

        Raises:
            RuleLoadError: If the entry has no id or no known language. Any
                other schema problem produces a disabled rule and a warning.
        """
        if not isinstance(raw, dict):
            raise RuleLoadError(source, f"expected a mapping, got {type(raw).__name__}")

        rule_id = str(raw.get("id") or "").strip()
        if not rule_id:
            raise RuleLoadError(source, "rule has no id")

        language = default_language
        if raw.get("language") is not None:
            try:
                language = Language(str(raw["language"]).lower())
            except ValueError:
                raise RuleLoadError(source, f"unknown language {raw['language']!r}", rule_id=rule_id)
        if language is None:
            raise RuleLoadError(source, "rule has no language", rule_id=rule_id)

        problems: list[RuleLoadError] = []

        try:
            severity = Severity(str(raw.get("severity", "")).lower())
        except ValueError:
            problems.append(RuleLoadError(source, f"unknown severity {raw.get('severity')!r}", rule_id))
            severity = Severity.WARNING

        detection = None
        try:
            detection = self._build_detection(raw, source, rule_id)
        except RuleLoadError as e:
            problems.append(e)

        enabled = raw.get("enabled", True)
        if not isinstance(enabled, bool):
            problems.append(RuleLoadError(source, f"'enabled' must be true or false, got {enabled!r}", rule_id))

        for problem in problems:
            self.warn(f"Disabling rule: {problem}")

        examples = []
        for example in raw.get("examples") or []:
            if isinstance(example, dict):
                examples.append(RuleExample(
                    bad=str(example.get("bad", "")),
                    good=str(example.get("good", "")),
                    explanation=str(example.get("explanation", "")),
                ))

        ai_fixable = raw.get("ai_fixable", raw.get("claude_code_fixable", False))
        return Rule(
            id=rule_id,
            name=str(raw.get("name") or rule_id),
            language=language,
            severity=severity,
            description=str(raw.get("description", "")),
            detection=detection,
            fix_suggestion=str(raw.get("fix_suggestion", raw.get("fix", ""))),
            ai_fixable=bool(ai_fixable),
            enabled=enabled is True and not problems,
            scope=scope,
            source_url=str(raw.get("source_url", "")),
            examples=tuple(examples),
            tags=tuple(str(tag) for tag in raw.get("tags") or []),
        )

    def _build_detection(self, raw: dict, source: str, rule_id: str) -> Detection:
        method = raw.get("detection_method")
        if method is None and "pattern" in raw:
            # Shorthand used by hand-written custom rule files
            method = {"type": "regex", "pattern": raw["pattern"]}
        if not isinstance(method, dict):
            raise RuleLoadError(source, "missing detection_method", rule_id)

        kind = str(method.get("type", "")).lower()
        if kind == "custom":
            name = str(method.get("name", "")).strip()
            if name not in self.custom_detectors:
                raise RuleLoadError(source, f"unknown custom detector {name!r}", rule_id)
            return CustomDetection(name=name)

        pattern = method.get("pattern")
        if not isinstance(pattern, str) or not pattern:
            raise RuleLoadError(source, f"{kind or 'detection'} requires a pattern", rule_id)
        regex = self._compile(pattern, source, rule_id)

        if kind == "regex":
            return RegexDetection(pattern=pattern, regex=regex)
        if kind == "ratio":
            threshold = self._threshold(method, float, source, rule_id)
            if not 0.0 <= threshold <= 1.0:
                raise RuleLoadError(source, f"ratio threshold {threshold} is outside [0, 1]", rule_id)
            return RatioDetection(pattern=pattern, threshold=threshold, regex=regex)
        if kind == "line_count":
            threshold = self._threshold(method, int, source, rule_id)
            count_pattern = method.get("count_pattern")
            count_regex = self._compile(count_pattern, source, rule_id) if count_pattern else None
            return LineCountDetection(
                pattern=pattern, threshold=threshold, count_pattern=count_pattern,
                regex=regex, count_regex=count_regex,
            )
        raise RuleLoadError(source, f"unknown detection type {kind!r}", rule_id)

    @staticmethod
    def _compile(pattern: str, source: str, rule_id: str) -> re.Pattern:
        try:
            return re.compile(pattern)
        except re.error as e:
            raise RegexCompileError(source, rule_id, pattern, str(e)) from e

    @staticmethod
    def _threshold(method: dict, kind: type, source: str, rule_id: str):
        try:
            return kind(method["threshold"])
        except (KeyError, TypeError, ValueError):
            raise RuleLoadError(source, f"invalid threshold {method.get('threshold')!r}", rule_id)


class RuleRegistry:
    """Read-only, language-indexed rule set built once per run."""

    def __init__(self, rules_by_language: Mapping[Language, Sequence[Rule]],
                 warnings: Sequence[str] = ()):
        self._rules = MappingProxyType({
            language: tuple(rules) for language, rules in rules_by_language.items()
        })
        self._warnings = tuple(warnings)

    @classmethod
    def from_rules(cls, rules: Iterable[Rule], warnings: Sequence[str] = ()) -> "RuleRegistry":
        """Merge rules in order; a later rule replaces an earlier one with the same id and language."""
        merged: dict[Language, list[Rule]] = {}
        _merge_into(merged, rules)
        return cls(merged, warnings)

    @classmethod
    def load(
        cls,
        user_rule_file: Path | str | None = None,
        project_rule_files: Sequence[Path | str] = (),
        project_root: Optional[Path] = None,
        builtin_dir: Path | str = BUILTIN_RULES_DIR,
    ) -> "RuleRegistry":
        """
        Load built-in rules, then user rules, then project rules.

        Args:
            user_rule_file: Optional user-wide rule file. Missing files are ignored.
            project_rule_files: Project rule files applied in order.
            project_root: Repository root for per-project sections of the user file.
            builtin_dir: Directory holding the built-in ``<language>.yml`` files.

        Returns:
            The merged registry.
        """
        loader = RuleLoader()
        merged: dict[Language, list[Rule]] = {}

        for path in sorted(Path(builtin_dir).glob("*.yml")):
            _merge_into(merged, loader.load_file(path, RuleScope.GLOBAL))

        if user_rule_file and Path(user_rule_file).expanduser().exists():
            _merge_into(merged, loader.load_file(
                Path(user_rule_file).expanduser(), RuleScope.GLOBAL, project_root=project_root,
            ))

        for path in project_rule_files:
            if not Path(path).exists():
                loader.warn(f"Project rule file not found: {path}")
                continue
            _merge_into(merged, loader.load_file(path, RuleScope.PROJECT, project_root=project_root))

        registry = cls(merged, loader.warnings)
        logger.info(
            f"Rule registry ready: {registry.usable_rule_count()} usable rules "
            f"across {len(registry.languages())} languages"
        )
        return registry

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._warnings

    def languages(self) -> list[Language]:
        return [language for language in Language if self._rules.get(language)]

    def rules_for(self, language: Language) -> tuple[Rule, ...]:
        """All rules for a language in merge order, disabled ones included."""
        return self._rules.get(language, ())

    def enabled_rules_for(self, language: Language) -> tuple[Rule, ...]:
        return tuple(rule for rule in self.rules_for(language) if rule.is_usable)

    def all_rules(self) -> list[Rule]:
        return [rule for language in self.languages() for rule in self._rules[language]]

    def find(self, rule_id: str, language: Optional[Language] = None) -> Optional[Rule]:
        """Look up a rule by id, or None if no rule has that id."""
        languages = [language] if language else self.languages()
        for lang in languages:
            for rule in self.rules_for(lang):
                if rule.id == rule_id:
                    return rule
        return None

    def search(self, keyword: str) -> list[Rule]:
        """Rules whose id, name, description or tags contain the keyword, case-insensitively."""
        return [rule for rule in self.all_rules() if rule.matches_keyword(keyword)]

    def usable_rule_count(self) -> int:
        return sum(len(self.enabled_rules_for(language)) for language in self.languages())

    def is_empty(self) -> bool:
        return self.usable_rule_count() == 0


def _merge_into(merged: dict[Language, list[Rule]], rules: Iterable[Rule]) -> None:
    for rule in rules:
        bucket = merged.setdefault(rule.language, [])
        for idx, existing in enumerate(bucket):
            if existing.id == rule.id:
                bucket[idx] = rule
                break
        else:
            bucket.append(rule)
