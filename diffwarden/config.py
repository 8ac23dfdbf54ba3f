"""Project configuration loaded from .diffwarden.yml and the environment."""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from diffwarden.errors import ConfigError
from diffwarden.git.models import Language, Severity

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".diffwarden.yml"
DEFAULT_USER_RULE_FILE = Path("~/.config/diffwarden/rules.yml")


@dataclass
class FixerSettings:
    """Settings for the AI fixer backend."""
    model: str = "codellama:7b"
    host: str = "http://localhost:11434"
    timeout: float = 30.0
    confidence_threshold: float = 0.7


@dataclass
class ProjectConfig:
    """Project-level review settings."""
    root: Path = field(default_factory=Path.cwd)
    ignore_paths: list[str] = field(default_factory=list)
    severity_thresholds: dict[Language, Severity] = field(default_factory=dict)
    min_severity: Severity = Severity.WARNING
    rule_files: list[Path] = field(default_factory=list)
    user_rule_file: Optional[Path] = DEFAULT_USER_RULE_FILE
    max_workers: int = 4
    fixer: FixerSettings = field(default_factory=FixerSettings)

    @classmethod
    def load(cls, root: Path | str = ".", path: Path | str | None = None) -> "ProjectConfig":
        """
        Load configuration for a repository.

        Args:
            root: Repository root; relative rule file paths resolve against it.
            path: Explicit config file. Defaults to ``<root>/.diffwarden.yml``,
                which may be absent.

        Returns:
            ProjectConfig with environment overrides applied.

        Raises:
            ConfigError: If the file exists but is not valid configuration.
        """
        root = Path(root)
        config_path = Path(path) if path else root / CONFIG_FILENAME

        data: dict = {}
        if config_path.exists():
            try:
                with open(config_path, encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"{config_path} must contain a mapping")
            logger.info(f"Loaded config from {config_path}")
        elif path:
            raise ConfigError(f"Config file not found: {config_path}")
        else:
            logger.debug(f"No {CONFIG_FILENAME} in {root}, using defaults")

        config = cls.from_dict(data, root=root)
        config.apply_env(os.environ)
        return config

    @classmethod
    def from_dict(cls, data: dict, root: Path | str = ".") -> "ProjectConfig":
        root = Path(root)
        config = cls(root=root)

        ignore = data.get("ignore_paths", [])
        if not isinstance(ignore, list):
            raise ConfigError("ignore_paths must be a list of globs")
        config.ignore_paths = [str(p) for p in ignore]

        thresholds = data.get("severity_thresholds", {}) or {}
        if not isinstance(thresholds, dict):
            raise ConfigError("severity_thresholds must map languages to severities")
        for language, severity in thresholds.items():
            try:
                config.severity_thresholds[Language(str(language).lower())] = Severity(str(severity).lower())
            except ValueError as e:
                raise ConfigError(f"Invalid severity threshold {language}: {severity}") from e

        if "min_severity" in data:
            try:
                config.min_severity = Severity(str(data["min_severity"]).lower())
            except ValueError as e:
                raise ConfigError(f"Invalid min_severity: {data['min_severity']}") from e

        config.rule_files = [
            p if p.is_absolute() else root / p
            for p in (Path(str(entry)).expanduser() for entry in data.get("rule_files", []) or [])
        ]
        if "user_rule_file" in data:
            value = data["user_rule_file"]
            config.user_rule_file = Path(str(value)).expanduser() if value else None

        try:
            config.max_workers = max(1, int(data.get("max_workers", config.max_workers)))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid max_workers: {data.get('max_workers')}") from e

        fixer = data.get("fixer", {}) or {}
        if not isinstance(fixer, dict):
            raise ConfigError("fixer must be a mapping")
        try:
            config.fixer = FixerSettings(
                model=str(fixer.get("model", FixerSettings.model)),
                host=str(fixer.get("host", FixerSettings.host)),
                timeout=float(fixer.get("timeout", FixerSettings.timeout)),
                confidence_threshold=float(fixer.get("confidence_threshold", FixerSettings.confidence_threshold)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid fixer settings: {e}") from e
        return config

    def apply_env(self, environ) -> None:
        """Environment variables win over file settings."""
        if environ.get("OLLAMA_MODEL"):
            self.fixer.model = environ["OLLAMA_MODEL"]
        if environ.get("OLLAMA_HOST"):
            self.fixer.host = environ["OLLAMA_HOST"]
        if environ.get("DIFFWARDEN_FIX_TIMEOUT"):
            try:
                self.fixer.timeout = float(environ["DIFFWARDEN_FIX_TIMEOUT"])
            except ValueError:
                logger.warning(f"Ignoring invalid DIFFWARDEN_FIX_TIMEOUT={environ['DIFFWARDEN_FIX_TIMEOUT']!r}")
