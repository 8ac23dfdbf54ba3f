"""Persistence of per-project custom rules in the user rule file."""

import logging
from pathlib import Path
from typing import Optional

import yaml

from diffwarden.analysis.rule_registry import Rule, RuleLoader, RuleScope
from diffwarden.errors import ConfigError, RuleLoadError
from diffwarden.git.models import Language

logger = logging.getLogger(__name__)


class CustomRuleStore:
    """
    Reads and rewrites the ``projects:`` section of a user rule file.

    Layout::

        projects:
          <name>:
            path: /abs/path/to/repo
            rules:
              <language>:
                - id: ...
    """

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()

    def load(self) -> dict:
        """
        Read the whole file.

        Raises:
            ConfigError: If the file is not valid YAML or not a mapping.
        """
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self.path}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"{self.path} must be a mapping to hold project rules")
        return data

    def save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False)
        logger.debug(f"Wrote {self.path}")

    @staticmethod
    def _find_project(projects: dict, name: Optional[str], project_path: Path) -> Optional[str]:
        if name is not None:
            return name if name in projects else None
        resolved = project_path.resolve()
        for key, project in projects.items():
            if not isinstance(project, dict) or not project.get("path"):
                continue
            if Path(project["path"]).expanduser().resolve() == resolved:
                return key
        return None

    def add_project_rule(
        self,
        project_path: Path | str,
        language: Language,
        raw_rule: dict,
        project_name: Optional[str] = None,
    ) -> Rule:
        """
        Add a rule to a project, replacing an existing rule with the same id.

        Args:
            project_path: Repository root the rule applies to.
            language: Language section the rule is stored under.
            raw_rule: Rule mapping as it will be written.
            project_name: Project key; defaults to the project already
                registered for ``project_path`` or the directory name.

        Returns:
            The validated rule.

        Raises:
            RuleLoadError: If the rule would load disabled or not at all. Nothing
                is written in that case.
            ConfigError: If the existing file cannot be read.
        """
        project_path = Path(project_path)
        loader = RuleLoader()
        rule = loader.build_rule(raw_rule, RuleScope.PROJECT, str(self.path), default_language=language)
        if not rule.is_usable:
            # The loader has already logged the schema problems
            raise RuleLoadError(str(self.path), "rule would load disabled", rule_id=rule.id)

        data = self.load()
        projects = data.setdefault("projects", {})
        if not isinstance(projects, dict):
            raise ConfigError(f"{self.path}: 'projects' must be a mapping")

        key = self._find_project(projects, project_name, project_path)
        if key is None:
            key = project_name or project_path.resolve().name
            projects[key] = {"path": str(project_path.resolve()), "rules": {}}
        project = projects[key]
        if not isinstance(project, dict):
            raise ConfigError(f"{self.path}: project {key!r} must be a mapping")
        if not isinstance(project.get("rules"), dict):
            project["rules"] = {}

        language_rules = [
            existing for existing in project["rules"].get(language.value) or []
            if not (isinstance(existing, dict) and str(existing.get("id")) == rule.id)
        ]
        language_rules.append(raw_rule)
        project["rules"][language.value] = language_rules

        self.save(data)
        logger.info(f"Added rule {rule.id} ({language.value}) to project {key}")
        return rule

    def remove_project_rule(
        self,
        project_path: Path | str,
        rule_id: str,
        project_name: Optional[str] = None,
    ) -> bool:
        """
        Remove a rule from every language section of a project.

        Returns:
            True if a rule was removed. The file is only rewritten then.
        """
        data = self.load()
        projects = data.get("projects")
        if not isinstance(projects, dict):
            return False
        key = self._find_project(projects, project_name, Path(project_path))
        project = projects.get(key) if key is not None else None
        if not isinstance(project, dict) or not isinstance(project.get("rules"), dict):
            return False

        found = False
        for language, rules in project["rules"].items():
            rules = rules or []
            kept = [
                rule for rule in rules
                if not (isinstance(rule, dict) and str(rule.get("id")) == rule_id)
            ]
            if len(kept) != len(rules):
                found = True
                project["rules"][language] = kept

        if found:
            self.save(data)
            logger.info(f"Removed rule {rule_id} from project {key}")
        return found
