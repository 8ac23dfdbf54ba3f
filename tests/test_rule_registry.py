"""Tests for rule loading and the rule registry."""

import textwrap

import pytest

from diffwarden.analysis.rule_registry import (
    CustomDetection,
    LineCountDetection,
    RatioDetection,
    RegexDetection,
    RuleLoader,
    RuleRegistry,
    RuleScope,
)
from diffwarden.errors import RuleLoadError
from diffwarden.git.models import Language, Severity


def write(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(textwrap.dedent(content))
    return path


@pytest.fixture
def builtin_dir(tmp_path):
    rules_dir = tmp_path / "builtin"
    rules_dir.mkdir()
    write(rules_dir, "elixir.yml", """
        - id: dynamic_atom_creation
          name: Dynamic Atom Creation
          language: elixir
          severity: critical
          description: Atoms are never garbage collected
          detection_method:
            type: regex
            pattern: 'String\\.to_atom\\s*\\('
          fix_suggestion: Use String.to_existing_atom
          ai_fixable: true
          tags: [security]

        - id: non_assertive_map_access
          name: Non-Assertive Map Access
          language: elixir
          severity: warning
          description: Map.get hides missing keys
          detection_method:
            type: regex
            pattern: 'Map\\.get\\('
    """)
    write(rules_dir, "python.yml", """
        - id: bare_except
          name: Bare Except
          language: python
          severity: critical
          description: Catches everything
          detection_method:
            type: regex
            pattern: '^\\s*except\\s*:'
    """)
    return rules_dir


class TestBuiltinCorpus:
    """Tests for the rule files shipped with the package."""

    def test_loads_without_warnings(self):
        """Every shipped rule parses, compiles and names a known detector."""
        registry = RuleRegistry.load()

        assert registry.warnings == ()
        assert set(registry.languages()) == set(Language)
        assert not registry.is_empty()

    def test_known_rules_present(self):
        """A few representative rules are indexed under their language."""
        registry = RuleRegistry.load()

        atom = registry.find("dynamic_atom_creation")
        assert atom.language == Language.ELIXIR
        assert atom.severity == Severity.CRITICAL
        assert atom.ai_fixable
        assert atom.scope == RuleScope.GLOBAL
        assert isinstance(registry.find("no_where_clause").detection, CustomDetection)
        assert isinstance(registry.find("comments_overuse").detection, RatioDetection)
        assert isinstance(registry.find("complex_else_in_with").detection, LineCountDetection)


class TestRuleLoader:
    """Tests for parsing rule entries."""

    def test_builds_regex_rule(self):
        """A complete entry becomes an enabled regex rule."""
        loader = RuleLoader()
        rule = loader.build_rule({
            "id": "unwrap_in_production",
            "language": "rust",
            "severity": "critical",
            "description": "unwrap panics",
            "detection_method": {"type": "regex", "pattern": r"\.unwrap\(\)"},
        }, RuleScope.GLOBAL, "test")

        assert rule.is_usable
        assert isinstance(rule.detection, RegexDetection)
        assert rule.detection.regex.search("x.unwrap()")
        assert rule.name == "unwrap_in_production"

    def test_invalid_regex_disables_rule(self):
        """An uncompilable pattern keeps the rule but disables it with a warning."""
        loader = RuleLoader()
        rule = loader.build_rule({
            "id": "broken",
            "language": "python",
            "severity": "major",
            "detection_method": {"type": "regex", "pattern": "(unclosed"},
        }, RuleScope.GLOBAL, "test")

        assert not rule.enabled
        assert not rule.is_usable
        assert rule.detection_type == "invalid"
        assert any("broken" in w for w in loader.warnings)

    def test_unknown_severity_disables_rule(self):
        """An unknown severity is a schema problem, not a crash."""
        loader = RuleLoader()
        rule = loader.build_rule({
            "id": "odd",
            "language": "python",
            "severity": "catastrophic",
            "pattern": "x",
        }, RuleScope.GLOBAL, "test")

        assert not rule.enabled
        assert len(loader.warnings) == 1

    def test_non_boolean_enabled_disables_rule(self):
        """A quoted 'false' is not silently read as enabled."""
        loader = RuleLoader()
        rule = loader.build_rule({
            "id": "quoted",
            "language": "python",
            "severity": "warning",
            "enabled": "false",
            "pattern": "x",
        }, RuleScope.GLOBAL, "test")

        assert not rule.enabled
        assert rule.detection is not None
        assert len(loader.warnings) == 1
        assert "enabled" in loader.warnings[0]

        explicit = loader.build_rule({
            "id": "explicit",
            "language": "python",
            "severity": "warning",
            "enabled": True,
            "pattern": "x",
        }, RuleScope.GLOBAL, "test")
        assert explicit.enabled
        assert len(loader.warnings) == 1

    def test_missing_id_raises(self):
        """Entries without an id cannot be identified and are rejected."""
        loader = RuleLoader()

        with pytest.raises(RuleLoadError):
            loader.build_rule({"language": "python", "pattern": "x"}, RuleScope.GLOBAL, "test")

    def test_unknown_language_raises(self):
        """Entries for languages outside the corpus are rejected."""
        loader = RuleLoader()

        with pytest.raises(RuleLoadError):
            loader.build_rule({"id": "x", "language": "cobol", "pattern": "x"}, RuleScope.GLOBAL, "test")

    def test_unknown_custom_detector_disables_rule(self):
        """Custom rules must name a registered detector."""
        loader = RuleLoader()
        rule = loader.build_rule({
            "id": "mystery",
            "language": "sql",
            "severity": "major",
            "detection_method": {"type": "custom", "name": "does_not_exist"},
        }, RuleScope.GLOBAL, "test")

        assert not rule.is_usable

    def test_ratio_threshold_must_be_fraction(self):
        """Ratio thresholds outside [0, 1] disable the rule."""
        loader = RuleLoader()
        rule = loader.build_rule({
            "id": "too_many_comments",
            "language": "elixir",
            "severity": "warning",
            "detection_method": {"type": "ratio", "pattern": "^#", "threshold": 1.5},
        }, RuleScope.GLOBAL, "test")

        assert not rule.is_usable

    def test_line_count_with_count_pattern(self):
        """line_count rules carry an integer threshold and optional count pattern."""
        loader = RuleLoader()
        rule = loader.build_rule({
            "id": "big_struct",
            "language": "elixir",
            "severity": "major",
            "detection_method": {
                "type": "line_count",
                "pattern": r"defstruct\s*\[",
                "count_pattern": r":\w+",
                "threshold": "32",
            },
        }, RuleScope.GLOBAL, "test")

        assert rule.detection.threshold == 32
        assert rule.detection.count_regex.search(":name")

    def test_shorthand_custom_rule(self):
        """Hand-written rules may use pattern, fix and claude_code_fixable."""
        loader = RuleLoader()
        rule = loader.build_rule({
            "id": "no_io_inspect",
            "description": "Remove debugging output",
            "pattern": r"IO\.inspect",
            "severity": "warning",
            "fix": "Delete the IO.inspect call",
            "claude_code_fixable": True,
        }, RuleScope.PROJECT, "custom", default_language=Language.ELIXIR)

        assert rule.language == Language.ELIXIR
        assert isinstance(rule.detection, RegexDetection)
        assert rule.fix_suggestion == "Delete the IO.inspect call"
        assert rule.ai_fixable
        assert rule.scope == RuleScope.PROJECT

    def test_language_sections_layout(self, tmp_path):
        """A mapping of language to rules assigns the language to each entry."""
        path = write(tmp_path, "rules.yml", """
            python:
              - id: no_print
                severity: warning
                pattern: 'print\\('
            rust:
              - id: no_dbg
                severity: warning
                pattern: 'dbg!'
        """)
        loader = RuleLoader()

        rules = loader.load_file(path, RuleScope.GLOBAL)

        assert [(r.id, r.language) for r in rules] == [
            ("no_print", Language.PYTHON),
            ("no_dbg", Language.RUST),
        ]

    def test_invalid_yaml_yields_warning(self, tmp_path):
        """Unparseable files are reported and contribute no rules."""
        path = write(tmp_path, "bad.yml", "- id: [unclosed\n")
        loader = RuleLoader()

        assert loader.load_file(path, RuleScope.GLOBAL) == []
        assert loader.warnings


class TestRuleRegistry:
    """Tests for merging and querying rules."""

    def test_project_rule_replaces_global(self, tmp_path, builtin_dir):
        """A project rule with the same id replaces the global one in place."""
        project = write(tmp_path, "project.yml", """
            - id: dynamic_atom_creation
              name: Atoms Allowed In Scripts
              language: elixir
              severity: warning
              description: Project override
              pattern: 'String\\.to_atom\\('
        """)

        registry = RuleRegistry.load(project_rule_files=[project], builtin_dir=builtin_dir)

        rules = registry.rules_for(Language.ELIXIR)
        assert [r.id for r in rules] == ["dynamic_atom_creation", "non_assertive_map_access"]
        overridden = registry.find("dynamic_atom_creation", Language.ELIXIR)
        assert overridden.scope == RuleScope.PROJECT
        assert overridden.severity == Severity.WARNING
        assert overridden.name == "Atoms Allowed In Scripts"

    def test_new_project_rules_are_appended(self, tmp_path, builtin_dir):
        """Rules with new ids go after the built-ins."""
        project = write(tmp_path, "project.yml", """
            rules:
              - id: no_io_inspect
                language: elixir
                severity: warning
                pattern: 'IO\\.inspect'
        """)

        registry = RuleRegistry.load(project_rule_files=[project], builtin_dir=builtin_dir)

        assert registry.rules_for(Language.ELIXIR)[-1].id == "no_io_inspect"

    def test_disabled_rule_stays_listed(self, tmp_path, builtin_dir):
        """enabled: false removes a rule from matching but not from the index."""
        project = write(tmp_path, "project.yml", """
            - id: non_assertive_map_access
              language: elixir
              severity: warning
              enabled: false
              pattern: 'Map\\.get\\('
        """)

        registry = RuleRegistry.load(project_rule_files=[project], builtin_dir=builtin_dir)

        assert registry.find("non_assertive_map_access") is not None
        assert [r.id for r in registry.enabled_rules_for(Language.ELIXIR)] == ["dynamic_atom_creation"]
        assert registry.search("map access")[0].id == "non_assertive_map_access"

    def test_user_rules_for_matching_project_only(self, tmp_path, builtin_dir):
        """Per-project sections of the user file apply only to that repository."""
        repo = tmp_path / "repo"
        repo.mkdir()
        user_file = write(tmp_path, "user.yml", f"""
            projects:
              mine:
                path: {repo}
                rules:
                  python:
                    - id: no_print
                      severity: warning
                      pattern: 'print\\('
              other:
                path: {tmp_path / 'elsewhere'}
                rules:
                  python:
                    - id: no_input
                      severity: warning
                      pattern: 'input\\('
        """)

        registry = RuleRegistry.load(user_rule_file=user_file, project_root=repo, builtin_dir=builtin_dir)

        assert registry.find("no_print").scope == RuleScope.PROJECT
        assert registry.find("no_input") is None

    def test_missing_project_file_is_a_warning(self, tmp_path, builtin_dir):
        """A configured but absent project rule file does not abort loading."""
        registry = RuleRegistry.load(project_rule_files=[tmp_path / "nope.yml"], builtin_dir=builtin_dir)

        assert registry.usable_rule_count() == 3
        assert any("nope.yml" in w for w in registry.warnings)

    def test_search_is_case_insensitive(self, builtin_dir):
        """Search looks at id, name, description and tags."""
        registry = RuleRegistry.load(builtin_dir=builtin_dir)

        assert [r.id for r in registry.search("SECURITY")] == ["dynamic_atom_creation"]
        assert [r.id for r in registry.search("catches")] == ["bare_except"]

    def test_search_matches_words_of_the_id(self, tmp_path, builtin_dir):
        """Rules without a name are still found by the words of their id."""
        project = write(tmp_path, "project.yml", """
            - id: no_io_inspect
              language: elixir
              severity: warning
              pattern: 'IO\\.inspect'
        """)

        registry = RuleRegistry.load(project_rule_files=[project], builtin_dir=builtin_dir)

        assert registry.find("no_io_inspect").name == "no_io_inspect"
        assert [r.id for r in registry.search("io inspect")] == ["no_io_inspect"]

    def test_find_unknown_rule(self, builtin_dir):
        """Unknown ids are reported as None."""
        registry = RuleRegistry.load(builtin_dir=builtin_dir)

        assert registry.find("nope") is None
        assert registry.find("bare_except", Language.RUST) is None

    def test_empty_when_everything_disabled(self, tmp_path):
        """A registry with no usable rule reports itself empty."""
        rules_dir = tmp_path / "builtin"
        rules_dir.mkdir()
        write(rules_dir, "python.yml", """
            - id: always_off
              language: python
              severity: warning
              enabled: false
              pattern: x
        """)

        registry = RuleRegistry.load(builtin_dir=rules_dir)

        assert registry.is_empty()
        assert len(registry.all_rules()) == 1

    def test_from_rules_merges_in_order(self):
        """Later rules with a known id replace earlier ones."""
        loader = RuleLoader()
        first = loader.build_rule({"id": "no_dbg", "language": "rust", "severity": "warning",
                                   "pattern": "dbg!"}, RuleScope.GLOBAL, "test")
        second = loader.build_rule({"id": "no_dbg", "language": "rust", "severity": "major",
                                    "pattern": "dbg!"}, RuleScope.PROJECT, "test")

        registry = RuleRegistry.from_rules([first, second])

        assert registry.rules_for(Language.RUST) == (second,)

    def test_registry_is_read_only(self, builtin_dir):
        """The language index cannot be mutated after loading."""
        registry = RuleRegistry.load(builtin_dir=builtin_dir)

        with pytest.raises(TypeError):
            registry._rules[Language.ZIG] = ()
        assert isinstance(registry.rules_for(Language.PYTHON), tuple)
