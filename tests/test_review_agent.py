"""Tests for the review agent."""

from unittest.mock import Mock

import pytest

from diffwarden.agents.review_agent import ReviewAgent
from diffwarden.analysis.diff_parser import DiffParser
from diffwarden.analysis.rule_registry import RuleRegistry
from diffwarden.errors import EmptyRuleRegistryError
from diffwarden.git.models import FileChange, Language, ParsedDiff, Severity


DIFF = """diff --git a/lib/app.ex b/lib/app.ex
--- a/lib/app.ex
+++ b/lib/app.ex
@@ -10,3 +10,5 @@
 a
-b
 c
+String.to_atom(x)
+value = Map.get(params, "id")
+ok
diff --git a/src/main.rs b/src/main.rs
--- a/src/main.rs
+++ b/src/main.rs
@@ -1,0 +1,1 @@
+let v = data.unwrap();
diff --git a/package-lock.json b/package-lock.json
--- a/package-lock.json
+++ b/package-lock.json
@@ -1,0 +1,1 @@
+{}
diff --git a/README.md b/README.md
--- a/README.md
+++ b/README.md
@@ -1,0 +1,1 @@
+eval(x)
"""


@pytest.fixture(scope="module")
def registry():
    return RuleRegistry.load()


class TestReviewAgent:
    """Tests for ReviewAgent."""

    def test_review_diff(self, registry):
        """Violations from every supported file are reported in order."""
        agent = ReviewAgent(registry)

        report = agent.review_diff(DIFF)

        assert [(v.file_path, v.line_number, v.rule_id) for v in report.violations][:1] == [
            ("lib/app.ex", 12, "dynamic_atom_creation"),
        ]
        assert ("src/main.rs", 1, "unwrap_in_production") in [
            (v.file_path, v.line_number, v.rule_id) for v in report.violations
        ]
        assert "package-lock.json" not in report.summary.affected_files
        assert "README.md" not in report.summary.affected_files
        assert report.has_critical

    def test_min_severity(self, registry):
        """Only violations at or above the minimum are reported."""
        agent = ReviewAgent(registry)

        report = agent.review_diff(DIFF, min_severity=Severity.CRITICAL)

        assert report.violations
        assert all(v.severity == Severity.CRITICAL for v in report.violations)

    def test_language_thresholds(self, registry):
        """Per-language thresholds drop lower severities for that language only."""
        agent = ReviewAgent(registry, severity_thresholds={Language.ELIXIR: Severity.CRITICAL})

        report = agent.review_diff(DIFF)

        elixir = [v for v in report.violations if v.language == Language.ELIXIR]
        assert elixir and all(v.severity == Severity.CRITICAL for v in elixir)
        assert any(v.language == Language.RUST for v in report.violations)

    def test_language_restriction(self, registry):
        agent = ReviewAgent(registry, languages=[Language.RUST])

        report = agent.review_diff(DIFF)

        assert report.summary.affected_files == ["src/main.rs"]

    def test_should_analyze(self, registry):
        """Skip ignored, generated, binary, deleted and unsupported files."""
        agent = ReviewAgent(registry, ignore_paths=["vendor/*"])
        parser = DiffParser()
        patch = "@@ -1,0 +1,1 @@\n+x"

        assert agent.should_analyze(parser.parse_patch("lib/app.ex", patch))
        assert not agent.should_analyze(parser.parse_patch("vendor/lib.js", patch))
        assert not agent.should_analyze(parser.parse_patch("web/app.min.js", patch))
        assert not agent.should_analyze(parser.parse_patch("notes.txt", patch))
        assert not agent.should_analyze(FileChange(file_path="a.py", is_binary=True))
        deleted = parser.parse_patch("a.py", patch)
        deleted.is_deleted = True
        assert not agent.should_analyze(deleted)

    def test_empty_registry_is_an_error(self):
        """Matching against nothing is reported, not silently passed."""
        empty = Mock()
        empty.is_empty.return_value = True
        agent = ReviewAgent(empty)

        with pytest.raises(EmptyRuleRegistryError):
            agent.review(ParsedDiff())

    def test_worker_failure_drops_only_that_file(self, registry):
        """A file whose scan raises is logged and skipped."""
        matcher = Mock()

        def match_file(file_change, rules):
            if file_change.file_path == "src/main.rs":
                raise RuntimeError("boom")
            return []

        matcher.match_file.side_effect = match_file
        agent = ReviewAgent(registry, matcher=matcher)

        report = agent.review_diff(DIFF)

        assert report.violations == []
        assert matcher.match_file.call_count == 2

    def test_results_do_not_depend_on_worker_count(self, registry):
        """One worker and many workers produce the same report."""
        parsed = DiffParser().parse(DIFF)

        serial = ReviewAgent(registry, max_workers=1).review(parsed)
        parallel = ReviewAgent(registry, max_workers=8).review(parsed)

        assert serial == parallel

    def test_scan_only_consults_the_matcher(self, registry):
        """Scanning parsed files does not go back to the diff parser."""
        parsed = DiffParser().parse(DIFF)
        agent = ReviewAgent(registry, max_workers=1)
        agent.diff_parser = Mock()

        violations = agent.scan(parsed.files)

        assert violations
        agent.diff_parser.assert_not_called()
        assert agent.diff_parser.method_calls == []
