"""Tests for fix confidence scoring."""

import pytest

from diffwarden.analysis.fix_scorer import INVALID_CONFIDENCE_CAP, FixConfidenceScorer
from diffwarden.git.models import Language


class TestFixConfidenceScorer:
    """Tests for FixConfidenceScorer."""

    def test_clean_fix_scores_high(self):
        """A balanced, complete, prose-free fix gets both bonuses."""
        scorer = FixConfidenceScorer()

        result = scorer.score("x = eval(data)", "x = ast.literal_eval(data)", Language.PYTHON)

        assert result.structurally_valid
        assert result.confidence == pytest.approx(0.9)
        assert result.is_high_confidence

    @pytest.mark.parametrize("fixed", ["", "   ", "(((", "}", "\"unterminated", "Here is the fix:"])
    def test_confidence_always_in_range(self, fixed):
        """Confidence is clamped to [0, 1] whatever the input."""
        result = FixConfidenceScorer().score("", fixed, Language.RUST)

        assert 0.0 <= result.confidence <= 1.0

    def test_empty_fix_is_invalid(self):
        result = FixConfidenceScorer().score("x.unwrap()", "", Language.RUST)

        assert not result.structurally_valid
        assert result.confidence <= INVALID_CONFIDENCE_CAP

    def test_unbalanced_brackets_are_capped(self):
        """Structurally invalid fixes never reach the high-confidence band."""
        result = FixConfidenceScorer().score("foo(bar)", "foo(bar", Language.RUST)

        assert not result.structurally_valid
        assert result.confidence == pytest.approx(INVALID_CONFIDENCE_CAP)
        assert not result.is_high_confidence

    def test_mis_nested_brackets(self):
        scorer = FixConfidenceScorer()

        assert not scorer.structural_check("foo([bar)]", Language.JAVASCRIPT)
        assert scorer.structural_check("foo([bar])", Language.JAVASCRIPT)

    def test_brackets_inside_strings_and_comments_ignored(self):
        """Only code brackets count toward balance."""
        scorer = FixConfidenceScorer()

        assert scorer.structural_check("log(\"(\") // )", Language.JAVASCRIPT)
        assert scorer.structural_check("IO.puts(\"{\") # }", Language.ELIXIR)

    def test_rust_lifetimes_are_not_strings(self):
        scorer = FixConfidenceScorer()

        assert scorer.structural_check("fn name<'a>(s: &'a str) -> &'a str { s }", Language.RUST)

    def test_rust_char_literals_are_skipped(self):
        """Brackets inside char literals do not count toward balance."""
        scorer = FixConfidenceScorer()

        assert scorer.structural_check("let parts = line.split('(');", Language.RUST)
        assert scorer.structural_check("let c = if open { '{' } else { '\\'' };", Language.RUST)
        assert not scorer.has_malformed_markers("let parts = line.split('(');", Language.RUST)
        assert not scorer.structural_check("let parts = line.split('(';", Language.RUST)

    def test_python_indentation_checked(self):
        """Indentation-sensitive languages need consistent indentation."""
        scorer = FixConfidenceScorer()

        assert scorer.structural_check("if x:\n    y = 1\nz = 2", Language.PYTHON)
        assert not scorer.structural_check("if x:\n        y = 1\n  z = 2", Language.PYTHON)

    def test_nested_python_fix_keeps_original_depth(self):
        """A fix for a line inside a method is measured relative to its own base indent."""
        scorer = FixConfidenceScorer()
        fixed = "        if x is None:\n            return 0\n        return x"

        result = scorer.score("        return x", fixed, Language.PYTHON)

        assert result.structurally_valid
        assert result.confidence == pytest.approx(0.9)
        assert not scorer.structural_check("        if x:\n            y = 1\n          z = 2", Language.PYTHON)

    def test_prose_is_penalized(self):
        """Explanations around the code cost confidence."""
        scorer = FixConfidenceScorer()

        plain = scorer.score("x == 1", "x = 1", Language.PYTHON)
        chatty = scorer.score("x == 1", "Here is the fix:\nx = 1", Language.PYTHON)

        assert chatty.confidence == pytest.approx(plain.confidence - 0.3)
        assert scorer.has_prose("```python\nx = 1\n```")
        assert scorer.has_prose("This replaces the unsafe call with a safe one.")
        assert not scorer.has_prose("value = compute(a, b)")

    def test_prose_judged_on_raw_response(self):
        """Prose stripped away during extraction still costs confidence."""
        scorer = FixConfidenceScorer()
        raw = "Here is the fixed code:\n```python\nx = 1\n```\nNote: assignment was intended."

        result = scorer.score("x == 1", "x = 1", Language.PYTHON, raw_text=raw)

        assert result.fixed_text == "x = 1"
        assert result.structurally_valid
        assert result.confidence == pytest.approx(0.6)

    def test_truncated_statement_is_malformed(self):
        """A trailing operator suggests the fixer stopped mid-statement."""
        scorer = FixConfidenceScorer()

        assert scorer.has_malformed_markers("let x = a +", Language.RUST)
        assert scorer.score("", "let x = a +", Language.RUST).confidence == pytest.approx(0.8)
        assert not scorer.has_malformed_markers("let x = a + 1;", Language.RUST)
        assert not scorer.has_malformed_markers("i++", Language.JAVASCRIPT)

    def test_unclosed_string_is_malformed(self):
        scorer = FixConfidenceScorer()

        assert scorer.has_malformed_markers("let s = \"abc;", Language.RUST)

    def test_placeholder_lines_are_malformed(self):
        """Elided code means the fix is not complete."""
        scorer = FixConfidenceScorer()

        assert scorer.has_malformed_markers("def f():\n    ...\n    return 1", Language.PYTHON)

    def test_unknown_language_uses_brace_check(self):
        result = FixConfidenceScorer().score("", "call(a, b)", None)

        assert result.structurally_valid
