"""Confidence scoring and structural validation for AI-proposed fixes."""

import re
import textwrap
import logging
from typing import Optional

from diffwarden.git.models import FixResult, Language

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.7
STRUCTURE_BONUS = 0.1
WELL_FORMED_BONUS = 0.1
PROSE_PENALTY = 0.3
# Structurally invalid fixes stay below the high-confidence band
INVALID_CONFIDENCE_CAP = 0.6

PAIRS = {")": "(", "]": "[", "}": "{"}
COMMENT_MARKERS = {
    Language.PYTHON: "#",
    Language.ELIXIR: "#",
    Language.SQL: "--",
}
DEFAULT_COMMENT_MARKER = "//"

PROSE_PREFIXES = re.compile(
    r"^\s*(?:here\s+is|here's|here\s+are|note:|explanation:|this\s+code|this\s+fix|"
    r"the\s+fix|the\s+fixed|i've|i\s+have|i\s+changed|sure[,!]|certainly)",
    re.IGNORECASE,
)
# A capitalized sentence of plain words ending in a period or colon
PROSE_SENTENCE = re.compile(r"^[A-Z][a-z]+(?:[ ,'][A-Za-z'-]+){3,}[.:!]\s*$")
TRUNCATION = re.compile(
    r"(?:(?<![+\-])[+\-]|(?<!\*)/|(?<![=!<>])=|[,\\(\[{]|&&|\|\||\band|\bor|\.\.\.)\s*$"
)
PLACEHOLDER_LINE = re.compile(r"^\s*(?:\.\.\.|…|# \.\.\.|// \.\.\.)\s*$")
RUST_CHAR_LITERAL = re.compile(r"'(?:\\(?:x[0-9a-fA-F]{2}|u\{[0-9a-fA-F]{1,6}\}|.)|[^\\'\n])'")


def _quote_chars(language: Optional[Language]) -> str:
    # Rust uses ' for lifetimes
    return "\"" if language is Language.RUST else "\"'`"


def _scan_brackets(text: str, language: Optional[Language] = None) -> tuple[bool, bool]:
    """
    Walk the text once, skipping comments and string literals.

    Returns:
        Tuple of (brackets balanced and properly nested, all string literals closed).
    """
    comment = COMMENT_MARKERS.get(language, DEFAULT_COMMENT_MARKER)
    quotes = _quote_chars(language)
    stack: list[str] = []
    nested_ok = True
    quote: Optional[str] = None
    idx = 0
    while idx < len(text):
        char = text[idx]
        if quote:
            if char == "\\":
                idx += 2
                continue
            if text.startswith(quote, idx):
                idx += len(quote)
                quote = None
                continue
            if char == "\n" and len(quote) == 1 and quote != "`":
                # Single-line literals do not span lines
                return False, False
            idx += 1
            continue

        if text.startswith(comment, idx):
            newline = text.find("\n", idx)
            idx = len(text) if newline < 0 else newline
            continue
        if char == "'" and language is Language.RUST:
            char_literal = RUST_CHAR_LITERAL.match(text, idx)
            if char_literal:
                idx = char_literal.end()
                continue
        if char in quotes:
            triple = char * 3
            quote = triple if language is Language.PYTHON and text.startswith(triple, idx) else char
            idx += len(quote)
            continue
        if char in "([{":
            stack.append(char)
        elif char in PAIRS:
            if not stack or stack.pop() != PAIRS[char]:
                nested_ok = False
        idx += 1
    return nested_ok and not stack, quote is None


def _indentation_consistent(text: str) -> bool:
    # Fixes for nested lines arrive at their original depth
    text = textwrap.dedent(text)
    unit = 0
    previous = 0
    for raw in text.split("\n"):
        if not raw.strip():
            continue
        leading = raw[:len(raw) - len(raw.lstrip())]
        if " " in leading and "\t" in leading:
            return False
        width = len(leading)
        if width and not unit:
            unit = width
        if unit and width % unit:
            return False
        if unit and width > previous + unit:
            return False
        previous = width
    return True


class FixConfidenceScorer:
    """Heuristic quality estimate for a fixed code snippet."""

    def structural_check(self, fixed_text: str, language: Optional[Language]) -> bool:
        """Balanced brackets for every language, plus consistent indentation for indentation-sensitive ones."""
        if not fixed_text.strip():
            return False
        balanced, _ = _scan_brackets(fixed_text, language)
        if language is not None and language.uses_indentation:
            return balanced and _indentation_consistent(fixed_text)
        return balanced

    def has_malformed_markers(self, fixed_text: str, language: Optional[Language] = None) -> bool:
        """Unclosed string literals, a truncated last statement, or elided code."""
        if not fixed_text.strip():
            return True
        _, strings_closed = _scan_brackets(fixed_text, language)
        if not strings_closed:
            return True
        code_lines = [line for line in fixed_text.split("\n") if line.strip()]
        last = code_lines[-1].rstrip()
        comment = COMMENT_MARKERS.get(language, DEFAULT_COMMENT_MARKER)
        if TRUNCATION.search(last) and not last.lstrip().startswith(comment):
            return True
        return any(PLACEHOLDER_LINE.match(line) for line in code_lines)

    def has_prose(self, fixed_text: str) -> bool:
        if "```" in fixed_text:
            return True
        lines = [line for line in fixed_text.split("\n") if line.strip()]
        if not lines:
            return False
        if any(PROSE_PREFIXES.match(line) for line in lines):
            return True
        return bool(PROSE_SENTENCE.match(lines[0].strip()))

    def score(
        self,
        original_text: str,
        fixed_text: str,
        language: Optional[Language] = None,
        raw_text: Optional[str] = None,
    ) -> FixResult:
        """
        Score a candidate fix.

        Args:
            original_text: The offending line(s).
            fixed_text: Code returned by the fixer.
            language: Language of the file, or None for a brace-style check.
            raw_text: Full fixer response the code was extracted from; the
                prose penalty is judged on it when given.

        Returns:
            FixResult with confidence clamped to [0, 1].
        """
        structurally_valid = self.structural_check(fixed_text, language)

        confidence = BASE_CONFIDENCE
        if structurally_valid:
            confidence += STRUCTURE_BONUS
        if not self.has_malformed_markers(fixed_text, language):
            confidence += WELL_FORMED_BONUS
        if self.has_prose(fixed_text if raw_text is None else raw_text):
            confidence -= PROSE_PENALTY

        confidence = min(1.0, max(0.0, confidence))
        if not structurally_valid:
            confidence = min(confidence, INVALID_CONFIDENCE_CAP)

        logger.debug(f"Scored fix: confidence={confidence:.2f} valid={structurally_valid}")
        return FixResult(
            original_text=original_text,
            fixed_text=fixed_text,
            confidence=round(confidence, 4),
            structurally_valid=structurally_valid,
        )
