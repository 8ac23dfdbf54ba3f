"""Evaluates rule detection methods against the added lines of a file change."""

import logging
from typing import Callable, Mapping, Optional, Sequence

from diffwarden.analysis.custom_detectors import CUSTOM_DETECTORS, CustomDetector
from diffwarden.analysis.rule_registry import (
    CustomDetection,
    Detection,
    LineCountDetection,
    RatioDetection,
    RegexDetection,
    Rule,
)
from diffwarden.git.models import ChangedLine, DiffHunk, FileChange, Violation

logger = logging.getLogger(__name__)

# (line, matched text, 1-based column or 0 when unknown)
Hit = tuple[ChangedLine, str, int]

MIN_RATIO_BLOCK_LINES = 3

OPENERS = "([{"
CLOSERS = ")]}"


def _bracket_delta(text: str) -> int:
    """Net bracket depth change of a line, ignoring brackets inside string literals."""
    depth = 0
    quote: Optional[str] = None
    escaped = False
    for char in text:
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in "\"'`":
            quote = char
        elif char in OPENERS:
            depth += 1
        elif char in CLOSERS:
            depth -= 1
    return depth


def _indent(text: str) -> int:
    return len(text) - len(text.lstrip())


class PatternMatcher:
    """Runs every usable rule of a language against one file change."""

    def __init__(self, custom_detectors: Optional[Mapping[str, CustomDetector]] = None):
        self.custom_detectors = dict(CUSTOM_DETECTORS if custom_detectors is None else custom_detectors)
        self._evaluators: dict[type, Callable[[Detection, FileChange], list[Hit]]] = {
            RegexDetection: self._evaluate_regex,
            RatioDetection: self._evaluate_ratio,
            LineCountDetection: self._evaluate_line_count,
            CustomDetection: self._evaluate_custom,
        }

    def match_file(self, file_change: FileChange, rules: Sequence[Rule]) -> list[Violation]:
        """
        Evaluate rules against a file's added lines.

        Every rule is evaluated independently, so one line may produce
        several violations.

        Args:
            file_change: Parsed file change.
            rules: Rules for the file's language; unusable ones are ignored.

        Returns:
            Raw violations in rule order.
        """
        if not file_change.hunks:
            return []

        violations = []
        for rule in rules:
            if not rule.is_usable:
                continue
            evaluator = self._evaluators[type(rule.detection)]
            for line, matched_text, column in evaluator(rule.detection, file_change):
                violations.append(Violation(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    language=rule.language,
                    file_path=file_change.file_path,
                    line_number=line.new_line_number,
                    column=column,
                    matched_text=matched_text,
                    line_content=line.content,
                    severity=rule.severity,
                    fix_suggestion=rule.fix_suggestion,
                    ai_fixable=rule.ai_fixable,
                ))

        if violations:
            logger.debug(f"{file_change.file_path}: {len(violations)} raw matches")
        return violations

    def _evaluate_regex(self, detection: RegexDetection, file_change: FileChange) -> list[Hit]:
        hits = []
        for line in file_change.added_lines():
            for match in detection.regex.finditer(line.content):
                if match.end() == match.start():
                    continue
                hits.append((line, match.group(0), match.start() + 1))
        return hits

    def _evaluate_ratio(self, detection: RatioDetection, file_change: FileChange) -> list[Hit]:
        """Blank-line separated blocks whose share of matching lines exceeds the threshold."""
        hits = []
        for hunk in file_change.hunks:
            for block in self._blocks(hunk):
                if len(block) < MIN_RATIO_BLOCK_LINES:
                    continue
                added = [line for line in block if line.is_added]
                if not added:
                    continue
                matching = sum(1 for line in block if detection.regex.search(line.content))
                if matching / len(block) > detection.threshold:
                    first = added[0]
                    hits.append((first, first.content.strip(), 0))
        return hits

    @staticmethod
    def _blocks(hunk: DiffHunk) -> list[list[ChangedLine]]:
        blocks: list[list[ChangedLine]] = []
        current: list[ChangedLine] = []
        for line in hunk.lines:
            if line.content.strip():
                current.append(line)
            elif current:
                blocks.append(current)
                current = []
        if current:
            blocks.append(current)
        return blocks

    def _evaluate_line_count(self, detection: LineCountDetection, file_change: FileChange) -> list[Hit]:
        """
        Count occurrences inside the region opened by each matching line.

        A region whose opener leaves a bracket unclosed runs until that bracket
        closes; otherwise it covers the following lines indented deeper than the
        opener. Regions are cut at the end of the hunk.
        """
        hits = []
        for hunk in file_change.hunks:
            for idx, line in enumerate(hunk.lines):
                opener = detection.regex.search(line.content)
                if not opener:
                    continue
                region = self._region(hunk.lines, idx, opener.start())
                if detection.count_regex is not None:
                    count = sum(
                        1
                        for region_line in region
                        for match in detection.count_regex.finditer(region_line.content)
                        if match.end() > match.start()
                    )
                else:
                    count = sum(1 for region_line in region[1:] if region_line.content.strip())

                if count < detection.threshold:
                    continue
                if line.is_added:
                    hits.append((line, opener.group(0), opener.start() + 1))
                else:
                    added = next((l for l in region if l.is_added), None)
                    if added is not None:
                        hits.append((added, opener.group(0), 0))
        return hits

    @staticmethod
    def _region(lines: list[ChangedLine], start: int, column: int) -> list[ChangedLine]:
        opener = lines[start]
        depth = _bracket_delta(opener.content[column:])
        if depth > 0:
            region = [opener]
            for line in lines[start + 1:]:
                if depth <= 0:
                    break
                region.append(line)
                depth += _bracket_delta(line.content)
            return region

        region = [opener]
        base = _indent(opener.content)
        for line in lines[start + 1:]:
            if line.content.strip() and _indent(line.content) <= base:
                break
            region.append(line)
        return region

    def _evaluate_custom(self, detection: CustomDetection, file_change: FileChange) -> list[Hit]:
        detector = self.custom_detectors.get(detection.name)
        if detector is None:
            logger.warning(f"No custom detector registered as {detection.name!r}")
            return []

        added = {line.new_line_number: line for line in file_change.added_lines()}
        hits = []
        for line_number, matched_text in detector(file_change):
            line = added.get(line_number)
            if line is None:
                continue
            column = line.content.find(matched_text)
            hits.append((line, matched_text, column + 1 if column >= 0 else 0))
        return hits
