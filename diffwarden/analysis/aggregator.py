"""Dedups, orders and summarizes raw matches into a review report."""

import logging
from typing import Iterable, Mapping

from diffwarden.git.models import Language, ReviewReport, ReviewSummary, Severity, Violation

logger = logging.getLogger(__name__)


def _sort_key(violation: Violation) -> tuple:
    return (
        violation.file_path,
        violation.line_number,
        -violation.severity.rank,
        violation.rule_id,
        violation.column,
    )


class ViolationAggregator:
    """Builds the final, ordered violation report."""

    def aggregate(self, violations: Iterable[Violation]) -> ReviewReport:
        """
        Dedup exact (file, line, rule) triples and sort the survivors.

        Order is file path, then line, then severity descending, with rule id
        and column as final tie-breaks so output is stable.
        """
        unique: dict[tuple[str, int, str], Violation] = {}
        duplicates = 0
        for violation in violations:
            if violation.key in unique:
                duplicates += 1
                continue
            unique[violation.key] = violation

        if duplicates:
            logger.debug(f"Collapsed {duplicates} duplicate matches")

        ordered = sorted(unique.values(), key=_sort_key)
        return ReviewReport(violations=ordered, summary=self.summarize(ordered))

    def summarize(self, violations: list[Violation]) -> ReviewSummary:
        by_severity = {severity.value: 0 for severity in Severity}
        by_rule: dict[str, int] = {}
        files: set[str] = set()
        ai_fixable = 0

        for v in violations:
            by_severity[v.severity.value] += 1
            by_rule[v.rule_id] = by_rule.get(v.rule_id, 0) + 1
            files.add(v.file_path)
            if v.ai_fixable:
                ai_fixable += 1

        return ReviewSummary(
            total_violations=len(violations),
            by_severity=by_severity,
            by_rule=by_rule,
            files_with_violations=len(files),
            affected_files=sorted(files),
            ai_fixable_count=ai_fixable,
        )

    def filter_by_severity(self, report: ReviewReport, minimum: Severity) -> ReviewReport:
        """Keep violations at or above a severity and recompute the summary."""
        kept = [v for v in report.violations if v.severity.at_least(minimum)]
        return ReviewReport(violations=kept, summary=self.summarize(kept))

    def filter_by_language_thresholds(
        self,
        report: ReviewReport,
        thresholds: Mapping[Language, Severity],
    ) -> ReviewReport:
        """Apply per-language minimum severities; languages without one keep everything."""
        if not thresholds:
            return report
        kept = [
            v for v in report.violations
            if v.language not in thresholds or v.severity.at_least(thresholds[v.language])
        ]
        return ReviewReport(violations=kept, summary=self.summarize(kept))

    @staticmethod
    def has_critical(report: ReviewReport) -> bool:
        return report.has_critical
