"""Review agent that scans parsed diffs against the rule registry."""

import fnmatch
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable, Mapping, Optional

from diffwarden.analysis.aggregator import ViolationAggregator
from diffwarden.analysis.diff_parser import DiffParser
from diffwarden.analysis.pattern_matcher import PatternMatcher
from diffwarden.analysis.rule_registry import RuleRegistry
from diffwarden.errors import EmptyRuleRegistryError
from diffwarden.git.models import FileChange, Language, ParsedDiff, ReviewReport, Severity, Violation

logger = logging.getLogger(__name__)


class ReviewAgent:
    """Agent for reviewing the added lines of a diff."""

    # Files to skip regardless of configuration
    SKIP_PATTERNS = {
        "*.min.js", "*.min.css", "*.map",
        "package-lock.json", "yarn.lock", "Cargo.lock", "mix.lock",
    }

    def __init__(
        self,
        registry: RuleRegistry,
        matcher: Optional[PatternMatcher] = None,
        aggregator: Optional[ViolationAggregator] = None,
        max_workers: int = 4,
        ignore_paths: Iterable[str] = (),
        severity_thresholds: Optional[Mapping[Language, Severity]] = None,
        languages: Optional[Iterable[Language]] = None,
    ):
        """
        Initialize the review agent.

        Args:
            registry: Rule registry shared read-only by all workers.
            matcher: Pattern matcher; a default one is built if omitted.
            aggregator: Violation aggregator.
            max_workers: Size of the file scanning pool.
            ignore_paths: Globs of files never scanned.
            severity_thresholds: Per-language minimum severities.
            languages: Restrict scanning to these languages.
        """
        self.registry = registry
        self.matcher = matcher or PatternMatcher()
        self.aggregator = aggregator or ViolationAggregator()
        self.diff_parser = DiffParser()
        self.max_workers = max(1, max_workers)
        self.ignore_paths = list(ignore_paths)
        self.severity_thresholds = dict(severity_thresholds or {})
        self.languages = set(languages) if languages else None

        logger.info(f"Initialized ReviewAgent (max_workers={self.max_workers})")

    def should_analyze(self, file_change: FileChange) -> bool:
        """Check if a file should be scanned."""
        path = file_change.file_path
        if file_change.is_deleted or file_change.is_binary or not file_change.hunks:
            return False

        patterns = [*self.SKIP_PATTERNS, *self.ignore_paths]
        if any(fnmatch.fnmatch(path, p) or fnmatch.fnmatch(path.rsplit("/", 1)[-1], p) for p in patterns):
            return False

        language = file_change.language
        if language is None:
            return False
        if self.languages is not None and language not in self.languages:
            return False
        return True

    def _scan_file(self, file_change: FileChange) -> list[Violation]:
        rules = self.registry.enabled_rules_for(file_change.language)
        logger.debug(
            f"Scanning {file_change.file_path}: {len(file_change.added_lines())} added lines, "
            f"{len(rules)} rules"
        )
        return self.matcher.match_file(file_change, rules)

    def scan(self, files: list[FileChange]) -> list[Violation]:
        """
        Match every eligible file in a bounded worker pool.

        Raises:
            EmptyRuleRegistryError: If no rule of any language is usable.
        """
        if self.registry.is_empty():
            raise EmptyRuleRegistryError("No usable rules are loaded; nothing to match against")

        targets = [f for f in files if self.should_analyze(f)]
        skipped = len(files) - len(targets)
        if skipped:
            logger.info(f"Skipping {skipped} files (ignored, binary, deleted or unsupported)")
        if not targets:
            return []

        matches: list[Violation] = []
        with ThreadPoolExecutor(max_workers=min(len(targets), self.max_workers)) as executor:
            futures = {executor.submit(self._scan_file, f): f.file_path for f in targets}
            for future in as_completed(futures):
                try:
                    matches.extend(future.result())
                except Exception as e:
                    logger.error(f"Error scanning {futures[future]}: {e}")
        return matches

    def review(self, parsed_diff: ParsedDiff, min_severity: Optional[Severity] = None) -> ReviewReport:
        """
        Perform a complete review of a parsed diff.

        Args:
            parsed_diff: Output of DiffParser.parse.
            min_severity: Optional reporting threshold.

        Returns:
            Ordered, filtered report.
        """
        logger.info(f"Reviewing {len(parsed_diff.files)} changed files")
        report = self.aggregator.aggregate(self.scan(parsed_diff.files))
        report = self.aggregator.filter_by_language_thresholds(report, self.severity_thresholds)
        if min_severity is not None:
            report = self.aggregator.filter_by_severity(report, min_severity)

        logger.info(
            f"Review complete: {report.summary.total_violations} violations "
            f"in {report.summary.files_with_violations} files"
        )
        return report

    def review_diff(self, diff_text: str, min_severity: Optional[Severity] = None) -> ReviewReport:
        return self.review(self.diff_parser.parse(diff_text), min_severity=min_severity)
