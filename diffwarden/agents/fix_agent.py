"""Fix agent for sending violations to the AI fixer and applying accepted fixes."""

import logging
import textwrap
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Optional

from diffwarden.analysis.diff_parser import DiffParser
from diffwarden.errors import ExternalToolError, ExternalToolTimeout, FixValidationError
from diffwarden.git.models import FileChange, FixRequest, FixResult, Violation

logger = logging.getLogger(__name__)

Fixer = Callable[[FixRequest], FixResult]


class FixDecision(str, Enum):
    """Answer to an interactive fix prompt."""
    APPLY = "apply"
    SKIP = "skip"
    APPLY_ALL = "apply_all"
    QUIT = "quit"


DecisionPrompt = Callable[[Violation, FixResult], FixDecision]


class FixStatus(str, Enum):
    APPLIED = "applied"
    PROPOSED = "proposed"
    SKIPPED = "skipped"
    REJECTED = "rejected"
    STALE = "stale"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    NOT_FIXABLE = "not_fixable"


@dataclass
class FixOutcome:
    """What happened to one violation during a fix run."""
    violation: Violation
    status: FixStatus
    result: Optional[FixResult] = None
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "violation": self.violation.to_dict(),
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "message": self.message,
        }


@dataclass
class BatchFixReport:
    """Result of an interactive or batch fix run."""
    outcomes: list[FixOutcome] = field(default_factory=list)
    cancelled: bool = False
    dry_run: bool = False

    def count(self, status: FixStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def applied(self) -> int:
        return self.count(FixStatus.APPLIED)

    @property
    def unfixed(self) -> list[Violation]:
        return [o.violation for o in self.outcomes if o.status != FixStatus.APPLIED]

    def to_dict(self) -> dict:
        return {
            "outcomes": [o.to_dict() for o in self.outcomes],
            "counts": {status.value: self.count(status) for status in FixStatus},
            "cancelled": self.cancelled,
            "dry_run": self.dry_run,
        }


class _FileEditor:
    """Applies line replacements, tracking the shift earlier fixes introduce."""

    def __init__(self, root: Path):
        self.root = root
        self._lines: dict[str, list[str]] = {}
        self._trailing_newline: dict[str, bool] = {}
        self._shifts: dict[str, list[tuple[int, int]]] = {}

    def _load(self, file_path: str) -> list[str]:
        if file_path not in self._lines:
            text = (self.root / file_path).read_text(encoding="utf-8")
            self._lines[file_path] = text.split("\n")
            self._trailing_newline[file_path] = text.endswith("\n")
            if self._trailing_newline[file_path]:
                self._lines[file_path].pop()
        return self._lines[file_path]

    def current_line(self, file_path: str, line_number: int) -> int:
        shift = sum(delta for at, delta in self._shifts.get(file_path, []) if at < line_number)
        return line_number + shift

    def apply(self, violation: Violation, fixed_text: str) -> bool:
        """Replace the violation's line; False if the line no longer holds the matched text."""
        lines = self._load(violation.file_path)
        idx = self.current_line(violation.file_path, violation.line_number) - 1
        if not 0 <= idx < len(lines) or violation.matched_text not in lines[idx]:
            return False

        original = lines[idx]
        indent = original[:len(original) - len(original.lstrip())]
        replacement = [
            indent + line if line.strip() else ""
            for line in textwrap.dedent(fixed_text).split("\n")
        ]
        lines[idx:idx + 1] = replacement

        delta = len(replacement) - 1
        if delta:
            self._shifts.setdefault(violation.file_path, []).append((violation.line_number, delta))
        self._write(violation.file_path)
        return True

    def _write(self, file_path: str) -> None:
        text = "\n".join(self._lines[file_path])
        if self._trailing_newline[file_path]:
            text += "\n"
        (self.root / file_path).write_text(text, encoding="utf-8")


class FixAgent:
    """Agent for applying AI-generated fixes one violation at a time."""

    def __init__(
        self,
        fixer: Fixer,
        repo_root: Path | str = ".",
        timeout: float = 30.0,
        confidence_threshold: float = 0.7,
        context_lines: int = 3,
    ):
        self.fixer = fixer
        self.repo_root = Path(repo_root)
        self.timeout = timeout
        self.confidence_threshold = confidence_threshold
        self.context_lines = context_lines
        self.diff_parser = DiffParser()
        logger.info(f"Initialized FixAgent (timeout={timeout}s, threshold={confidence_threshold})")

    def build_request(self, violation: Violation, file_change: Optional[FileChange] = None) -> FixRequest:
        """Attach surrounding code, from the diff when available, otherwise from disk."""
        before: list[str] = []
        after: list[str] = []
        if file_change is not None:
            lines_before, lines_after = self.diff_parser.get_context_around_line(
                file_change, violation.line_number, self.context_lines,
            )
            before = [line.content for line in lines_before]
            after = [line.content for line in lines_after]
        else:
            path = self.repo_root / violation.file_path
            if path.exists():
                lines = path.read_text(encoding="utf-8").split("\n")
                idx = violation.line_number - 1
                before = lines[max(0, idx - self.context_lines):idx]
                after = lines[idx + 1:idx + 1 + self.context_lines]

        return FixRequest(
            violation=violation,
            context_before=before,
            context_after=after,
            language=violation.language,
            description=violation.rule_name,
        )

    def request_fix(self, request: FixRequest) -> FixResult:
        """
        Call the fixer, waiting at most ``timeout`` seconds.

        Raises:
            ExternalToolTimeout: If the fixer did not answer in time.
            ExternalToolError: If the fixer failed.
        """
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self.fixer, request)
        try:
            return future.result(timeout=self.timeout)
        except FuturesTimeout as e:
            future.cancel()
            raise ExternalToolTimeout(f"No fix within {self.timeout}s") from e
        except ExternalToolError:
            raise
        except Exception as e:
            raise ExternalToolError(f"Fixer failed: {e}") from e
        finally:
            executor.shutdown(wait=False)

    def validate(self, request: FixRequest, result: FixResult, check_confidence: bool = True) -> None:
        """
        Raises:
            FixValidationError: If the fix is invalid, unchanged or, when
                ``check_confidence`` is set, below the confidence threshold.
        """
        if not result.structurally_valid:
            raise FixValidationError("structurally invalid fix")
        if result.fixed_text.strip() == request.original_text.strip():
            raise FixValidationError("fix is unchanged")
        if check_confidence and result.confidence < self.confidence_threshold:
            raise FixValidationError(
                f"confidence {result.confidence:.2f} below {self.confidence_threshold:.2f}"
            )

    def run_batch(
        self,
        violations: list[Violation],
        files: Optional[Mapping[str, FileChange]] = None,
        dry_run: bool = False,
    ) -> BatchFixReport:
        """Fix violations unattended, applying only high-enough confidence fixes."""
        return self._process(violations, files, dry_run, prompt=None)

    def run_interactive(
        self,
        violations: list[Violation],
        prompt: DecisionPrompt,
        files: Optional[Mapping[str, FileChange]] = None,
        dry_run: bool = False,
    ) -> BatchFixReport:
        """Offer each valid fix to ``prompt``; quitting keeps fixes already applied."""
        return self._process(violations, files, dry_run, prompt=prompt)

    def _process(
        self,
        violations: list[Violation],
        files: Optional[Mapping[str, FileChange]],
        dry_run: bool,
        prompt: Optional[DecisionPrompt],
    ) -> BatchFixReport:
        report = BatchFixReport(dry_run=dry_run)
        editor = _FileEditor(self.repo_root)
        files = files or {}
        apply_all = prompt is None

        ordered = sorted(violations, key=lambda v: (-v.severity.rank, v.file_path, v.line_number))
        logger.info(f"Processing {len(ordered)} violations ({'batch' if prompt is None else 'interactive'})")

        for violation in ordered:
            if not violation.ai_fixable:
                report.outcomes.append(FixOutcome(violation, FixStatus.NOT_FIXABLE))
                continue

            request = self.build_request(violation, files.get(violation.file_path))
            try:
                result = self.request_fix(request)
            except ExternalToolTimeout as e:
                logger.warning(f"{violation.file_path}:{violation.line_number} {e}")
                report.outcomes.append(FixOutcome(violation, FixStatus.TIMED_OUT, message=str(e)))
                continue
            except ExternalToolError as e:
                logger.warning(f"{violation.file_path}:{violation.line_number} {e}")
                report.outcomes.append(FixOutcome(violation, FixStatus.FAILED, message=str(e)))
                continue

            try:
                self.validate(request, result, check_confidence=apply_all)
            except FixValidationError as e:
                logger.info(f"Rejected fix for {violation.rule_id} at {violation.file_path}:{violation.line_number}: {e}")
                report.outcomes.append(FixOutcome(violation, FixStatus.REJECTED, result, str(e)))
                continue

            if not apply_all:
                decision = prompt(violation, result)
                if decision == FixDecision.QUIT:
                    report.cancelled = True
                    logger.info("Fixing cancelled by user")
                    break
                if decision == FixDecision.SKIP:
                    report.outcomes.append(FixOutcome(violation, FixStatus.SKIPPED, result))
                    continue
                if decision == FixDecision.APPLY_ALL:
                    apply_all = True

            if dry_run:
                report.outcomes.append(FixOutcome(violation, FixStatus.PROPOSED, result))
                continue

            try:
                applied = editor.apply(violation, result.fixed_text)
            except OSError as e:
                logger.error(f"Could not write fix to {violation.file_path}: {e}")
                report.outcomes.append(FixOutcome(violation, FixStatus.FAILED, result, str(e)))
                continue

            if applied:
                logger.info(f"Applied fix for {violation.rule_id} at {violation.file_path}:{violation.line_number}")
                report.outcomes.append(FixOutcome(violation, FixStatus.APPLIED, result))
            else:
                report.outcomes.append(FixOutcome(
                    violation, FixStatus.STALE, result, "line no longer contains the matched text",
                ))

        return report
