"""LangGraph orchestrator for the diff review workflow."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional, TypedDict

from langgraph.graph import StateGraph, END

from diffwarden.agents.fix_agent import BatchFixReport, FixAgent
from diffwarden.agents.review_agent import ReviewAgent
from diffwarden.analysis.diff_parser import DiffParser
from diffwarden.analysis.rule_registry import RuleRegistry
from diffwarden.errors import DiffwardenError, EmptyRuleRegistryError
from diffwarden.git.client import DiffScope, GitClient
from diffwarden.git.models import FileChange, ParsedDiff, ReviewReport, Severity

logger = logging.getLogger(__name__)


class ReviewState(TypedDict):
    """State for the review workflow."""
    scope: DiffScope
    diff_text: str
    parsed: ParsedDiff | None
    report: ReviewReport | None
    fix_report: BatchFixReport | None
    warnings: list[str]
    logs: list[dict]
    error: str | None
    fatal: bool


def add_log(state: ReviewState, event: str, **kwargs) -> dict:
    return {"timestamp": datetime.now(timezone.utc).isoformat(), "event": event, **kwargs}


class ReviewOrchestrator:
    """LangGraph-based orchestrator: fetch diff, parse, scan, aggregate, optionally fix."""

    def __init__(
        self,
        registry: RuleRegistry,
        git_client: Optional[GitClient] = None,
        review_agent: Optional[ReviewAgent] = None,
        fix_agent: Optional[FixAgent] = None,
        min_severity: Optional[Severity] = None,
        auto_fix: bool = False,
        dry_run: bool = False,
        log_path: Path | str | None = None,
    ):
        self.registry = registry
        self.git = git_client or GitClient()
        self.review_agent = review_agent or ReviewAgent(registry=registry)
        self.fix_agent = fix_agent
        self.min_severity = min_severity
        self.auto_fix = auto_fix
        self.dry_run = dry_run
        self.log_path = Path(log_path) if log_path else None
        self.diff_parser = DiffParser()

        self.graph = self._build_graph()
        self.app = self.graph.compile()
        logger.info("Initialized ReviewOrchestrator")

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(ReviewState)

        graph.add_node("fetch_diff", self._fetch_diff)
        graph.add_node("parse_diff", self._parse_diff)
        graph.add_node("check_registry", self._check_registry)
        graph.add_node("scan_files", self._scan_files)
        graph.add_node("batch_fix", self._batch_fix)
        graph.add_node("finish", self._finish)

        graph.set_entry_point("fetch_diff")
        graph.add_conditional_edges("fetch_diff", self._continue_or_finish,
            {"continue": "parse_diff", "finish": "finish"})
        graph.add_edge("parse_diff", "check_registry")
        graph.add_conditional_edges("check_registry", self._continue_or_finish,
            {"continue": "scan_files", "finish": "finish"})
        graph.add_conditional_edges("scan_files", self._should_fix,
            {"fix": "batch_fix", "skip_fix": "finish"})
        graph.add_edge("batch_fix", "finish")
        graph.add_edge("finish", END)

        return graph

    def _continue_or_finish(self, state: ReviewState) -> Literal["continue", "finish"]:
        return "finish" if state.get("error") else "continue"

    def _fetch_diff(self, state: ReviewState) -> dict:
        logs = state.get("logs", [])
        scope = state["scope"]
        logs.append(add_log(state, "review_started", scope=scope.describe()))

        if state.get("diff_text"):
            logs.append(add_log(state, "diff_provided", bytes=len(state["diff_text"])))
            return {"logs": logs}

        try:
            diff_text = self.git.get_diff(scope)
        except DiffwardenError as e:
            logs.append(add_log(state, "error", stage="fetch_diff", message=str(e)))
            return {"error": str(e), "fatal": True, "logs": logs}

        logs.append(add_log(state, "diff_fetched", bytes=len(diff_text)))
        return {"diff_text": diff_text, "logs": logs}

    def _parse_diff(self, state: ReviewState) -> dict:
        logs = state.get("logs", [])
        warnings = state.get("warnings", [])
        parsed = self.diff_parser.parse(state.get("diff_text", ""))
        for error in parsed.errors:
            warnings.append(str(error))
            logs.append(add_log(state, "parse_warning", file=error.file_path, message=error.message))
        logs.append(add_log(state, "diff_parsed", files_count=len(parsed.files)))
        return {"parsed": parsed, "warnings": warnings, "logs": logs}

    def _check_registry(self, state: ReviewState) -> dict:
        logs = state.get("logs", [])
        warnings = state.get("warnings", [])
        warnings.extend(self.registry.warnings)
        if self.registry.is_empty():
            message = str(EmptyRuleRegistryError("No usable rules are loaded; nothing to match against"))
            logs.append(add_log(state, "error", stage="check_registry", message=message))
            return {"error": message, "fatal": True, "warnings": warnings, "logs": logs}
        logs.append(add_log(state, "registry_ready", usable_rules=self.registry.usable_rule_count()))
        return {"warnings": warnings, "logs": logs}

    def _scan_files(self, state: ReviewState) -> dict:
        logs = state.get("logs", [])
        report = self.review_agent.review(state["parsed"], min_severity=self.min_severity)
        for v in report.violations:
            logs.append(add_log(state, "rule_triggered", rule_id=v.rule_id, file=v.file_path,
                               line=v.line_number, severity=v.severity.value))
        return {"report": report, "logs": logs}

    def _should_fix(self, state: ReviewState) -> Literal["fix", "skip_fix"]:
        report = state.get("report")
        if not self.auto_fix or self.fix_agent is None or report is None:
            return "skip_fix"
        return "fix" if report.summary.ai_fixable_count else "skip_fix"

    def _batch_fix(self, state: ReviewState) -> dict:
        logs = state.get("logs", [])
        parsed = state.get("parsed")
        files: dict[str, FileChange] = {f.file_path: f for f in parsed.files} if parsed else {}
        fix_report = self.fix_agent.run_batch(state["report"].violations, files=files, dry_run=self.dry_run)
        for outcome in fix_report.outcomes:
            logs.append(add_log(state, "fix_" + outcome.status.value, rule_id=outcome.violation.rule_id,
                               file=outcome.violation.file_path, line=outcome.violation.line_number))
        return {"fix_report": fix_report, "logs": logs}

    def _finish(self, state: ReviewState) -> dict:
        logs = state.get("logs", [])
        report = state.get("report")
        logs.append(add_log(state, "review_completed",
                           total_violations=report.summary.total_violations if report else 0,
                           has_critical=report.has_critical if report else False,
                           error=state.get("error")))
        if self.log_path:
            self._save_logs(logs)
        return {"logs": logs}

    def _save_logs(self, logs: list[dict]) -> None:
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a") as f:
                for log in logs:
                    f.write(json.dumps(log) + "\n")
        except OSError as e:
            logger.error(f"Failed to save logs: {e}")

    def run(self, scope: DiffScope | None = None, diff_text: str = "") -> ReviewState:
        initial_state: ReviewState = {
            "scope": scope or DiffScope.head(), "diff_text": diff_text, "parsed": None,
            "report": None, "fix_report": None, "warnings": [], "logs": [],
            "error": None, "fatal": False,
        }
        return self.app.invoke(initial_state)
