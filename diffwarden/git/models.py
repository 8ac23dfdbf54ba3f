"""Data models for diff-scoped rule matching."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Optional

from diffwarden.errors import DiffParseError


class Severity(str, Enum):
    """Severity levels for violations, ordered critical > major > warning."""
    CRITICAL = "critical"
    MAJOR = "major"
    WARNING = "warning"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, other: "Severity") -> bool:
        return self.rank >= other.rank


_SEVERITY_RANK = {
    Severity.CRITICAL: 3,
    Severity.MAJOR: 2,
    Severity.WARNING: 1,
}


class Language(str, Enum):
    """Languages covered by the rule corpus."""
    ELIXIR = "elixir"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    PYTHON = "python"
    RUST = "rust"
    ZIG = "zig"
    SQL = "sql"

    @classmethod
    def from_path(cls, file_path: str) -> Optional["Language"]:
        """Resolve a language from a file extension, or None if unsupported."""
        suffix = PurePosixPath(file_path).suffix.lower()
        return LANGUAGE_EXTENSIONS.get(suffix)

    @property
    def uses_indentation(self) -> bool:
        return self is Language.PYTHON


LANGUAGE_EXTENSIONS = {
    ".ex": Language.ELIXIR,
    ".exs": Language.ELIXIR,
    ".js": Language.JAVASCRIPT,
    ".jsx": Language.JAVASCRIPT,
    ".mjs": Language.JAVASCRIPT,
    ".cjs": Language.JAVASCRIPT,
    ".ts": Language.TYPESCRIPT,
    ".tsx": Language.TYPESCRIPT,
    ".py": Language.PYTHON,
    ".pyw": Language.PYTHON,
    ".pyi": Language.PYTHON,
    ".rs": Language.RUST,
    ".zig": Language.ZIG,
    ".sql": Language.SQL,
    ".psql": Language.SQL,
    ".mysql": Language.SQL,
}


class ChangeKind(str, Enum):
    ADDED = "added"
    CONTEXT = "context"
    REMOVED = "removed"


@dataclass
class ChangedLine:
    """A single new-side line of a diff hunk."""
    file_path: str
    new_line_number: int
    content: str
    change_kind: ChangeKind

    @property
    def is_added(self) -> bool:
        return self.change_kind == ChangeKind.ADDED


@dataclass
class DiffHunk:
    """Represents a hunk in a diff."""
    old_start: int
    old_length: int
    new_start: int
    new_length: int
    lines: list[ChangedLine] = field(default_factory=list)
    header: str = ""

    def added_lines(self) -> list[ChangedLine]:
        return [line for line in self.lines if line.is_added]


@dataclass
class FileChange:
    """Represents one changed file of a diff."""
    file_path: str
    hunks: list[DiffHunk] = field(default_factory=list)
    old_path: Optional[str] = None
    is_binary: bool = False
    is_rename: bool = False
    is_deleted: bool = False

    @property
    def language(self) -> Optional[Language]:
        return Language.from_path(self.file_path)

    def added_lines(self) -> list[ChangedLine]:
        """Get all added lines across all hunks."""
        added = []
        for hunk in self.hunks:
            added.extend(hunk.added_lines())
        return added

    def visible_lines(self) -> list[ChangedLine]:
        """Added and context lines in new-side order."""
        visible = []
        for hunk in self.hunks:
            visible.extend(hunk.lines)
        return visible


@dataclass
class ParsedDiff:
    """All files of a diff plus the file sections that failed to parse."""
    files: list[FileChange] = field(default_factory=list)
    errors: list[DiffParseError] = field(default_factory=list)

    @property
    def warnings(self) -> list[str]:
        return [str(error) for error in self.errors]


@dataclass
class Violation:
    """Represents a rule match on an added line."""
    rule_id: str
    file_path: str
    line_number: int
    matched_text: str
    severity: Severity
    fix_suggestion: str = ""
    ai_fixable: bool = False
    rule_name: str = ""
    language: Optional[Language] = None
    column: int = 0
    line_content: str = ""

    @property
    def key(self) -> tuple[str, int, str]:
        return (self.file_path, self.line_number, self.rule_id)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "language": self.language.value if self.language else None,
            "severity": self.severity.value,
            "file_path": self.file_path,
            "line_number": self.line_number,
            "column": self.column,
            "matched_text": self.matched_text,
            "line_content": self.line_content,
            "fix_suggestion": self.fix_suggestion,
            "ai_fixable": self.ai_fixable,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Violation":
        language = data.get("language")
        return cls(
            rule_id=data["rule_id"],
            file_path=data["file_path"],
            line_number=int(data["line_number"]),
            matched_text=data.get("matched_text", ""),
            severity=Severity(data["severity"]),
            fix_suggestion=data.get("fix_suggestion", ""),
            ai_fixable=bool(data.get("ai_fixable", False)),
            rule_name=data.get("rule_name", ""),
            language=Language(language) if language else None,
            column=int(data.get("column", 0)),
            line_content=data.get("line_content", ""),
        )


@dataclass
class FixRequest:
    """A violation plus the surrounding code handed to the external fixer."""
    violation: Violation
    context_before: list[str] = field(default_factory=list)
    context_after: list[str] = field(default_factory=list)
    language: Optional[Language] = None
    description: str = ""

    @property
    def original_text(self) -> str:
        return self.violation.line_content


@dataclass
class FixResult:
    """Result from the fix confidence scorer."""
    original_text: str
    fixed_text: str
    confidence: float
    structurally_valid: bool

    @property
    def is_high_confidence(self) -> bool:
        return self.structurally_valid and self.confidence >= HIGH_CONFIDENCE_THRESHOLD

    def to_dict(self) -> dict:
        return {
            "original_text": self.original_text,
            "fixed_text": self.fixed_text,
            "confidence": self.confidence,
            "structurally_valid": self.structurally_valid,
        }


HIGH_CONFIDENCE_THRESHOLD = 0.8


@dataclass
class ReviewSummary:
    """Summary of a review run."""
    total_violations: int = 0
    by_severity: dict[str, int] = field(default_factory=dict)
    by_rule: dict[str, int] = field(default_factory=dict)
    files_with_violations: int = 0
    affected_files: list[str] = field(default_factory=list)
    ai_fixable_count: int = 0

    @property
    def critical_count(self) -> int:
        return self.by_severity.get(Severity.CRITICAL.value, 0)

    @property
    def major_count(self) -> int:
        return self.by_severity.get(Severity.MAJOR.value, 0)

    @property
    def warning_count(self) -> int:
        return self.by_severity.get(Severity.WARNING.value, 0)

    def to_dict(self) -> dict:
        return {
            "total_violations": self.total_violations,
            "by_severity": dict(self.by_severity),
            "by_rule": dict(self.by_rule),
            "files_with_violations": self.files_with_violations,
            "affected_files": list(self.affected_files),
            "ai_fixable_count": self.ai_fixable_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReviewSummary":
        return cls(
            total_violations=int(data.get("total_violations", 0)),
            by_severity=dict(data.get("by_severity", {})),
            by_rule=dict(data.get("by_rule", {})),
            files_with_violations=int(data.get("files_with_violations", 0)),
            affected_files=list(data.get("affected_files", [])),
            ai_fixable_count=int(data.get("ai_fixable_count", 0)),
        )

    def to_markdown(self) -> str:
        """Generate a markdown summary of the review."""
        lines = [
            "## diffwarden review summary\n",
            "| Metric | Count |",
            "|--------|-------|",
            f"| Total Issues | {self.total_violations} |",
            f"| Critical | {self.critical_count} |",
            f"| Major | {self.major_count} |",
            f"| Warning | {self.warning_count} |",
            f"| Files Affected | {self.files_with_violations} |",
            f"| AI Fixable | {self.ai_fixable_count} |",
        ]

        if self.affected_files:
            lines.append("\n### Files with Issues\n")
            for f in self.affected_files:
                lines.append(f"- `{f}`")

        if self.by_rule:
            lines.append("\n### Rules Triggered\n")
            for rule_id, count in sorted(self.by_rule.items(), key=lambda item: (-item[1], item[0])):
                lines.append(f"- `{rule_id}`: {count}")

        if self.total_violations == 0:
            lines.append("\nNo issues found in the changed lines.")

        return "\n".join(lines)


@dataclass
class ReviewReport:
    """Ordered violations plus their summary."""
    violations: list[Violation] = field(default_factory=list)
    summary: ReviewSummary = field(default_factory=ReviewSummary)

    @property
    def has_critical(self) -> bool:
        return any(v.severity == Severity.CRITICAL for v in self.violations)

    def to_dict(self) -> dict:
        return {
            "violations": [v.to_dict() for v in self.violations],
            "summary": self.summary.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReviewReport":
        return cls(
            violations=[Violation.from_dict(v) for v in data.get("violations", [])],
            summary=ReviewSummary.from_dict(data.get("summary", {})),
        )
