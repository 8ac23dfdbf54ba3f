"""Named heuristics for rules that a single-line regex cannot express.

Every detector receives the whole FileChange and returns ``(line_number,
matched_text)`` pairs over its visible (added + context) lines. Only the
lines the diff shows are inspected; the matcher keeps pairs that land on
added lines.
"""

import re
import logging
from typing import Callable

from diffwarden.git.models import ChangedLine, FileChange

logger = logging.getLogger(__name__)

Detection = tuple[int, str]
CustomDetector = Callable[[FileChange], list[Detection]]


def _strip_comment(content: str, marker: str) -> str:
    return content.split(marker, 1)[0]


# Python

PY_IMPORT = re.compile(r"^\s*import\s+(.+)$")
PY_FROM_IMPORT = re.compile(r"^\s*from\s+([\w.]+)\s+import\s+(.+)$")


def _python_bound_names(line: str) -> list[str]:
    code = _strip_comment(line, "#").strip().rstrip("\\").strip()
    from_match = PY_FROM_IMPORT.match(code)
    if from_match:
        module, names = from_match.groups()
        if module == "__future__":
            return []
        names = names.strip().strip("()")
        bound = []
        for part in names.split(","):
            part = part.strip()
            if not part or part == "*":
                continue
            bound.append(part.split(" as ")[-1].strip())
        return bound

    import_match = PY_IMPORT.match(code)
    if import_match:
        bound = []
        for part in import_match.group(1).split(","):
            part = part.strip()
            if not part:
                continue
            if " as " in part:
                bound.append(part.split(" as ")[-1].strip())
            else:
                bound.append(part.split(".")[0])
        return bound
    return []


def python_unused_imports(file_change: FileChange) -> list[Detection]:
    """Imported names that no other visible line of the file mentions."""
    lines = file_change.visible_lines()
    found = []
    for line in lines:
        for name in _python_bound_names(line.content):
            usage = re.compile(rf"\b{re.escape(name)}\b")
            used = any(
                usage.search(_strip_comment(other.content, "#"))
                for other in lines
                if other is not line
            )
            if not used:
                found.append((line.new_line_number, name))
    return found


# Elixir

EX_SPLIT_BINDING = re.compile(r"\b([a-z_]\w*)\s*=\s*String\.split\(")
EX_POSITIONAL_ACCESS = re.compile(r"\b(?:Enum\.at\(\s*([a-z_]\w*)\s*,\s*-?\d+\s*\)|List\.(?:first|last)\(\s*([a-z_]\w*)\s*\))")
EX_FUNCTION_HEAD = re.compile(r"^\s*defp?\s+([a-z_]\w*[?!]?)\s*\((.*?)\)(?:\s+when\s+(.+?))?\s*(?:,\s*do:|do\b)")
EX_MAP_PATTERN = re.compile(r"%[\w.]*\{([^{}]*)\}")
EX_KEY_BINDING = re.compile(r"(?:\w+:\s*|\"[^\"]*\"\s*=>\s*)([a-z_]\w*)")

MIN_CLAUSE_EXTRACTIONS = 2


def elixir_non_assertive_pattern_matching(file_change: FileChange) -> list[Detection]:
    """Positional access into the result of String.split instead of a match."""
    lines = file_change.visible_lines()
    split_vars: set[str] = set()
    for line in lines:
        split_vars.update(EX_SPLIT_BINDING.findall(_strip_comment(line.content, "#")))

    found = []
    for line in lines:
        for match in EX_POSITIONAL_ACCESS.finditer(_strip_comment(line.content, "#")):
            var = match.group(1) or match.group(2)
            if var in split_vars:
                found.append((line.new_line_number, match.group(0)))
    return found


def elixir_complex_extractions_in_clauses(file_change: FileChange) -> list[Detection]:
    """
    Multi-clause functions whose heads extract map or struct fields that the
    guard never looks at.

    A head is reported when its function has at least two visible clauses
    and it binds MIN_CLAUSE_EXTRACTIONS or more variables out of ``%{}``
    patterns, at least one of them unused by the ``when`` guard.
    """
    heads: list[tuple[ChangedLine, str, str, str]] = []
    for line in file_change.visible_lines():
        match = EX_FUNCTION_HEAD.match(_strip_comment(line.content, "#"))
        if match:
            heads.append((line, match.group(1), match.group(2), match.group(3) or ""))

    clause_counts: dict[str, int] = {}
    for _, name, _, _ in heads:
        clause_counts[name] = clause_counts.get(name, 0) + 1

    found = []
    for line, name, args, guard in heads:
        if clause_counts[name] < 2:
            continue
        extracted = []
        for pattern in EX_MAP_PATTERN.finditer(args):
            extracted.extend(EX_KEY_BINDING.findall(pattern.group(1)))
        if len(extracted) < MIN_CLAUSE_EXTRACTIONS:
            continue
        if any(not re.search(rf"\b{re.escape(var)}\b", guard) for var in extracted):
            found.append((line.new_line_number, line.content.strip()))
    return found


# SQL

SQL_REFERENCES = re.compile(r"\bREFERENCES\b", re.IGNORECASE)
SQL_ADD_COLUMN = re.compile(r"\bADD\s+(?:COLUMN\s+)?(?:IF\s+NOT\s+EXISTS\s+)?\"?(\w+)\"?", re.IGNORECASE)
SQL_LEADING_IDENTIFIER = re.compile(r"^\s*\"?(\w+)\"?\s+\w")
SQL_KEYWORDS = {"CONSTRAINT", "FOREIGN", "ALTER", "CREATE", "PRIMARY", "REFERENCES"}
SQL_FOREIGN_KEY = re.compile(r"\bFOREIGN\s+KEY\s*\(\s*\"?(\w+)\"?", re.IGNORECASE)
SQL_CREATE_INDEX = re.compile(r"\bCREATE\s+(?:UNIQUE\s+)?INDEX\b.*?\bON\s+[\w.\"]+\s*(?:USING\s+\w+\s*)?\(\s*\"?(\w+)\"?", re.IGNORECASE)
SQL_MUTATION_START = re.compile(r"^\s*(UPDATE\s+[\w.\"]+|DELETE\s+FROM\b)", re.IGNORECASE)
SQL_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)


def sql_missing_indexes(file_change: FileChange) -> list[Detection]:
    """Foreign key columns with no index whose leading column is that column."""
    lines = file_change.visible_lines()
    indexed = set()
    for line in lines:
        for match in SQL_CREATE_INDEX.finditer(_strip_comment(line.content, "--")):
            indexed.add(match.group(1).lower())

    found = []
    for line in lines:
        code = _strip_comment(line.content, "--")
        columns = SQL_FOREIGN_KEY.findall(code)
        if not columns and SQL_REFERENCES.search(code):
            added_match = SQL_ADD_COLUMN.search(code)
            leading_match = SQL_LEADING_IDENTIFIER.match(code)
            if added_match:
                columns = [added_match.group(1)]
            elif leading_match and leading_match.group(1).upper() not in SQL_KEYWORDS:
                columns = [leading_match.group(1)]
        for column in columns:
            if column.lower() not in indexed:
                found.append((line.new_line_number, column))
    return found


def sql_missing_where_clause(file_change: FileChange) -> list[Detection]:
    """UPDATE and DELETE statements that reach their terminating semicolon without WHERE."""
    found = []
    for hunk in file_change.hunks:
        statement: list[ChangedLine] = []
        for line in hunk.lines:
            code = _strip_comment(line.content, "--")
            if not statement and SQL_MUTATION_START.match(code):
                statement = [line]
            elif statement:
                statement.append(line)
            else:
                continue

            if ";" in code:
                text = " ".join(_strip_comment(l.content, "--") for l in statement)
                if not SQL_WHERE.search(text.split(";", 1)[0]):
                    found.append((statement[0].new_line_number, statement[0].content.strip()))
                statement = []
    return found


# TypeScript

TS_OVER_TYPED = re.compile(
    r"\b(?:const|let)\s+\w+\s*:\s*(?:"
    r"number\s*=\s*(?:-?\d[\d_]*(?:\.\d+)?\b|[\w.]+\.length\b)"
    r"|string\s*=\s*['\"`]"
    r"|boolean\s*=\s*(?:true|false)\b)"
)


def typescript_over_typing(file_change: FileChange) -> list[Detection]:
    """Primitive annotations on declarations initialized with a literal of that type."""
    found = []
    for line in file_change.visible_lines():
        for match in TS_OVER_TYPED.finditer(_strip_comment(line.content, "//")):
            found.append((line.new_line_number, match.group(0)))
    return found


# Zig

ZIG_FALLIBLE_FN = re.compile(r"\bfn\s+(\w+)\s*\([^)]*\)\s*[\w.]*!")
ZIG_ALLOCATION = re.compile(
    r"\b(?:const|var)\s+(\w+)\s*=\s*try\s+[\w.]+\.(?:alloc|allocSentinel|create|dupe|dupeZ|realloc)\s*\("
)


def zig_ignored_error_returns(file_change: FileChange) -> list[Detection]:
    """Calls to visible error-union functions without try, catch or return."""
    lines = file_change.visible_lines()
    fallible = set()
    for line in lines:
        fallible.update(ZIG_FALLIBLE_FN.findall(line.content))
    if not fallible:
        return []

    call = re.compile(r"(?<![\w.])(" + "|".join(re.escape(name) for name in sorted(fallible)) + r")\s*\(")
    found = []
    for line in lines:
        code = _strip_comment(line.content, "//")
        if ZIG_FALLIBLE_FN.search(code) or re.match(r"^\s*return\b", code):
            continue
        for match in call.finditer(code):
            prefix = code[:match.start()]
            if re.search(r"\btry\s*$", prefix) or "catch" in code[match.end():]:
                continue
            found.append((line.new_line_number, match.group(0).rstrip("(").strip() + "()"))
    return found


def zig_alloc_without_defer(file_change: FileChange) -> list[Detection]:
    """Allocations with no later defer/errdefer release and no ownership hand-off."""
    found = []
    for hunk in file_change.hunks:
        for idx, line in enumerate(hunk.lines):
            match = ZIG_ALLOCATION.search(_strip_comment(line.content, "//"))
            if not match:
                continue
            var = re.escape(match.group(1))
            release = re.compile(rf"\b(?:err)?defer\b.*\b(?:free|destroy)\s*\(\s*{var}\b")
            handed_off = re.compile(rf"^\s*return\s+{var}\b")
            later = [_strip_comment(l.content, "//") for l in hunk.lines[idx + 1:]]
            if not any(release.search(text) or handed_off.search(text) for text in later):
                found.append((line.new_line_number, match.group(0)))
    return found


CUSTOM_DETECTORS: dict[str, CustomDetector] = {
    "python_unused_imports": python_unused_imports,
    "elixir_non_assertive_pattern_matching": elixir_non_assertive_pattern_matching,
    "elixir_complex_extractions_in_clauses": elixir_complex_extractions_in_clauses,
    "sql_missing_indexes": sql_missing_indexes,
    "sql_missing_where_clause": sql_missing_where_clause,
    "typescript_over_typing": typescript_over_typing,
    "zig_ignored_error_returns": zig_ignored_error_returns,
    "zig_alloc_without_defer": zig_alloc_without_defer,
}
