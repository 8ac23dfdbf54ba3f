"""Parser for unified git diffs."""

import re
import logging
from typing import Optional

from diffwarden.errors import DiffParseError
from diffwarden.git.models import ChangeKind, ChangedLine, DiffHunk, FileChange, ParsedDiff

logger = logging.getLogger(__name__)

# Regex to match hunk headers like @@ -1,5 +1,7 @@
HUNK_HEADER_PATTERN = re.compile(
    r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$"
)
FILE_HEADER_PATTERN = re.compile(r'^diff --git "?a/(.+)"? "?b/(.+?)"?$')

DEV_NULL = "/dev/null"


def _strip_side_prefix(path: str) -> str:
    """Drop the a/ or b/ prefix and any trailing tab metadata from a ---/+++ path."""
    path = path.split("\t", 1)[0].strip()
    if path.startswith('"') and path.endswith('"'):
        path = path[1:-1]
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


class DiffParser:
    """Parser for unified diff format."""

    def parse(self, diff_text: str) -> ParsedDiff:
        """
        Parse multi-file diff output into per-file changes.

        A file whose hunk headers cannot be parsed is dropped and recorded
        in ``ParsedDiff.errors``; the remaining files are still returned.

        Args:
            diff_text: Output of `git diff`, or a single-file patch.

        Returns:
            ParsedDiff with the files in diff order.
        """
        parsed = ParsedDiff()
        for section in self._split_sections(diff_text):
            try:
                file_change = self._parse_section(section)
            except DiffParseError as e:
                logger.warning(f"Skipping unparseable diff section: {e}")
                parsed.errors.append(e)
                continue
            if file_change is not None:
                parsed.files.append(file_change)

        logger.debug(f"Parsed {len(parsed.files)} files, {len(parsed.errors)} errors")
        return parsed

    def parse_patch(self, file_path: str, patch: str) -> FileChange:
        """
        Parse the hunks of a single file's patch.

        Args:
            file_path: Name of the file.
            patch: Patch text starting at (or before) the first hunk header.

        Returns:
            FileChange with parsed hunks.

        Raises:
            DiffParseError: If a hunk header is malformed.
        """
        file_change = FileChange(file_path=file_path)
        file_change.hunks = self._parse_hunks(file_path, patch.split("\n"))
        logger.debug(f"Parsed {len(file_change.hunks)} hunks for {file_path}")
        return file_change

    def _split_sections(self, diff_text: str) -> list[list[str]]:
        """
        Split diff text into per-file line groups.

        A file starts at a ``diff --git`` line, or at a ``---``/``+++`` pair
        outside a hunk body when the diff has no git headers (``diff -u``).
        Hunk bodies are walked by their declared lengths so removed lines
        that look like file headers stay inside their hunk.
        """
        lines = diff_text.split("\n")
        sections: list[list[str]] = []
        current: Optional[list[str]] = None
        awaiting_paths = False
        old_remaining = new_remaining = 0

        for idx, line in enumerate(lines):
            if old_remaining > 0 or new_remaining > 0:
                if line.startswith("-"):
                    old_remaining -= 1
                elif line.startswith("+"):
                    new_remaining -= 1
                elif line.startswith(" ") or line == "":
                    old_remaining -= 1
                    new_remaining -= 1
                current.append(line)
                continue

            starts_file = line.startswith("diff --git ") or (
                line.startswith("--- ")
                and not awaiting_paths
                and idx + 1 < len(lines)
                and lines[idx + 1].startswith("+++ ")
            )
            if starts_file or (current is None and line.startswith("@@")):
                current = [line]
                sections.append(current)
                awaiting_paths = line.startswith("diff --git ")
            elif current is not None:
                current.append(line)
                if line.startswith("--- "):
                    awaiting_paths = False

            if line.startswith("@@"):
                awaiting_paths = False
                header_match = HUNK_HEADER_PATTERN.match(line)
                if header_match:
                    old_remaining = int(header_match.group(2) or 1)
                    new_remaining = int(header_match.group(4) or 1)
        return sections

    def _parse_section(self, lines: list[str]) -> Optional[FileChange]:
        file_change = FileChange(file_path="")

        header_match = FILE_HEADER_PATTERN.match(lines[0])
        if header_match:
            file_change.old_path = header_match.group(1)
            file_change.file_path = header_match.group(2)

        idx = 1 if lines[0].startswith("diff --git ") else 0
        while idx < len(lines) and not lines[idx].startswith("@@"):
            line = lines[idx]
            if line.startswith("--- "):
                old_path = _strip_side_prefix(line[4:])
                if old_path != DEV_NULL:
                    file_change.old_path = old_path
            elif line.startswith("+++ "):
                new_path = _strip_side_prefix(line[4:])
                if new_path == DEV_NULL:
                    file_change.is_deleted = True
                else:
                    file_change.file_path = new_path
            elif line.startswith("rename from "):
                file_change.old_path = line[len("rename from "):]
                file_change.is_rename = True
            elif line.startswith("rename to "):
                file_change.file_path = line[len("rename to "):]
                file_change.is_rename = True
            elif line.startswith("deleted file mode"):
                file_change.is_deleted = True
            elif line.startswith("Binary files ") or line.startswith("GIT binary patch"):
                file_change.is_binary = True
            idx += 1

        if not file_change.file_path:
            file_change.file_path = file_change.old_path or ""
        if not file_change.file_path:
            if idx < len(lines):
                raise DiffParseError("", "hunks found without a file header")
            return None

        if file_change.is_binary:
            return file_change

        file_change.hunks = self._parse_hunks(file_change.file_path, lines[idx:])
        return file_change

    def _parse_hunks(self, file_path: str, lines: list[str]) -> list[DiffHunk]:
        hunks: list[DiffHunk] = []
        current_hunk: Optional[DiffHunk] = None
        old_remaining = new_remaining = 0
        new_line_num = 0

        for line in lines:
            if line.startswith("@@"):
                header_match = HUNK_HEADER_PATTERN.match(line)
                if not header_match:
                    raise DiffParseError(file_path, f"malformed hunk header {line!r}")

                current_hunk = DiffHunk(
                    old_start=int(header_match.group(1)),
                    old_length=int(header_match.group(2) or 1),
                    new_start=int(header_match.group(3)),
                    new_length=int(header_match.group(4) or 1),
                    header=header_match.group(5).strip(),
                )
                hunks.append(current_hunk)
                old_remaining = current_hunk.old_length
                new_remaining = current_hunk.new_length
                new_line_num = current_hunk.new_start
                continue

            # Skip if no current hunk or the declared lengths are used up
            if current_hunk is None or (old_remaining <= 0 and new_remaining <= 0):
                continue

            if line.startswith("\\"):
                # "\ No newline at end of file"
                continue

            if line.startswith("+"):
                current_hunk.lines.append(ChangedLine(
                    file_path=file_path,
                    new_line_number=new_line_num,
                    content=line[1:],
                    change_kind=ChangeKind.ADDED,
                ))
                new_line_num += 1
                new_remaining -= 1
            elif line.startswith("-"):
                # Removed lines only advance the old side
                old_remaining -= 1
            elif line.startswith(" ") or line == "":
                current_hunk.lines.append(ChangedLine(
                    file_path=file_path,
                    new_line_number=new_line_num,
                    content=line[1:],
                    change_kind=ChangeKind.CONTEXT,
                ))
                new_line_num += 1
                old_remaining -= 1
                new_remaining -= 1

        return hunks

    def get_context_around_line(
        self,
        file_change: FileChange,
        line_number: int,
        context_lines: int = 3,
    ) -> tuple[list[ChangedLine], list[ChangedLine]]:
        """
        Get visible lines around a specific added line.

        Args:
            file_change: Parsed file change.
            line_number: Target new-side line number.
            context_lines: Number of lines before and after.

        Returns:
            Tuple of (lines before, lines after). Both empty if the line is
            not an added line of this file.
        """
        for hunk in file_change.hunks:
            for idx, line in enumerate(hunk.lines):
                if line.new_line_number == line_number and line.is_added:
                    start = max(0, idx - context_lines)
                    return hunk.lines[start:idx], hunk.lines[idx + 1:idx + 1 + context_lines]
        return [], []
