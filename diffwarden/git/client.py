"""Git client for retrieving unified diffs from a working tree."""

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from diffwarden.errors import GitCommandError

logger = logging.getLogger(__name__)


class ScopeKind(str, Enum):
    """Comparison basis for a scan."""
    HEAD = "head"
    STAGED = "staged"
    UNSTAGED = "unstaged"
    SINCE = "since"


@dataclass(frozen=True)
class DiffScope:
    kind: ScopeKind = ScopeKind.HEAD
    ref: Optional[str] = None

    @classmethod
    def head(cls) -> "DiffScope":
        return cls(ScopeKind.HEAD)

    @classmethod
    def staged(cls) -> "DiffScope":
        return cls(ScopeKind.STAGED)

    @classmethod
    def unstaged(cls) -> "DiffScope":
        return cls(ScopeKind.UNSTAGED)

    @classmethod
    def since(cls, ref: str) -> "DiffScope":
        if not ref:
            raise ValueError("a reference is required for a since-ref scope")
        return cls(ScopeKind.SINCE, ref)

    def git_args(self) -> list[str]:
        """Arguments appended to `git diff` for this scope."""
        if self.kind == ScopeKind.STAGED:
            return ["--cached"]
        if self.kind == ScopeKind.UNSTAGED:
            return []
        if self.kind == ScopeKind.SINCE:
            return [self.ref]
        return ["HEAD"]

    def describe(self) -> str:
        if self.kind == ScopeKind.SINCE:
            return f"changes since {self.ref}"
        return {
            ScopeKind.HEAD: "changes against HEAD",
            ScopeKind.STAGED: "staged changes",
            ScopeKind.UNSTAGED: "unstaged changes",
        }[self.kind]


class GitClient:
    """Thin wrapper around the git command line."""

    DIFF_FLAGS = ["--no-color", "--no-ext-diff", "-M"]

    def __init__(self, repo_path: Path | str = ".", git_binary: str = "git", timeout: float = 60.0):
        self.repo_path = Path(repo_path)
        self.git_binary = git_binary
        self.timeout = timeout

    def _run(self, *args: str) -> str:
        command = [self.git_binary, *args]
        logger.debug(f"Running {' '.join(command)} in {self.repo_path}")
        try:
            result = subprocess.run(
                command,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise GitCommandError(command, 127, str(e)) from e
        except subprocess.TimeoutExpired as e:
            raise GitCommandError(command, -1, f"timed out after {self.timeout}s") from e

        if result.returncode != 0:
            raise GitCommandError(command, result.returncode, result.stderr)
        return result.stdout

    def repo_root(self) -> Path:
        """Absolute path of the repository's top-level directory."""
        return Path(self._run("rev-parse", "--show-toplevel").strip())

    def is_repository(self) -> bool:
        try:
            return self._run("rev-parse", "--is-inside-work-tree").strip() == "true"
        except GitCommandError:
            return False

    def get_diff(self, scope: DiffScope | None = None, paths: Optional[list[str]] = None) -> str:
        """
        Get unified diff text for a scope.

        Args:
            scope: Comparison basis. Defaults to the diff against HEAD.
            paths: Optional pathspecs limiting the diff.

        Returns:
            Raw `git diff` output.
        """
        scope = scope or DiffScope.head()
        args = ["diff", *self.DIFF_FLAGS, *scope.git_args()]
        if paths:
            args.extend(["--", *paths])
        diff_text = self._run(*args)
        logger.info(f"Fetched {scope.describe()} ({len(diff_text)} bytes)")
        return diff_text
