"""Git diff retrieval and diff data models."""

from .client import DiffScope, GitClient

__all__ = ["DiffScope", "GitClient"]
