"""Diff-scoped anti-pattern review for git changes."""

__version__ = "0.1.0"
