"""Parallel coding agents against one git repository, one worktree per task."""

__version__ = "0.1.0"
