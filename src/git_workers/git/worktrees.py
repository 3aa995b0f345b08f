"""Worktree store: isolated working directory + branch per task."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from git_workers.errors import (
    BranchCollision,
    GitCommandError,
    NotAGitRepo,
    PathCollision,
)
from git_workers.git.models import WorktreeInfo, WorktreeRemoval
from git_workers.git.parsing import parse_worktree_list
from git_workers.git.runner import GitClient

logger = logging.getLogger(__name__)

PROTECTED_BRANCHES = frozenset({"main", "master"})


class WorktreeStore:
    """Creates, lists and removes git worktrees for one or more repositories."""

    def __init__(self, git: GitClient) -> None:
        self.git = git

    def create(self, repo_path: Path, worktree_path: Path, branch_name: str) -> WorktreeInfo:
        """Create ``branch_name`` from current HEAD checked out at ``worktree_path``."""

        if not self.git.is_repo(repo_path):
            raise NotAGitRepo(str(repo_path))
        if worktree_path.exists():
            raise PathCollision(str(worktree_path))
        if self.git.branch_exists(repo_path, branch_name):
            raise BranchCollision(branch_name)

        self.git.run(repo_path, "worktree", "add", str(worktree_path), "-b", branch_name)
        commit = self.git.current_commit(worktree_path)
        logger.info("Created worktree %s on branch %s at %s", worktree_path, branch_name, commit)
        return WorktreeInfo(
            path=str(worktree_path),
            branch=branch_name,
            commit=commit,
            is_main=False,
        )

    def copy_workflow_files(
        self,
        repo_path: Path,
        worktree_path: Path,
        paths: tuple[str, ...],
    ) -> list[str]:
        """Copy untracked agent workflow files into a worktree where missing."""

        copied: list[str] = []
        for relative in paths:
            source = repo_path / relative
            destination = worktree_path / relative
            if not source.exists() or destination.exists():
                continue
            if source.is_dir():
                shutil.copytree(source, destination)
            else:
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, destination)
            copied.append(relative)
        return copied

    def remove(
        self,
        repo_path: Path,
        worktree_path: Path,
        *,
        delete_branch: bool = False,
        branch_name: str | None = None,
    ) -> WorktreeRemoval:
        """Remove a worktree, falling back to a forced delete; safe to call twice.

        ``branch_name`` is used when the worktree is already gone and its
        branch can no longer be read from it.
        """

        if delete_branch and worktree_path.exists():
            try:
                branch_name = self.git.current_branch(worktree_path)
            except GitCommandError:
                logger.debug("Could not read branch of %s", worktree_path, exc_info=True)

        if worktree_path.exists():
            try:
                self.git.run(repo_path, "worktree", "remove", "--force", str(worktree_path))
            except GitCommandError as error:
                logger.warning(
                    "git worktree remove failed for %s, deleting directory: %s",
                    worktree_path,
                    error,
                )
                shutil.rmtree(worktree_path, ignore_errors=True)

        self.git.run(repo_path, "worktree", "prune")

        branch_deleted = False
        if (
            delete_branch
            and branch_name
            and branch_name not in PROTECTED_BRANCHES
            and self.git.branch_exists(repo_path, branch_name)
        ):
            try:
                self.git.run(repo_path, "branch", "-D", branch_name)
                branch_deleted = True
            except GitCommandError as error:
                logger.warning("Could not delete branch %s: %s", branch_name, error)

        removed = not worktree_path.exists()
        if removed:
            logger.info("Removed worktree %s", worktree_path)
        return WorktreeRemoval(
            worktree_removed=removed,
            branch_deleted=branch_deleted,
            branch_name=branch_name,
        )

    def list(self, repo_path: Path) -> list[WorktreeInfo]:
        """Enumerate worktrees with their branch and commit."""

        return parse_worktree_list(self.git.run(repo_path, "worktree", "list", "--porcelain"))

    def default_branch(self, repo_path: Path) -> str:
        for candidate in ("main", "master"):
            if self.git.branch_exists(repo_path, candidate):
                return candidate
        return self.git.current_branch(repo_path)
