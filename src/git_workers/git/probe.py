"""Speculative dry-run merges that classify mergeability without mutating the repo."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from git_workers.errors import DirtyWorkingTree, UnexpectedMergeFailure
from git_workers.git.locks import MAIN_WORKTREE_SCOPE, RepoLock, RepoLockRegistry
from git_workers.git.models import ConflictInfo, ConflictType, StatusEntry
from git_workers.git.parsing import (
    classify_conflict,
    extract_first_conflict,
    parse_status_porcelain,
    renamed_conflict_paths,
)
from git_workers.git.runner import GitClient

logger = logging.getLogger(__name__)


class ConflictProber:
    """Runs ``merge --no-commit --no-ff`` in the main worktree and always aborts it."""

    def __init__(self, git: GitClient, locks: RepoLockRegistry) -> None:
        self.git = git
        self.locks = locks

    def lock(self, repo_path: Path) -> RepoLock:
        return self.locks.lock_for(self.git.common_dir(repo_path), MAIN_WORKTREE_SCOPE)

    def check_conflicts(
        self,
        repo_path: Path,
        branch_name: str,
        target_branch: str | None = None,
    ) -> list[ConflictInfo]:
        """Return conflicts a merge of ``branch_name`` into the target would produce.

        An empty list means the merge is clean.  HEAD, index and working tree
        are identical before and after the call.
        """

        with self.lock(repo_path).hold():
            self.ensure_clean(repo_path)
            with self.checked_out(repo_path, target_branch):
                conflicts = self._dry_run(repo_path, branch_name)
        if conflicts:
            logger.info(
                "Dry-run merge of %s found %d conflict(s): %s",
                branch_name,
                len(conflicts),
                ", ".join(conflict.file for conflict in conflicts),
            )
        return conflicts

    def ensure_clean(self, path: Path) -> None:
        if self.git.merge_in_progress(path):
            raise DirtyWorkingTree(str(path), "a merge is already in progress")
        output = self.git.run_raw(path, "status", "--porcelain", "-z", "--untracked-files=no")
        entries = parse_status_porcelain(output)
        if entries:
            raise DirtyWorkingTree(
                str(path),
                "uncommitted changes in " + ", ".join(entry.path for entry in entries[:5]),
            )

    @contextmanager
    def checked_out(self, repo_path: Path, target_branch: str | None) -> Iterator[str]:
        """Check out ``target_branch`` for the duration of the block, then restore."""

        current = self.git.current_branch(repo_path)
        restore_ref = current if current != "HEAD" else self.git.current_commit(repo_path)
        target = target_branch or current
        switched = target != current
        if switched:
            self.git.run(repo_path, "checkout", "--quiet", target)
        try:
            yield target
        finally:
            if switched:
                self.git.run(repo_path, "checkout", "--quiet", restore_ref)

    def unmerged_entries(self, path: Path) -> list[StatusEntry]:
        output = self.git.run_raw(path, "status", "--porcelain", "-z", "--untracked-files=no")
        return [entry for entry in parse_status_porcelain(output) if entry.is_unmerged]

    def describe_conflicts(
        self,
        path: Path,
        entries: list[StatusEntry],
        merge_output: str = "",
    ) -> list[ConflictInfo]:
        renamed = renamed_conflict_paths(merge_output)
        return [self._describe(path, entry, renamed=entry.path in renamed) for entry in entries]

    def abort_if_merging(self, path: Path) -> bool:
        if not self.git.merge_in_progress(path):
            return False
        self.git.run(path, "merge", "--abort")
        return True

    def _dry_run(self, repo_path: Path, branch_name: str) -> list[ConflictInfo]:
        try:
            result = self.git.run_unchecked(
                repo_path,
                "merge",
                "--no-commit",
                "--no-ff",
                branch_name,
            )
            if result.returncode == 0:
                return []
            entries = self.unmerged_entries(repo_path)
            if not entries:
                raise UnexpectedMergeFailure(
                    f"Dry-run merge of {branch_name} failed",
                    diagnostics=(result.stderr or result.stdout).strip(),
                )
            return self.describe_conflicts(repo_path, entries, result.stdout)
        finally:
            self.abort_if_merging(repo_path)

    def _describe(self, path: Path, entry: StatusEntry, *, renamed: bool) -> ConflictInfo:
        conflict = ConflictInfo(
            file=entry.path,
            type=classify_conflict(entry.code, renamed=renamed),
            status_code=entry.code,
        )
        if conflict.type is not ConflictType.CONTENT:
            return conflict
        try:
            content = (path / entry.path).read_text("utf-8", errors="replace")
        except OSError:
            logger.debug("Could not read conflicted file %s", entry.path, exc_info=True)
            return conflict
        region = extract_first_conflict(content)
        conflict.ours_content = region.ours
        conflict.theirs_content = region.theirs
        conflict.conflict_lines = region.marker_count
        return conflict
