"""Real merges, diff statistics and deterministic conflict resolution."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from git_workers.errors import (
    GitTimeout,
    InvalidWorkerUpdate,
    UnexpectedMergeFailure,
    UnresolvedConflicts,
)
from git_workers.git.models import (
    BranchStats,
    MergeResult,
    ResolutionOutcome,
    ResolutionStrategy,
    StatusEntry,
)
from git_workers.git.parsing import parse_numstat, side_has_file
from git_workers.git.probe import ConflictProber
from git_workers.git.runner import GitClient

logger = logging.getLogger(__name__)


class MergeEngine:
    """Merges a worker branch into its target once a dry run says it is clean."""

    def __init__(self, git: GitClient, prober: ConflictProber) -> None:
        self.git = git
        self.prober = prober

    def branch_stats(self, repo_path: Path, branch_name: str, target_branch: str) -> BranchStats:
        """Changes ``branch_name`` introduces relative to its merge base with the target."""

        output = self.git.run(repo_path, "diff", "--numstat", f"{target_branch}...{branch_name}")
        return parse_numstat(output)

    def merge_branch(
        self,
        repo_path: Path,
        branch_name: str,
        target_branch: str | None = None,
        commit_message: str | None = None,
    ) -> MergeResult:
        message = commit_message or f"Merge {branch_name}: Worker task complete"
        with self.prober.lock(repo_path).hold():
            target = target_branch or self.git.current_branch(repo_path)
            conflicts = self.prober.check_conflicts(repo_path, branch_name, target)
            if conflicts:
                return MergeResult(success=False, conflicts=conflicts)

            # Measured before merging so the merge commit itself is not counted.
            stats = self.branch_stats(repo_path, branch_name, target)
            with self.prober.checked_out(repo_path, target):
                try:
                    result = self.git.run_unchecked(
                        repo_path,
                        "merge",
                        "--no-ff",
                        "--no-edit",
                        "-m",
                        message,
                        branch_name,
                    )
                except GitTimeout:
                    self.prober.abort_if_merging(repo_path)
                    raise
                if result.returncode != 0:
                    return self._recover_failed_merge(repo_path, branch_name, result)
                commit_hash = self.git.current_commit(repo_path)

        logger.info(
            "Merged %s into %s at %s (files=%d +%d -%d)",
            branch_name,
            target,
            commit_hash,
            stats.files_changed,
            stats.insertions,
            stats.deletions,
        )
        return MergeResult(success=True, stats=stats, commit_hash=commit_hash)

    def _recover_failed_merge(
        self,
        repo_path: Path,
        branch_name: str,
        result: subprocess.CompletedProcess[str],
    ) -> MergeResult:
        try:
            entries = self.prober.unmerged_entries(repo_path)
            conflicts = self.prober.describe_conflicts(repo_path, entries, result.stdout)
        finally:
            self.prober.abort_if_merging(repo_path)
        if conflicts:
            return MergeResult(success=False, conflicts=conflicts)
        diagnostics = (result.stderr or result.stdout).strip()
        logger.warning("Merge of %s failed unexpectedly: %s", branch_name, diagnostics)
        raise UnexpectedMergeFailure(f"Merge of {branch_name} failed", diagnostics=diagnostics)


class ConflictResolver:
    """Resolves a worker branch against its target by taking one side wholesale.

    The target is merged into the worker branch inside the worker's own
    worktree, so ``ours`` means the worker's changes and ``theirs`` the
    target's.  The resolution is committed on the worker branch; the caller
    then merges that branch normally.
    """

    def __init__(self, git: GitClient, prober: ConflictProber) -> None:
        self.git = git
        self.prober = prober

    def resolve(  # noqa: PLR0913
        self,
        worktree_path: Path,
        target_branch: str,
        strategy: ResolutionStrategy,
        *,
        files: list[str] | None = None,
        commit_message: str | None = None,
    ) -> ResolutionOutcome:
        message = commit_message or (
            f"Resolve conflicts with {target_branch}: keep "
            f"{'worker' if strategy is ResolutionStrategy.OURS else target_branch} changes"
        )
        self.prober.ensure_clean(worktree_path)
        try:
            result = self.git.run_unchecked(
                worktree_path,
                "merge",
                "--no-ff",
                "--no-commit",
                target_branch,
            )
            if result.returncode == 0:
                return ResolutionOutcome(
                    strategy=strategy,
                    resolved_files=[],
                    commit_hash=self._commit_if_merging(worktree_path, message),
                )

            entries = self.prober.unmerged_entries(worktree_path)
            if not entries:
                raise UnexpectedMergeFailure(
                    f"Merging {target_branch} into {worktree_path} failed",
                    diagnostics=(result.stderr or result.stdout).strip(),
                )
            selected = _select_entries(entries, files)
            for entry in selected:
                self._take_side(worktree_path, entry, strategy)

            remaining = self.prober.unmerged_entries(worktree_path)
            if remaining:
                raise UnresolvedConflicts([entry.path for entry in remaining])
            commit_hash = self._commit_if_merging(worktree_path, message)
        finally:
            self.prober.abort_if_merging(worktree_path)

        logger.info(
            "Resolved %d conflicted file(s) in %s using %s",
            len(selected),
            worktree_path,
            strategy.value,
        )
        return ResolutionOutcome(
            strategy=strategy,
            resolved_files=[entry.path for entry in selected],
            commit_hash=commit_hash,
        )

    def _take_side(
        self,
        worktree_path: Path,
        entry: StatusEntry,
        strategy: ResolutionStrategy,
    ) -> None:
        ours = strategy is ResolutionStrategy.OURS
        if side_has_file(entry.code, ours=ours):
            self.git.run(worktree_path, "checkout", f"--{strategy.value}", "--", entry.path)
            self.git.run(worktree_path, "add", "--", entry.path)
        else:
            self.git.run(worktree_path, "rm", "--quiet", "--", entry.path)

    def _commit_if_merging(self, worktree_path: Path, message: str) -> str | None:
        if not self.git.merge_in_progress(worktree_path):
            return None
        self.git.run(worktree_path, "commit", "--no-edit", "--no-verify", "-m", message)
        return self.git.current_commit(worktree_path)


def _select_entries(entries: list[StatusEntry], files: list[str] | None) -> list[StatusEntry]:
    if not files:
        return entries
    by_path = {entry.path: entry for entry in entries}
    unknown = [path for path in files if path not in by_path]
    if unknown:
        raise InvalidWorkerUpdate("Files are not in conflict: " + ", ".join(unknown))
    return [by_path[path] for path in files]
