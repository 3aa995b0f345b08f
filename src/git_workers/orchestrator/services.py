"""Use-case services for spawning, tracking and merging workers."""

from __future__ import annotations

import logging
import shlex
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from git_workers.config import Settings
from git_workers.errors import (
    ConflictsPersisted,
    GitCommandError,
    GitWorkersError,
    InvalidTransition,
    InvalidWorkerUpdate,
    MaxWorkersReached,
    PreconditionViolation,
    RepoLockTimeout,
    RepositoryNotRegistered,
    TaskAlreadyActive,
    UnexpectedMergeFailure,
    WorktreeCreationFailed,
)
from git_workers.git.locks import SPAWN_SCOPE, RepoLockRegistry
from git_workers.git.merge import ConflictResolver, MergeEngine
from git_workers.git.models import ConflictInfo, MergeResult, ResolutionStrategy, WorktreeRemoval
from git_workers.git.probe import ConflictProber
from git_workers.git.runner import GitClient
from git_workers.git.worktrees import WorktreeStore
from git_workers.orchestrator.lifecycle import (
    COMPLETABLE_STATUSES,
    NOT_STARTED_STATUSES,
    can_transition,
)
from git_workers.orchestrator.liveness import find_dead_workers
from git_workers.orchestrator.models import (
    CompleteResult,
    DeadWorkersReport,
    HeartbeatResult,
    HistoryWrite,
    MergeStatus,
    RepositoryView,
    ResolveResult,
    SignalCreate,
    SignalType,
    SignalView,
    SpawnRequest,
    SpawnResult,
    StopResult,
    WorkerCreate,
    WorkerEventView,
    WorkerHistoryView,
    WorkerListing,
    WorkerOutcome,
    WorkerStatus,
    WorkerView,
)
from git_workers.orchestrator.naming import (
    generate_branch_name,
    generate_worker_id,
    generate_worktree_path,
    next_free_slot,
    resolve_username,
    slugify,
)
from git_workers.orchestrator.repository import WorkerRepository
from git_workers.storage.common import utc_now

logger = logging.getLogger(__name__)

CONFLICT_OPTIONS = ["View Conflicts", "Keep Worker Changes", "Keep Main", "Abort"]
REVIEW_OPTIONS = ["Merge Now", "Review First", "Abort"]
NEXT_TASK_OPTIONS = ["Spawn Next Task", "Skip"]

RESOLVE_ABORT = "abort"


class WorkerOrchestrator:
    """Coordinates worktrees, the worker ledger and merges for one or more repositories."""

    def __init__(
        self,
        *,
        repository: WorkerRepository,
        settings: Settings,
        git: GitClient | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.git = git or GitClient(timeout_seconds=settings.git.command_timeout_seconds)
        self.locks = RepoLockRegistry(timeout_seconds=settings.git.lock_timeout_seconds)
        self.worktrees = WorktreeStore(self.git)
        self.prober = ConflictProber(self.git, self.locks)
        self.merge_engine = MergeEngine(self.git, self.prober)
        self.resolver = ConflictResolver(self.git, self.prober)

    # Spawning and queries

    def spawn(self, request: SpawnRequest) -> SpawnResult:
        """Create a worktree + branch for a task and record a ``pending`` worker."""

        repo = self.register_repository(request.repo_path)
        repo_path = Path(repo.path)
        username = self._username(repo_path, request.username)

        with self.locks.lock_for(self.git.common_dir(repo_path), SPAWN_SCOPE).hold():
            max_workers = self.settings.limits.max_workers
            if self.repository.count_active_workers(repo_id=repo.repo_id) >= max_workers:
                raise MaxWorkersReached(max_workers)
            existing = self.repository.get_active_worker_for_task(
                repo_id=repo.repo_id,
                task_id=request.task_id,
            )
            if existing is not None:
                raise TaskAlreadyActive(request.task_id, existing.worker_id)

            branch_name = generate_branch_name(username, request.task_id, request.task_title)
            worktree_path = self._free_worktree_path(repo, username)
            try:
                self.worktrees.create(repo_path, worktree_path, branch_name)
            except GitCommandError as error:
                raise WorktreeCreationFailed(error.stderr.strip() or str(error)) from error

            worker_id = generate_worker_id(username)
            try:
                copied = self.worktrees.copy_workflow_files(
                    repo_path,
                    worktree_path,
                    self.settings.git.copy_paths,
                )
                worker = self.repository.create_worker(
                    WorkerCreate(
                        worker_id=worker_id,
                        repo_id=repo.repo_id,
                        username=username,
                        task_id=request.task_id,
                        task_title=request.task_title,
                        worktree_path=str(worktree_path),
                        branch_name=branch_name,
                        next_task_id=request.next_task_id,
                        next_task_title=request.next_task_title,
                    ),
                )
            except OSError as error:
                self._discard_worktree(repo_path, worktree_path, branch_name)
                raise WorktreeCreationFailed(f"copying workflow files: {error}") from error
            except Exception:
                self._discard_worktree(repo_path, worktree_path, branch_name)
                raise

        self.repository.create_signal(
            repo_id=repo.repo_id,
            payload=SignalCreate(
                signal_type=SignalType.STATUS,
                message=f"Spawned {worker.worker_id} for {request.task_id}: {request.task_title}",
                details={
                    "branch_name": branch_name,
                    "worktree_path": str(worktree_path),
                    "copied_files": copied,
                },
                worker_id=worker.worker_id,
            ),
        )
        logger.info(
            "Spawned worker %s for task %s on %s at %s",
            worker.worker_id,
            request.task_id,
            branch_name,
            worktree_path,
        )
        return SpawnResult(
            worker_id=worker.worker_id,
            worktree_path=str(worktree_path),
            branch_name=branch_name,
            start_command=f"cd {shlex.quote(str(worktree_path))} && {self.settings.agent.command}",
        )

    def register_repository(self, repo_path: str | Path) -> RepositoryView:
        """Resolve any path inside a repository to its main worktree and track it."""

        root = self.git.repo_root(Path(repo_path).expanduser().resolve())
        common_dir = self.git.common_dir(root)
        main_root = common_dir.parent if common_dir.name == ".git" else root
        return self.repository.ensure_repository(path=str(main_root), name=main_root.name)

    def list_workers(self, repo_path: str | Path) -> WorkerListing:
        repo = self.register_repository(repo_path)
        workers = self.repository.list_workers(repo_id=repo.repo_id, active_only=True)
        max_workers = self.settings.limits.max_workers
        return WorkerListing(
            workers=workers,
            max_workers=max_workers,
            can_spawn_more=len(workers) < max_workers,
        )

    def get_worker(self, worker_id: str) -> WorkerView:
        return self.repository.require_worker(worker_id)

    def find_by_worktree(self, worktree_path: str | Path) -> WorkerView | None:
        """Look up the worker owning a worktree, e.g. from the agent's own cwd."""

        return self.repository.get_worker_by_worktree_path(
            str(Path(worktree_path).expanduser().resolve()),
        )

    def worker_events(self, worker_id: str) -> list[WorkerEventView]:
        self.repository.require_worker(worker_id)
        return self.repository.list_worker_events(worker_id)

    def worker_history(self, worker_id: str) -> list[WorkerHistoryView]:
        return self.repository.history_for_worker(worker_id)

    # Agent-facing updates

    def update(
        self,
        worker_id: str,
        *,
        status: WorkerStatus | None = None,
        message: str | None = None,
        progress: int | None = None,
    ) -> WorkerView:
        _validate_progress(progress)
        worker = self.repository.require_worker(worker_id)
        if status == WorkerStatus.MERGED:
            raise InvalidWorkerUpdate("Status merged is only reachable by completing the worker.")
        if worker.is_terminal:
            raise InvalidTransition(worker_id, worker.status.value, (status or worker.status).value)

        if status == WorkerStatus.ERROR:
            failed = self._fail_worker(worker, reason=message or "Reported error by agent")
            if failed is None:
                current = self.repository.require_worker(worker_id)
                raise InvalidTransition(worker_id, current.status.value, status.value)
            return failed

        if status is None or status == worker.status:
            updated = self.repository.update_worker_fields(
                worker_id=worker_id,
                message=message,
                progress=progress,
            )
        else:
            updated = self.repository.transition_worker(
                worker_id=worker_id,
                expected=worker.status,
                status_to=status,
                message=message,
                progress=progress,
            )
        if updated is None:
            current = self.repository.require_worker(worker_id)
            raise InvalidTransition(
                worker_id,
                current.status.value,
                (status or current.status).value,
            )
        return updated

    def heartbeat(
        self,
        worker_id: str,
        *,
        message: str | None = None,
        progress: int | None = None,
    ) -> HeartbeatResult:
        """Record liveness and tell the agent whether to pause or abort."""

        _validate_progress(progress)
        worker = self.repository.require_worker(worker_id)
        if not worker.is_terminal:
            worker = self.repository.touch_heartbeat(
                worker_id=worker_id,
                message=message,
                progress=progress,
            )
        return HeartbeatResult(
            status=worker.status,
            should_pause=worker.status == WorkerStatus.PAUSED,
            should_abort=worker.status == WorkerStatus.ERROR,
            next_task=worker.next_task,
        )

    def stop(
        self,
        worker_id: str,
        *,
        force: bool = False,
        delete_branch: bool = True,
    ) -> StopResult:
        """Tear down a worker's worktree and drop it from the ledger."""

        worker = self.repository.require_worker(worker_id)
        if worker.status == WorkerStatus.WORKING and not force:
            raise InvalidWorkerUpdate(
                f"Worker {worker_id} is still working; pass force to stop it anyway.",
            )
        repo = self._repository_of(worker)
        removal = self._cleanup_worktree(repo, worker, delete_branch=delete_branch)
        history = None if worker.is_terminal else HistoryWrite(outcome=WorkerOutcome.ABORTED)
        deleted = self.repository.delete_worker(worker_id=worker_id, history=history)
        self.repository.dismiss_worker_signals(worker_id=worker_id, signal_type=SignalType.HELP)
        self.repository.create_signal(
            repo_id=repo.repo_id,
            payload=SignalCreate(
                signal_type=SignalType.WARNING,
                message=f"Worker {worker_id} stopped ({worker.task_id}: {worker.task_title})",
                details={
                    "status": worker.status.value,
                    "worktree_removed": removal.worktree_removed,
                    "branch_deleted": removal.branch_deleted,
                },
                worker_id=worker_id,
            ),
        )
        logger.info(
            "Stopped worker %s (status=%s, worktree_removed=%s, branch_deleted=%s)",
            worker_id,
            worker.status.value,
            removal.worktree_removed,
            removal.branch_deleted,
        )
        return StopResult(
            deleted=deleted,
            worktree_removed=removal.worktree_removed,
            branch_deleted=removal.branch_deleted,
        )

    # Merging

    def complete(
        self,
        worker_id: str,
        *,
        auto_merge: bool | None = None,
        commit_message: str | None = None,
    ) -> CompleteResult:
        """Probe the worker branch against the target and merge it when clean."""

        worker = self.repository.require_worker(worker_id)
        if worker.status not in COMPLETABLE_STATUSES:
            raise InvalidTransition(worker_id, worker.status.value, WorkerStatus.MERGING.value)
        repo = self._repository_of(worker)
        repo_path = Path(repo.path)

        if worker.status in NOT_STARTED_STATUSES:
            worker = self._transition(worker, WorkerStatus.WORKING, "Started by completion request")
        worker = self._transition(worker, WorkerStatus.MERGING, "Checking for merge conflicts")

        with self._merge_guard(worker):
            target = self._target_branch(repo_path)
            conflicts = self.prober.check_conflicts(repo_path, worker.branch_name, target)
            if conflicts:
                self._report_conflicts(repo, worker, target, conflicts)
                return CompleteResult(
                    merge_status=MergeStatus.CONFLICTS,
                    conflicts=conflicts,
                    next_task=worker.next_task,
                )

            should_merge = self.settings.git.auto_merge if auto_merge is None else auto_merge
            if not should_merge:
                stats = self.merge_engine.branch_stats(repo_path, worker.branch_name, target)
                self._pause_worker(worker, f"Ready to merge into {target}")
                self.repository.create_signal(
                    repo_id=repo.repo_id,
                    payload=SignalCreate(
                        signal_type=SignalType.DECISION,
                        message=(
                            f"{worker.task_id} ({worker.branch_name}) merges cleanly into "
                            f"{target}: {stats.files_changed} file(s), "
                            f"+{stats.insertions} -{stats.deletions}"
                        ),
                        details={
                            "branch_name": worker.branch_name,
                            "target_branch": target,
                            "files": stats.files,
                        },
                        worker_id=worker_id,
                        action_required=True,
                        action_options=list(REVIEW_OPTIONS),
                    ),
                )
                return CompleteResult(
                    merge_status=MergeStatus.PENDING,
                    stats=stats,
                    next_task=worker.next_task,
                )

            result = self.merge_engine.merge_branch(
                repo_path,
                worker.branch_name,
                target,
                commit_message,
            )

        if not result.success:
            self._report_conflicts(repo, worker, target, result.conflicts)
            return CompleteResult(
                merge_status=MergeStatus.CONFLICTS,
                conflicts=result.conflicts,
                next_task=worker.next_task,
            )

        self._finish_merge(repo, worker, target, result, merge_conflicts=0)
        return CompleteResult(
            merge_status=MergeStatus.CLEAN,
            stats=result.stats,
            commit_hash=result.commit_hash,
            next_task=worker.next_task,
        )

    def resolve(
        self,
        worker_id: str,
        strategy: str,
        *,
        files: list[str] | None = None,
    ) -> ResolveResult:
        """Resolve a paused worker's conflicts by strategy, or abort the attempt."""

        worker = self.repository.require_worker(worker_id)
        repo = self._repository_of(worker)
        if strategy == RESOLVE_ABORT:
            return self._abort_merge(repo, worker)

        try:
            resolution = ResolutionStrategy(strategy)
        except ValueError as error:
            raise InvalidWorkerUpdate(
                f"Unknown resolution strategy {strategy!r}; expected ours, theirs or abort.",
            ) from error
        if worker.status != WorkerStatus.PAUSED:
            raise InvalidTransition(worker_id, worker.status.value, WorkerStatus.MERGING.value)

        repo_path = Path(repo.path)
        worker = self._transition(
            worker,
            WorkerStatus.MERGING,
            f"Resolving conflicts using {resolution.value}",
        )
        with self._merge_guard(worker), self.prober.lock(repo_path).hold():
            target = self._target_branch(repo_path)
            outcome = self.resolver.resolve(
                Path(worker.worktree_path),
                target,
                resolution,
                files=files,
            )
            result = self.merge_engine.merge_branch(repo_path, worker.branch_name, target)

        if not result.success:
            self._fail_worker(
                worker,
                reason=f"Conflicts persisted after resolving with {resolution.value}",
                merge_conflicts=len(result.conflicts),
            )
            raise ConflictsPersisted(worker.branch_name, result.conflicts)

        self.repository.dismiss_worker_signals(worker_id=worker_id, signal_type=SignalType.HELP)
        self._finish_merge(
            repo,
            worker,
            target,
            result,
            merge_conflicts=len(outcome.resolved_files),
        )
        return ResolveResult(
            resolved=True,
            merged=True,
            strategy=resolution.value,
            resolved_files=outcome.resolved_files,
            stats=result.stats,
            commit_hash=result.commit_hash,
        )

    # Liveness, history and signals

    def dead_workers(
        self,
        repo_path: str | Path,
        *,
        threshold_seconds: float | None = None,
        pending_threshold_seconds: float | None = None,
        now: datetime | None = None,
    ) -> DeadWorkersReport:
        """Report workers whose agent stopped reporting; state is left untouched."""

        repo = self.register_repository(repo_path)
        limits = self.settings.limits
        heartbeat_timeout = (
            limits.heartbeat_timeout_seconds if threshold_seconds is None else threshold_seconds
        )
        pending_timeout = (
            limits.pending_timeout_seconds
            if pending_threshold_seconds is None
            else pending_threshold_seconds
        )
        checked_at = now or utc_now()
        active = self.repository.list_workers(repo_id=repo.repo_id, active_only=True)
        return DeadWorkersReport(
            dead_workers=find_dead_workers(
                active,
                now=checked_at,
                pending_timeout_seconds=pending_timeout,
                heartbeat_timeout_seconds=heartbeat_timeout,
            ),
            threshold_seconds=heartbeat_timeout,
            pending_threshold_seconds=pending_timeout,
            checked_at=checked_at,
            total_active=len(active),
        )

    def history(self, repo_path: str | Path, *, limit: int = 50) -> list[WorkerHistoryView]:
        repo = self.register_repository(repo_path)
        return self.repository.list_history(repo_id=repo.repo_id, limit=limit)

    def signals(
        self,
        repo_path: str | Path,
        *,
        include_dismissed: bool = False,
    ) -> list[SignalView]:
        repo = self.register_repository(repo_path)
        return self.repository.list_signals(
            repo_id=repo.repo_id,
            include_dismissed=include_dismissed,
        )

    def dismiss_signal(self, signal_id: str) -> bool:
        return self.repository.dismiss_signal(signal_id)

    def dismiss_all_signals(self, repo_path: str | Path) -> int:
        repo = self.register_repository(repo_path)
        return self.repository.dismiss_all_signals(repo_id=repo.repo_id)

    # Internals

    @contextmanager
    def _merge_guard(self, worker: WorkerView) -> Iterator[None]:
        """Put a ``merging`` worker back to a resting state when a merge step fails."""

        try:
            yield
        except UnexpectedMergeFailure as error:
            self._fail_worker(worker, reason=str(error))
            raise
        except (PreconditionViolation, GitCommandError, RepoLockTimeout) as error:
            self._pause_worker(worker, str(error))
            raise

    def _finish_merge(
        self,
        repo: RepositoryView,
        worker: WorkerView,
        target: str,
        result: MergeResult,
        *,
        merge_conflicts: int,
    ) -> None:
        finalized = self.repository.finalize_worker(
            worker_id=worker.worker_id,
            expected=WorkerStatus.MERGING,
            status_to=WorkerStatus.MERGED,
            history=HistoryWrite(
                outcome=WorkerOutcome.MERGED,
                merge_conflicts=merge_conflicts,
                files_changed=result.stats.files_changed,
                insertions=result.stats.insertions,
                deletions=result.stats.deletions,
            ),
            message=f"Merged into {target} at {result.commit_hash}",
        )
        if finalized is None:
            logger.warning(
                "Worker %s merged at %s but its status changed concurrently",
                worker.worker_id,
                result.commit_hash,
            )
        self._cleanup_worktree(repo, worker, delete_branch=True)

        if result.stats.files_changed == 0:
            self.repository.create_signal(
                repo_id=repo.repo_id,
                payload=SignalCreate(
                    signal_type=SignalType.SUGGESTION,
                    message=(
                        f"{worker.task_id} ({worker.branch_name}) merged without changes; "
                        "check that the agent committed its work"
                    ),
                    details={"branch_name": worker.branch_name, "task_id": worker.task_id},
                    worker_id=worker.worker_id,
                ),
            )

        next_task = worker.next_task
        message = f"{worker.task_id} merged into {target}"
        if next_task is not None:
            message += f". Next task: {next_task.task_id} {next_task.task_title}"
        self.repository.create_signal(
            repo_id=repo.repo_id,
            payload=SignalCreate(
                signal_type=SignalType.DECISION,
                message=message,
                details={
                    "commit_hash": result.commit_hash,
                    "files_changed": result.stats.files_changed,
                    "insertions": result.stats.insertions,
                    "deletions": result.stats.deletions,
                    "next_task_id": next_task.task_id if next_task else None,
                },
                worker_id=worker.worker_id,
                action_required=next_task is not None,
                action_options=list(NEXT_TASK_OPTIONS) if next_task is not None else None,
            ),
        )

    def _report_conflicts(
        self,
        repo: RepositoryView,
        worker: WorkerView,
        target: str,
        conflicts: list[ConflictInfo],
    ) -> None:
        self._pause_worker(worker, f"Merge conflicts with {target} in {len(conflicts)} file(s)")
        self.repository.create_signal(
            repo_id=repo.repo_id,
            payload=SignalCreate(
                signal_type=SignalType.HELP,
                message=(
                    f"{worker.task_id} ({worker.branch_name}) conflicts with {target}: "
                    + ", ".join(conflict.file for conflict in conflicts)
                ),
                details={
                    "branch_name": worker.branch_name,
                    "target_branch": target,
                    "conflicts": [conflict.to_dict() for conflict in conflicts],
                },
                worker_id=worker.worker_id,
                action_required=True,
                action_options=list(CONFLICT_OPTIONS),
            ),
        )

    def _abort_merge(self, repo: RepositoryView, worker: WorkerView) -> ResolveResult:
        self.repository.dismiss_worker_signals(
            worker_id=worker.worker_id,
            signal_type=SignalType.HELP,
        )
        repo_path = Path(repo.path)
        with self.prober.lock(repo_path).hold():
            self.prober.abort_if_merging(repo_path)
            worktree_path = Path(worker.worktree_path)
            if worktree_path.exists():
                self.prober.abort_if_merging(worktree_path)
        self._pause_worker(worker, "Merge aborted by operator")
        self.repository.create_signal(
            repo_id=repo.repo_id,
            payload=SignalCreate(
                signal_type=SignalType.INFO,
                message=f"Merge of {worker.branch_name} aborted; worker paused",
                worker_id=worker.worker_id,
            ),
        )
        return ResolveResult(resolved=False, merged=False, aborted=True, strategy=RESOLVE_ABORT)

    def _transition(self, worker: WorkerView, status_to: WorkerStatus, message: str) -> WorkerView:
        updated = self.repository.transition_worker(
            worker_id=worker.worker_id,
            expected=worker.status,
            status_to=status_to,
            message=message,
        )
        if updated is None:
            current = self.repository.require_worker(worker.worker_id)
            raise InvalidTransition(worker.worker_id, current.status.value, status_to.value)
        return updated

    def _pause_worker(self, worker: WorkerView, message: str) -> None:
        current = self.repository.get_worker(worker.worker_id)
        if current is None or not can_transition(current.status, WorkerStatus.PAUSED):
            return
        self.repository.transition_worker(
            worker_id=current.worker_id,
            expected=current.status,
            status_to=WorkerStatus.PAUSED,
            message=message,
        )

    def _fail_worker(
        self,
        worker: WorkerView,
        *,
        reason: str,
        merge_conflicts: int = 0,
    ) -> WorkerView | None:
        current = self.repository.get_worker(worker.worker_id)
        if current is None or current.is_terminal:
            return None
        failed = self.repository.finalize_worker(
            worker_id=current.worker_id,
            expected=current.status,
            status_to=WorkerStatus.ERROR,
            history=HistoryWrite(outcome=WorkerOutcome.ERROR, merge_conflicts=merge_conflicts),
            message=reason,
        )
        if failed is not None:
            self.repository.create_signal(
                repo_id=current.repo_id,
                payload=SignalCreate(
                    signal_type=SignalType.WARNING,
                    message=f"Worker {current.worker_id} failed: {reason}",
                    details={"branch_name": current.branch_name, "task_id": current.task_id},
                    worker_id=current.worker_id,
                ),
            )
            logger.warning("Worker %s failed: %s", current.worker_id, reason)
        return failed

    def _cleanup_worktree(
        self,
        repo: RepositoryView,
        worker: WorkerView,
        *,
        delete_branch: bool,
    ) -> WorktreeRemoval:
        try:
            return self.worktrees.remove(
                Path(repo.path),
                Path(worker.worktree_path),
                delete_branch=delete_branch,
                branch_name=worker.branch_name,
            )
        except (GitWorkersError, OSError) as error:
            logger.warning("Cleanup of worktree %s failed: %s", worker.worktree_path, error)
            self.repository.create_signal(
                repo_id=repo.repo_id,
                payload=SignalCreate(
                    signal_type=SignalType.WARNING,
                    message=f"Could not clean up worktree {worker.worktree_path}: {error}",
                    details={"branch_name": worker.branch_name},
                    worker_id=worker.worker_id,
                ),
            )
            return WorktreeRemoval(
                worktree_removed=False,
                branch_deleted=False,
                branch_name=worker.branch_name,
            )

    def _discard_worktree(self, repo_path: Path, worktree_path: Path, branch_name: str) -> None:
        logger.warning(
            "Spawn failed, removing worktree %s and branch %s",
            worktree_path,
            branch_name,
        )
        self.worktrees.remove(
            repo_path,
            worktree_path,
            delete_branch=True,
            branch_name=branch_name,
        )

    def _repository_of(self, worker: WorkerView) -> RepositoryView:
        repo = self.repository.get_repository(worker.repo_id)
        if repo is None:
            raise RepositoryNotRegistered(worker.repo_id)
        return repo

    def _target_branch(self, repo_path: Path) -> str:
        return self.settings.git.target_branch or self.worktrees.default_branch(repo_path)

    def _username(self, repo_path: Path, requested: str | None) -> str:
        for candidate in (requested, self.settings.agent.username):
            if candidate and slugify(candidate):
                return slugify(candidate)
        return resolve_username(self.git, repo_path)

    def _free_worktree_path(self, repo: RepositoryView, username: str) -> Path:
        repo_path = Path(repo.path)
        prefix = f"{repo_path.name}-{username}-"
        occupied = [
            worker.worktree_path
            for worker in self.repository.list_workers(repo_id=repo.repo_id, active_only=True)
        ]
        occupied.extend(info.path for info in self.worktrees.list(repo_path))
        taken = [path for path in occupied if Path(path).name.startswith(prefix)]
        while True:
            slot = next_free_slot(taken)
            candidate = generate_worktree_path(repo_path, username, slot)
            if not candidate.exists():
                return candidate
            taken.append(str(candidate))


def _validate_progress(progress: int | None) -> None:
    if progress is not None and not 0 <= progress <= 100:  # noqa: PLR2004
        raise InvalidWorkerUpdate(f"Progress must be between 0 and 100, got {progress}.")
