"""Controllers for worker CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from git_workers.config import Settings
from git_workers.orchestrator.models import (
    MergeStatus,
    SpawnRequest,
    WorkerStatus,
    WorkerView,
)
from git_workers.orchestrator.repository import WorkerRepository
from git_workers.orchestrator.services import WorkerOrchestrator


@dataclass(slots=True)
class WorkerSpawnCommand:
    """CLI input for spawning a worker."""

    db_path: Path | None
    repo_path: Path
    task_id: str
    task_title: str
    username: str | None = None
    next_task_id: str | None = None
    next_task_title: str | None = None


@dataclass(slots=True)
class WorkerRepoCommand:
    """CLI input for repository-scoped listings."""

    db_path: Path | None
    repo_path: Path


@dataclass(slots=True)
class WorkerShowCommand:
    """CLI input for worker inspection by id or worktree path."""

    db_path: Path | None
    worker_id: str | None
    worktree_path: Path | None = None
    show_events: bool = False


@dataclass(slots=True)
class WorkerUpdateCommand:
    db_path: Path | None
    worker_id: str
    status: str | None
    message: str | None
    progress: int | None


@dataclass(slots=True)
class WorkerHeartbeatCommand:
    db_path: Path | None
    worker_id: str
    message: str | None
    progress: int | None


@dataclass(slots=True)
class WorkerStopCommand:
    db_path: Path | None
    worker_id: str
    force: bool
    delete_branch: bool


@dataclass(slots=True)
class WorkerCompleteCommand:
    db_path: Path | None
    worker_id: str
    auto_merge: bool | None
    commit_message: str | None


@dataclass(slots=True)
class WorkerResolveCommand:
    db_path: Path | None
    worker_id: str
    strategy: str
    files: tuple[str, ...]


@dataclass(slots=True)
class WorkerDeadCommand:
    db_path: Path | None
    repo_path: Path
    threshold_seconds: int | None
    pending_threshold_seconds: int | None


@dataclass(slots=True)
class WorkerHistoryCommand:
    db_path: Path | None
    repo_path: Path
    limit: int


@dataclass(slots=True)
class WorkerSignalsCommand:
    db_path: Path | None
    repo_path: Path
    include_dismissed: bool


@dataclass(slots=True)
class WorkerDismissCommand:
    """CLI input for dismissing one signal or every signal of a repository."""

    db_path: Path | None
    repo_path: Path
    signal_id: str | None
    dismiss_all: bool


class WorkerCliController:
    """Coordinates worker lifecycle, merge and inspection CLI operations."""

    def spawn(self, command: WorkerSpawnCommand) -> list[str]:
        with _orchestrator(command.db_path) as orchestrator:
            result = orchestrator.spawn(
                SpawnRequest(
                    repo_path=str(command.repo_path),
                    task_id=command.task_id,
                    task_title=command.task_title,
                    username=command.username,
                    next_task_id=command.next_task_id,
                    next_task_title=command.next_task_title,
                ),
            )
        return [
            f"Worker spawned: worker_id={result.worker_id} branch={result.branch_name}",
            f"Worktree: {result.worktree_path}",
            f"Start: {result.start_command}",
        ]

    def list_workers(self, command: WorkerRepoCommand) -> list[str]:
        with _orchestrator(command.db_path) as orchestrator:
            listing = orchestrator.list_workers(command.repo_path)
        lines = [
            f"Active workers: {len(listing.workers)}/{listing.max_workers} "
            f"can_spawn_more={str(listing.can_spawn_more).lower()}",
        ]
        lines.extend(_worker_line(worker) for worker in listing.workers)
        return lines

    def show(self, command: WorkerShowCommand) -> list[str]:
        with _orchestrator(command.db_path) as orchestrator:
            if command.worker_id is not None:
                worker = orchestrator.get_worker(command.worker_id)
            elif command.worktree_path is not None:
                found = orchestrator.find_by_worktree(command.worktree_path)
                if found is None:
                    return [f"No worker owns worktree {command.worktree_path}"]
                worker = found
            else:
                return ["Pass a worker id or --worktree."]
            events = orchestrator.worker_events(worker.worker_id) if command.show_events else []
            outcomes = orchestrator.worker_history(worker.worker_id) if worker.is_terminal else []

        lines = [
            f"worker_id={worker.worker_id}",
            f"task={worker.task_id} title={worker.task_title}",
            f"status={worker.status.value} progress={worker.progress}",
            f"branch={worker.branch_name}",
            f"worktree={worker.worktree_path}",
            f"created_at={worker.created_at.isoformat()}",
            f"started_at={worker.started_at.isoformat() if worker.started_at else '-'}",
            f"heartbeat_at={worker.heartbeat_at.isoformat() if worker.heartbeat_at else '-'}",
        ]
        if worker.message:
            lines.append(f"message={worker.message}")
        if worker.next_task is not None:
            lines.append(f"next_task={worker.next_task.task_id} {worker.next_task.task_title}")
        for row in outcomes:
            lines.append(
                f"outcome={row.outcome.value} conflicts={row.merge_conflicts} "
                f"files={row.files_changed} +{row.insertions} -{row.deletions} "
                f"duration_ms={row.duration_ms if row.duration_ms is not None else '-'}",
            )
        for event in events:
            transition = ""
            if event.status_from or event.status_to:
                transition = (
                    f" {event.status_from.value if event.status_from else '-'}"
                    f"->{event.status_to.value if event.status_to else '-'}"
                )
            lines.append(
                f"event {event.created_at.isoformat()} {event.event_type}{transition}",
            )
        return lines

    def update(self, command: WorkerUpdateCommand) -> list[str]:
        with _orchestrator(command.db_path) as orchestrator:
            worker = orchestrator.update(
                command.worker_id,
                status=WorkerStatus(command.status) if command.status else None,
                message=command.message,
                progress=command.progress,
            )
        return [f"Worker updated: {_worker_line(worker)}"]

    def heartbeat(self, command: WorkerHeartbeatCommand) -> list[str]:
        with _orchestrator(command.db_path) as orchestrator:
            result = orchestrator.heartbeat(
                command.worker_id,
                message=command.message,
                progress=command.progress,
            )
        lines = [
            f"status={result.status.value} "
            f"should_pause={str(result.should_pause).lower()} "
            f"should_abort={str(result.should_abort).lower()}",
        ]
        if result.next_task is not None:
            lines.append(f"next_task={result.next_task.task_id} {result.next_task.task_title}")
        return lines

    def stop(self, command: WorkerStopCommand) -> list[str]:
        with _orchestrator(command.db_path) as orchestrator:
            result = orchestrator.stop(
                command.worker_id,
                force=command.force,
                delete_branch=command.delete_branch,
            )
        return [
            f"Worker stopped: worker_id={command.worker_id} deleted={str(result.deleted).lower()} "
            f"worktree_removed={str(result.worktree_removed).lower()} "
            f"branch_deleted={str(result.branch_deleted).lower()}",
        ]

    def complete(self, command: WorkerCompleteCommand) -> list[str]:
        with _orchestrator(command.db_path) as orchestrator:
            result = orchestrator.complete(
                command.worker_id,
                auto_merge=command.auto_merge,
                commit_message=command.commit_message,
            )

        lines = [f"merge_status={result.merge_status.value}"]
        if result.merge_status == MergeStatus.CONFLICTS:
            for conflict in result.conflicts:
                lines.append(
                    f"conflict {conflict.type.value} {conflict.file} "
                    f"regions={conflict.conflict_lines}",
                )
            lines.append("Resolve with: git-workers workers resolve <worker_id> ours|theirs|abort")
        if result.stats is not None:
            lines.append(
                f"files_changed={result.stats.files_changed} "
                f"insertions={result.stats.insertions} deletions={result.stats.deletions}",
            )
        if result.commit_hash:
            lines.append(f"commit={result.commit_hash}")
        if result.next_task is not None:
            lines.append(f"next_task={result.next_task.task_id} {result.next_task.task_title}")
        return lines

    def resolve(self, command: WorkerResolveCommand) -> list[str]:
        with _orchestrator(command.db_path) as orchestrator:
            result = orchestrator.resolve(
                command.worker_id,
                command.strategy,
                files=list(command.files) or None,
            )
        if result.aborted:
            return [f"Merge aborted: worker_id={command.worker_id} status=paused"]
        lines = [
            f"Resolved with {result.strategy}: merged={str(result.merged).lower()} "
            f"files={','.join(result.resolved_files) or '-'}",
        ]
        if result.commit_hash:
            lines.append(f"commit={result.commit_hash}")
        return lines

    def dead(self, command: WorkerDeadCommand) -> list[str]:
        with _orchestrator(command.db_path) as orchestrator:
            report = orchestrator.dead_workers(
                command.repo_path,
                threshold_seconds=command.threshold_seconds,
                pending_threshold_seconds=command.pending_threshold_seconds,
            )
        lines = [
            f"Dead workers: {report.dead_count}/{report.total_active} active "
            f"(heartbeat>{report.threshold_seconds:.0f}s "
            f"pending>{report.pending_threshold_seconds:.0f}s)",
        ]
        lines.extend(
            f"- {dead.worker.worker_id} status={dead.worker.status.value} "
            f"reason={dead.reason.value} idle={dead.idle_seconds:.0f}s"
            for dead in report.dead_workers
        )
        return lines

    def history(self, command: WorkerHistoryCommand) -> list[str]:
        with _orchestrator(command.db_path) as orchestrator:
            rows = orchestrator.history(command.repo_path, limit=command.limit)
        if not rows:
            return ["No worker history."]
        return [
            f"{row.completed_at.isoformat()} {row.worker_id} task={row.task_id} "
            f"outcome={row.outcome.value} conflicts={row.merge_conflicts} "
            f"files={row.files_changed} +{row.insertions} -{row.deletions}"
            for row in rows
        ]

    def signals(self, command: WorkerSignalsCommand) -> list[str]:
        with _orchestrator(command.db_path) as orchestrator:
            rows = orchestrator.signals(
                command.repo_path,
                include_dismissed=command.include_dismissed,
            )
        if not rows:
            return ["No signals."]
        lines: list[str] = []
        for signal in rows:
            marker = "!" if signal.action_required else "-"
            lines.append(
                f"{marker} {signal.signal_id} [{signal.signal_type.value}] {signal.message}",
            )
            if signal.action_options:
                lines.append(f"  options: {' | '.join(signal.action_options)}")
            if signal.details:
                lines.append(f"  details: {json.dumps(signal.details, sort_keys=True)}")
        return lines

    def dismiss(self, command: WorkerDismissCommand) -> list[str]:
        with _orchestrator(command.db_path) as orchestrator:
            if command.dismiss_all:
                count = orchestrator.dismiss_all_signals(command.repo_path)
                return [f"Dismissed {count} signal(s)."]
            if command.signal_id is None:
                return ["Pass a signal id or --all."]
            dismissed = orchestrator.dismiss_signal(command.signal_id)
        if not dismissed:
            return [f"Signal {command.signal_id} not found or already dismissed."]
        return [f"Dismissed {command.signal_id}."]


def _worker_line(worker: WorkerView) -> str:
    return (
        f"{worker.worker_id} task={worker.task_id} status={worker.status.value} "
        f"progress={worker.progress} branch={worker.branch_name} "
        f"worktree={worker.worktree_path}"
    )


@contextmanager
def _orchestrator(db_path: Path | None) -> Iterator[WorkerOrchestrator]:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    repository = WorkerRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield WorkerOrchestrator(repository=repository, settings=settings)
    finally:
        repository.close()
