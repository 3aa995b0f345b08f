"""Domain models for the worker ledger and its use cases."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from git_workers.git.models import BranchStats, ConflictInfo


class WorkerStatus(str, Enum):
    """Durable worker lifecycle states."""

    PENDING = "pending"
    WAITING = "waiting"
    WORKING = "working"
    PAUSED = "paused"
    MERGING = "merging"
    MERGED = "merged"
    ERROR = "error"


class WorkerOutcome(str, Enum):
    """Outcome recorded in worker history."""

    MERGED = "merged"
    ABORTED = "aborted"
    ERROR = "error"


class SignalType(str, Enum):
    """Kinds of operator notifications."""

    STATUS = "status"
    DECISION = "decision"
    HELP = "help"
    SUGGESTION = "suggestion"
    WARNING = "warning"
    INFO = "info"


class MergeStatus(str, Enum):
    CLEAN = "clean"
    CONFLICTS = "conflicts"
    PENDING = "pending"


class DeadReason(str, Enum):
    PENDING_TIMEOUT = "pending_timeout"
    HEARTBEAT_TIMEOUT = "heartbeat_timeout"


@dataclass(slots=True)
class RepositoryView:
    repo_id: str
    path: str
    name: str
    created_at: datetime


@dataclass(slots=True)
class WorkerCreate:
    """Input payload for inserting a worker row."""

    worker_id: str
    repo_id: str
    username: str
    task_id: str
    task_title: str
    worktree_path: str
    branch_name: str
    next_task_id: str | None = None
    next_task_title: str | None = None


@dataclass(slots=True)
class WorkerView:
    """Readable worker view for CLI and service logic."""

    worker_id: str
    repo_id: str
    username: str
    task_id: str
    task_title: str
    worktree_path: str
    branch_name: str
    status: WorkerStatus
    progress: int
    message: str | None
    next_task_id: str | None
    next_task_title: str | None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    heartbeat_at: datetime | None
    completed_at: datetime | None

    @property
    def is_terminal(self) -> bool:
        return self.status in {WorkerStatus.MERGED, WorkerStatus.ERROR}

    @property
    def next_task(self) -> NextTask | None:
        if self.next_task_id and self.next_task_title:
            return NextTask(task_id=self.next_task_id, task_title=self.next_task_title)
        return None


@dataclass(slots=True)
class HistoryWrite:
    """Statistics captured when a worker leaves the active set."""

    outcome: WorkerOutcome
    merge_conflicts: int = 0
    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0


@dataclass(slots=True)
class WorkerHistoryView:
    history_id: str
    repo_id: str
    worker_id: str
    task_id: str | None
    task_title: str | None
    branch_name: str | None
    outcome: WorkerOutcome
    merge_conflicts: int
    files_changed: int
    insertions: int
    deletions: int
    started_at: datetime | None
    completed_at: datetime
    duration_ms: int | None


@dataclass(slots=True)
class SignalCreate:
    signal_type: SignalType
    message: str
    details: dict[str, Any] | None = None
    worker_id: str | None = None
    action_required: bool = False
    action_options: list[str] | None = None


@dataclass(slots=True)
class SignalView:
    signal_id: str
    repo_id: str
    signal_type: SignalType
    message: str
    details: dict[str, Any] | None
    worker_id: str | None
    action_required: bool
    action_options: list[str] | None
    dismissed: bool
    created_at: datetime
    dismissed_at: datetime | None


@dataclass(slots=True)
class WorkerEventView:
    event_id: int
    worker_id: str
    event_type: str
    status_from: WorkerStatus | None
    status_to: WorkerStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class NextTask:
    task_id: str
    task_title: str


@dataclass(slots=True)
class SpawnRequest:
    repo_path: str
    task_id: str
    task_title: str
    username: str | None = None
    next_task_id: str | None = None
    next_task_title: str | None = None


@dataclass(slots=True)
class SpawnResult:
    worker_id: str
    worktree_path: str
    branch_name: str
    start_command: str


@dataclass(slots=True)
class WorkerListing:
    workers: list[WorkerView]
    max_workers: int
    can_spawn_more: bool


@dataclass(slots=True)
class HeartbeatResult:
    status: WorkerStatus
    should_pause: bool
    should_abort: bool
    next_task: NextTask | None = None


@dataclass(slots=True)
class StopResult:
    deleted: bool
    worktree_removed: bool
    branch_deleted: bool


@dataclass(slots=True)
class CompleteResult:
    merge_status: MergeStatus
    conflicts: list[ConflictInfo] = field(default_factory=list)
    stats: BranchStats | None = None
    commit_hash: str | None = None
    next_task: NextTask | None = None


@dataclass(slots=True)
class ResolveResult:
    resolved: bool
    merged: bool
    aborted: bool = False
    strategy: str | None = None
    resolved_files: list[str] = field(default_factory=list)
    stats: BranchStats | None = None
    commit_hash: str | None = None


@dataclass(slots=True)
class DeadWorker:
    worker: WorkerView
    reason: DeadReason
    idle_seconds: float


@dataclass(slots=True)
class DeadWorkersReport:
    dead_workers: list[DeadWorker]
    threshold_seconds: float
    pending_threshold_seconds: float
    checked_at: datetime
    total_active: int

    @property
    def dead_count(self) -> int:
        return len(self.dead_workers)
