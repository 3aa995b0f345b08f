"""Worker lifecycle state machine."""

from __future__ import annotations

from git_workers.errors import InvalidTransition
from git_workers.orchestrator.models import WorkerStatus

TERMINAL_STATUSES = frozenset({WorkerStatus.MERGED, WorkerStatus.ERROR})
ACTIVE_STATUSES = frozenset(set(WorkerStatus) - TERMINAL_STATUSES)
NOT_STARTED_STATUSES = frozenset({WorkerStatus.PENDING, WorkerStatus.WAITING})
COMPLETABLE_STATUSES = frozenset(
    {WorkerStatus.PENDING, WorkerStatus.WAITING, WorkerStatus.WORKING, WorkerStatus.PAUSED},
)

ALLOWED_TRANSITIONS: dict[WorkerStatus, frozenset[WorkerStatus]] = {
    WorkerStatus.PENDING: frozenset(
        {WorkerStatus.WAITING, WorkerStatus.WORKING, WorkerStatus.ERROR},
    ),
    WorkerStatus.WAITING: frozenset({WorkerStatus.WORKING, WorkerStatus.ERROR}),
    WorkerStatus.WORKING: frozenset(
        {WorkerStatus.PAUSED, WorkerStatus.MERGING, WorkerStatus.ERROR},
    ),
    WorkerStatus.PAUSED: frozenset(
        {WorkerStatus.WORKING, WorkerStatus.MERGING, WorkerStatus.ERROR},
    ),
    WorkerStatus.MERGING: frozenset(
        {WorkerStatus.MERGED, WorkerStatus.ERROR, WorkerStatus.PAUSED},
    ),
    WorkerStatus.MERGED: frozenset(),
    WorkerStatus.ERROR: frozenset(),
}


def can_transition(status_from: WorkerStatus, status_to: WorkerStatus) -> bool:
    if status_from == status_to:
        return status_from not in TERMINAL_STATUSES
    return status_to in ALLOWED_TRANSITIONS[status_from]


def ensure_transition(worker_id: str, status_from: WorkerStatus, status_to: WorkerStatus) -> None:
    if not can_transition(status_from, status_to):
        raise InvalidTransition(worker_id, status_from.value, status_to.value)
