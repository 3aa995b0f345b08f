"""Pull-based liveness classification of external agents."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from git_workers.orchestrator.lifecycle import NOT_STARTED_STATUSES, TERMINAL_STATUSES
from git_workers.orchestrator.models import DeadReason, DeadWorker, WorkerView

DEFAULT_PENDING_TIMEOUT_SECONDS = 300
DEFAULT_HEARTBEAT_TIMEOUT_SECONDS = 120


def classify_worker(
    worker: WorkerView,
    *,
    now: datetime,
    pending_timeout_seconds: float = DEFAULT_PENDING_TIMEOUT_SECONDS,
    heartbeat_timeout_seconds: float = DEFAULT_HEARTBEAT_TIMEOUT_SECONDS,
) -> DeadWorker | None:
    """Return a ``DeadWorker`` when elapsed time strictly exceeds the matching timeout."""

    if worker.status in TERMINAL_STATUSES:
        return None

    if worker.status in NOT_STARTED_STATUSES:
        idle = (now - worker.created_at).total_seconds()
        if idle > pending_timeout_seconds:
            return DeadWorker(worker=worker, reason=DeadReason.PENDING_TIMEOUT, idle_seconds=idle)
        return None

    last_seen = worker.heartbeat_at or worker.started_at
    if last_seen is None:
        return None
    idle = (now - last_seen).total_seconds()
    if idle > heartbeat_timeout_seconds:
        return DeadWorker(worker=worker, reason=DeadReason.HEARTBEAT_TIMEOUT, idle_seconds=idle)
    return None


def find_dead_workers(
    workers: Iterable[WorkerView],
    *,
    now: datetime,
    pending_timeout_seconds: float = DEFAULT_PENDING_TIMEOUT_SECONDS,
    heartbeat_timeout_seconds: float = DEFAULT_HEARTBEAT_TIMEOUT_SECONDS,
) -> list[DeadWorker]:
    """Report dead-worker candidates; never changes any worker state."""

    dead: list[DeadWorker] = []
    for worker in workers:
        classified = classify_worker(
            worker,
            now=now,
            pending_timeout_seconds=pending_timeout_seconds,
            heartbeat_timeout_seconds=heartbeat_timeout_seconds,
        )
        if classified is not None:
            dead.append(classified)
    return dead
