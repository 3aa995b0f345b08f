from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest

from git_workers.errors import InvalidTransition
from git_workers.orchestrator.lifecycle import can_transition, ensure_transition
from git_workers.orchestrator.liveness import classify_worker, find_dead_workers
from git_workers.orchestrator.models import DeadReason, WorkerStatus, WorkerView

pytestmark = [
    allure.epic("Worker Orchestration"),
    allure.feature("Lifecycle & Liveness"),
]

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _worker(
    status: WorkerStatus,
    *,
    created_ago: float = 0,
    started_ago: float | None = None,
    heartbeat_ago: float | None = None,
    worker_id: str = "worker-alice-1-abcd",
) -> WorkerView:
    created_at = NOW - timedelta(seconds=created_ago)
    return WorkerView(
        worker_id=worker_id,
        repo_id="repo-1",
        username="alice",
        task_id="BE.1",
        task_title="Add endpoint",
        worktree_path="/work/repo-alice-1",
        branch_name="feature/alice/be1-add-endpoint",
        status=status,
        progress=0,
        message=None,
        next_task_id=None,
        next_task_title=None,
        created_at=created_at,
        updated_at=created_at,
        started_at=NOW - timedelta(seconds=started_ago) if started_ago is not None else None,
        heartbeat_at=(
            NOW - timedelta(seconds=heartbeat_ago) if heartbeat_ago is not None else None
        ),
        completed_at=None,
    )


@pytest.mark.parametrize(
    ("status_from", "status_to"),
    [
        (WorkerStatus.PENDING, WorkerStatus.WORKING),
        (WorkerStatus.PENDING, WorkerStatus.WAITING),
        (WorkerStatus.WAITING, WorkerStatus.WORKING),
        (WorkerStatus.WORKING, WorkerStatus.PAUSED),
        (WorkerStatus.WORKING, WorkerStatus.MERGING),
        (WorkerStatus.PAUSED, WorkerStatus.MERGING),
        (WorkerStatus.MERGING, WorkerStatus.MERGED),
        (WorkerStatus.MERGING, WorkerStatus.PAUSED),
        (WorkerStatus.WORKING, WorkerStatus.WORKING),
    ],
)
def test_allowed_transitions(status_from: WorkerStatus, status_to: WorkerStatus) -> None:
    assert can_transition(status_from, status_to)


@pytest.mark.parametrize(
    ("status_from", "status_to"),
    [
        (WorkerStatus.PENDING, WorkerStatus.MERGED),
        (WorkerStatus.WORKING, WorkerStatus.MERGED),
        (WorkerStatus.PAUSED, WorkerStatus.PENDING),
        (WorkerStatus.MERGED, WorkerStatus.WORKING),
        (WorkerStatus.ERROR, WorkerStatus.ERROR),
        (WorkerStatus.MERGED, WorkerStatus.MERGED),
    ],
)
def test_rejected_transitions(status_from: WorkerStatus, status_to: WorkerStatus) -> None:
    assert not can_transition(status_from, status_to)
    with pytest.raises(InvalidTransition, match="cannot move"):
        ensure_transition("worker-x", status_from, status_to)


def test_pending_worker_is_dead_after_pending_timeout() -> None:
    worker = _worker(WorkerStatus.PENDING, created_ago=6 * 60)

    dead = classify_worker(worker, now=NOW)

    assert dead is not None
    assert dead.reason is DeadReason.PENDING_TIMEOUT
    assert dead.idle_seconds == pytest.approx(360)


def test_pending_worker_within_timeout_is_alive() -> None:
    assert classify_worker(_worker(WorkerStatus.WAITING, created_ago=299), now=NOW) is None


def test_heartbeat_timeout_boundary_is_strict() -> None:
    alive = _worker(WorkerStatus.WORKING, created_ago=1000, started_ago=900, heartbeat_ago=119)
    edge = _worker(WorkerStatus.WORKING, created_ago=1000, started_ago=900, heartbeat_ago=120)
    dead = _worker(WorkerStatus.WORKING, created_ago=1000, started_ago=900, heartbeat_ago=121)

    assert classify_worker(alive, now=NOW) is None
    assert classify_worker(edge, now=NOW) is None
    result = classify_worker(dead, now=NOW)
    assert result is not None
    assert result.reason is DeadReason.HEARTBEAT_TIMEOUT


def test_started_at_is_used_when_no_heartbeat_was_sent() -> None:
    worker = _worker(WorkerStatus.PAUSED, created_ago=1000, started_ago=500)

    result = classify_worker(worker, now=NOW, heartbeat_timeout_seconds=300)

    assert result is not None
    assert result.idle_seconds == pytest.approx(500)


def test_running_worker_without_timestamps_is_not_dead() -> None:
    assert classify_worker(_worker(WorkerStatus.MERGING, created_ago=10_000), now=NOW) is None


def test_find_dead_workers_ignores_terminal_and_leaves_workers_untouched() -> None:
    workers = [
        _worker(WorkerStatus.PENDING, created_ago=400, worker_id="w-pending"),
        _worker(WorkerStatus.WORKING, started_ago=50, heartbeat_ago=10, worker_id="w-live"),
        _worker(WorkerStatus.MERGED, created_ago=10_000, worker_id="w-merged"),
    ]

    dead = find_dead_workers(workers, now=NOW)

    assert [item.worker.worker_id for item in dead] == ["w-pending"]
    assert workers[0].status is WorkerStatus.PENDING


def test_find_dead_workers_accepts_custom_thresholds() -> None:
    workers = [_worker(WorkerStatus.WORKING, started_ago=100, heartbeat_ago=45)]

    assert find_dead_workers(workers, now=NOW) == []
    assert len(find_dead_workers(workers, now=NOW, heartbeat_timeout_seconds=30)) == 1
