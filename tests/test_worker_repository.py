from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import allure
import pytest
from sqlalchemy import text

from git_workers.errors import (
    BranchCollision,
    InvalidTransition,
    PathCollision,
    TaskAlreadyActive,
)
from git_workers.orchestrator.models import (
    HistoryWrite,
    SignalCreate,
    SignalType,
    WorkerCreate,
    WorkerOutcome,
    WorkerStatus,
)
from git_workers.orchestrator.repository import WorkerRepository

pytestmark = [
    allure.epic("Worker Orchestration"),
    allure.feature("Worker Ledger"),
]


def _payload(repo_id: str, *, worker_id: str = "worker-alice-1-abcd", task_id: str = "BE.1"):
    slot = worker_id.rsplit("-", 1)[-1]
    return WorkerCreate(
        worker_id=worker_id,
        repo_id=repo_id,
        username="alice",
        task_id=task_id,
        task_title="Add endpoint",
        worktree_path=f"/work/repo-alice-{slot}",
        branch_name=f"feature/alice/{task_id.lower()}-{slot}",
        next_task_id="BE.2",
        next_task_title="Add tests",
    )


@pytest.fixture()
def repo_id(repository: WorkerRepository) -> str:
    return repository.ensure_repository(path="/work/repo", name="repo").repo_id


def test_schema_is_migrated_to_head(repository: WorkerRepository) -> None:
    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar()
        tables = {
            row[0]
            for row in connection.execute(
                text("SELECT name FROM sqlite_master WHERE type = 'table'"),
            )
        }

    assert version == "20261019_0001"
    assert {
        "repositories",
        "workers",
        "worker_history",
        "manager_signals",
        "worker_events",
    } <= tables


def test_ensure_repository_is_idempotent(repository: WorkerRepository) -> None:
    first = repository.ensure_repository(path="/work/repo", name="repo")
    second = repository.ensure_repository(path="/work/repo", name="repo")

    assert first.repo_id == second.repo_id
    assert repository.get_repository_by_path("/work/repo") == first
    assert repository.get_repository_by_path("/work/other") is None


def test_create_worker_starts_pending_and_rejects_second_active_worker_for_task(
    repository: WorkerRepository,
    repo_id: str,
) -> None:
    worker = repository.create_worker(_payload(repo_id))

    assert worker.status is WorkerStatus.PENDING
    assert worker.progress == 0
    assert worker.started_at is None
    assert worker.next_task is not None
    assert worker.next_task.task_id == "BE.2"

    with pytest.raises(TaskAlreadyActive) as raised:
        repository.create_worker(_payload(repo_id, worker_id="worker-alice-2-efgh"))
    assert raised.value.worker_id == worker.worker_id
    assert repository.count_active_workers(repo_id=repo_id) == 1


def test_create_worker_maps_worktree_and_branch_collisions(
    repository: WorkerRepository,
    repo_id: str,
) -> None:
    first = repository.create_worker(_payload(repo_id))

    with pytest.raises(PathCollision):
        repository.create_worker(
            replace(
                _payload(repo_id, worker_id="worker-alice-2-efgh", task_id="BE.2"),
                worktree_path=first.worktree_path,
            ),
        )
    with pytest.raises(BranchCollision):
        repository.create_worker(
            replace(
                _payload(repo_id, worker_id="worker-alice-3-ijkl", task_id="BE.3"),
                branch_name=first.branch_name,
            ),
        )
    assert repository.count_active_workers(repo_id=repo_id) == 1

def test_first_heartbeat_starts_worker(repository: WorkerRepository, repo_id: str) -> None:
    worker = repository.create_worker(_payload(repo_id))

    beat = repository.touch_heartbeat(worker_id=worker.worker_id, message="Reading code")

    assert beat.status is WorkerStatus.WORKING
    assert beat.started_at is not None
    assert beat.heartbeat_at is not None
    assert beat.message == "Reading code"

    again = repository.touch_heartbeat(worker_id=worker.worker_id, progress=40)
    assert again.status is WorkerStatus.WORKING
    assert again.started_at == beat.started_at
    assert again.progress == 40


def test_transition_is_compare_and_swap(repository: WorkerRepository, repo_id: str) -> None:
    worker = repository.create_worker(_payload(repo_id))

    moved = repository.transition_worker(
        worker_id=worker.worker_id,
        expected=WorkerStatus.PENDING,
        status_to=WorkerStatus.WORKING,
    )
    stale = repository.transition_worker(
        worker_id=worker.worker_id,
        expected=WorkerStatus.PENDING,
        status_to=WorkerStatus.WAITING,
    )

    assert moved is not None
    assert moved.status is WorkerStatus.WORKING
    assert stale is None
    with pytest.raises(InvalidTransition):
        repository.transition_worker(
            worker_id=worker.worker_id,
            expected=WorkerStatus.WORKING,
            status_to=WorkerStatus.PENDING,
        )


def test_finalize_writes_history_exactly_once(repository: WorkerRepository, repo_id: str) -> None:
    worker = repository.create_worker(_payload(repo_id))
    repository.transition_worker(
        worker_id=worker.worker_id,
        expected=WorkerStatus.PENDING,
        status_to=WorkerStatus.WORKING,
    )
    repository.transition_worker(
        worker_id=worker.worker_id,
        expected=WorkerStatus.WORKING,
        status_to=WorkerStatus.MERGING,
    )
    history = HistoryWrite(
        outcome=WorkerOutcome.MERGED,
        files_changed=2,
        insertions=10,
        deletions=3,
    )

    merged = repository.finalize_worker(
        worker_id=worker.worker_id,
        expected=WorkerStatus.MERGING,
        status_to=WorkerStatus.MERGED,
        history=history,
    )
    duplicate = repository.finalize_worker(
        worker_id=worker.worker_id,
        expected=WorkerStatus.MERGING,
        status_to=WorkerStatus.MERGED,
        history=history,
    )

    assert merged is not None
    assert merged.status is WorkerStatus.MERGED
    assert merged.progress == 100
    assert merged.completed_at is not None
    assert duplicate is None
    rows = repository.history_for_worker(worker.worker_id)
    assert len(rows) == 1
    assert rows[0].outcome is WorkerOutcome.MERGED
    assert (rows[0].files_changed, rows[0].insertions, rows[0].deletions) == (2, 10, 3)
    assert rows[0].duration_ms is not None
    assert repository.count_active_workers(repo_id=repo_id) == 0


def test_terminal_worker_frees_task_for_new_worker(
    repository: WorkerRepository,
    repo_id: str,
) -> None:
    worker = repository.create_worker(_payload(repo_id))
    repository.finalize_worker(
        worker_id=worker.worker_id,
        expected=WorkerStatus.PENDING,
        status_to=WorkerStatus.ERROR,
        history=HistoryWrite(outcome=WorkerOutcome.ERROR),
    )

    replacement = repository.create_worker(_payload(repo_id, worker_id="worker-alice-2-efgh"))

    assert replacement.status is WorkerStatus.PENDING
    assert repository.update_worker_fields(worker_id=worker.worker_id, message="late") is None


def test_delete_worker_records_aborted_history(repository: WorkerRepository, repo_id: str) -> None:
    worker = repository.create_worker(_payload(repo_id))

    deleted = repository.delete_worker(
        worker_id=worker.worker_id,
        history=HistoryWrite(outcome=WorkerOutcome.ABORTED),
    )

    assert deleted
    assert repository.get_worker(worker.worker_id) is None
    history = repository.list_history(repo_id=repo_id)
    assert [row.outcome for row in history] == [WorkerOutcome.ABORTED]
    assert not repository.delete_worker(worker_id=worker.worker_id, history=None)


def test_signals_lifecycle(repository: WorkerRepository, repo_id: str) -> None:
    help_signal = repository.create_signal(
        repo_id=repo_id,
        payload=SignalCreate(
            signal_type=SignalType.HELP,
            message="Conflicts in app.py",
            details={"conflicts": [{"file": "app.py"}]},
            worker_id="worker-alice-1-abcd",
            action_required=True,
            action_options=["Keep Main", "Abort"],
        ),
    )
    repository.create_signal(
        repo_id=repo_id,
        payload=SignalCreate(signal_type=SignalType.INFO, message="FYI"),
    )

    active = repository.list_signals(repo_id=repo_id)
    assert {item.signal_type for item in active} == {SignalType.HELP, SignalType.INFO}
    assert help_signal.action_options == ["Keep Main", "Abort"]
    assert help_signal.details == {"conflicts": [{"file": "app.py"}]}

    dismissed = repository.dismiss_worker_signals(
        worker_id="worker-alice-1-abcd",
        signal_type=SignalType.HELP,
    )
    assert dismissed == 1
    assert not repository.dismiss_signal(help_signal.signal_id)
    assert repository.dismiss_all_signals(repo_id=repo_id) == 1
    assert repository.list_signals(repo_id=repo_id) == []
    assert len(repository.list_signals(repo_id=repo_id, include_dismissed=True)) == 2


def test_worker_events_record_audit_trail(repository: WorkerRepository, repo_id: str) -> None:
    worker = repository.create_worker(_payload(repo_id))
    repository.touch_heartbeat(worker_id=worker.worker_id)

    events = repository.list_worker_events(worker.worker_id)

    assert [event.event_type for event in events] == ["spawned", "status_changed"]
    assert events[1].status_from is WorkerStatus.PENDING
    assert events[1].status_to is WorkerStatus.WORKING
    assert events[1].details["trigger"] == "heartbeat"


def test_ledger_survives_reopen(tmp_path: Path) -> None:
    db_path = tmp_path / "reopen.db"
    first = WorkerRepository(db_path)
    first.init_schema()
    repo = first.ensure_repository(path="/work/repo", name="repo")
    created = first.create_worker(_payload(repo.repo_id))
    first.close()

    second = WorkerRepository(db_path)
    second.init_schema()
    try:
        loaded = second.get_worker(created.worker_id)
    finally:
        second.close()

    assert loaded is not None
    assert loaded.task_id == "BE.1"
    assert loaded.created_at == created.created_at
