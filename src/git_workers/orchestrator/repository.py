"""Durable worker ledger backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from git_workers.errors import (
    BranchCollision,
    PathCollision,
    PreconditionViolation,
    TaskAlreadyActive,
    WorkerNotFound,
)
from git_workers.orchestrator.lifecycle import (
    NOT_STARTED_STATUSES,
    TERMINAL_STATUSES,
    ensure_transition,
)
from git_workers.orchestrator.models import (
    HistoryWrite,
    RepositoryView,
    SignalCreate,
    SignalType,
    SignalView,
    WorkerCreate,
    WorkerEventView,
    WorkerHistoryView,
    WorkerOutcome,
    WorkerStatus,
    WorkerView,
)
from git_workers.storage.alembic_runner import upgrade_head
from git_workers.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from git_workers.storage.sqlmodel_models import (
    ManagerSignal,
    TrackedRepository,
    Worker,
    WorkerEvent,
    WorkerHistoryRow,
)

_TERMINAL_VALUES = tuple(status.value for status in TERMINAL_STATUSES)


class WorkerRepository:
    """Ledger persistence facade: workers, history, signals and audit events."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)

    # Repositories

    def ensure_repository(self, *, path: str, name: str) -> RepositoryView:
        """Register a repository by its toplevel path, returning the existing row if any."""

        existing = self.get_repository_by_path(path)
        if existing is not None:
            return existing
        with Session(self.engine) as session:
            row = TrackedRepository(
                repo_id=str(uuid4()),
                path=path,
                name=name,
                created_at=utc_now(),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                existing = self.get_repository_by_path(path)
                if existing is None:
                    raise
                return existing
            session.refresh(row)
            return _to_repository_view(row)

    def get_repository_by_path(self, path: str) -> RepositoryView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(TrackedRepository).where(TrackedRepository.path == path),
            ).one_or_none()
        return _to_repository_view(row) if row is not None else None

    def get_repository(self, repo_id: str) -> RepositoryView | None:
        with Session(self.engine) as session:
            row = session.get(TrackedRepository, repo_id)
        return _to_repository_view(row) if row is not None else None

    # Workers

    def create_worker(self, payload: WorkerCreate) -> WorkerView:
        """Insert a ``pending`` worker; a second live worker for the task is rejected."""

        now = utc_now()
        with Session(self.engine) as session:
            row = Worker(
                worker_id=payload.worker_id,
                repo_id=payload.repo_id,
                username=payload.username,
                task_id=payload.task_id,
                task_title=payload.task_title,
                worktree_path=payload.worktree_path,
                branch_name=payload.branch_name,
                status=WorkerStatus.PENDING.value,
                progress=0,
                next_task_id=payload.next_task_id,
                next_task_title=payload.next_task_title,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            self._add_event(
                session=session,
                repo_id=payload.repo_id,
                worker_id=payload.worker_id,
                event_type="spawned",
                status_from=None,
                status_to=WorkerStatus.PENDING,
                details={
                    "task_id": payload.task_id,
                    "branch_name": payload.branch_name,
                    "worktree_path": payload.worktree_path,
                },
            )
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                mapped = self._active_conflict(payload, error)
                if mapped is None:
                    raise
                raise mapped from error
            session.refresh(row)
            return _to_worker_view(row)

    def _active_conflict(
        self,
        payload: WorkerCreate,
        error: IntegrityError,
    ) -> PreconditionViolation | None:
        """Map a unique-index violation on ``workers`` to the matching domain error."""

        detail = str(error.orig)
        if "workers.worktree_path" in detail or "uq_workers_repo_worktree_active" in detail:
            return PathCollision(payload.worktree_path)
        if "workers.branch_name" in detail or "uq_workers_repo_branch_active" in detail:
            return BranchCollision(payload.branch_name)
        if "workers.task_id" in detail or "uq_workers_repo_task_active" in detail:
            existing = self.get_active_worker_for_task(
                repo_id=payload.repo_id,
                task_id=payload.task_id,
            )
            return TaskAlreadyActive(
                payload.task_id,
                existing.worker_id if existing is not None else None,
            )
        return None

    def get_worker(self, worker_id: str) -> WorkerView | None:
        with Session(self.engine) as session:
            row = session.get(Worker, worker_id)
        return _to_worker_view(row) if row is not None else None

    def require_worker(self, worker_id: str) -> WorkerView:
        worker = self.get_worker(worker_id)
        if worker is None:
            raise WorkerNotFound(worker_id)
        return worker

    def get_active_worker_for_task(self, *, repo_id: str, task_id: str) -> WorkerView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Worker).where(
                    Worker.repo_id == repo_id,
                    Worker.task_id == task_id,
                    col(Worker.status).not_in(_TERMINAL_VALUES),
                ),
            ).first()
        return _to_worker_view(row) if row is not None else None

    def get_worker_by_worktree_path(self, worktree_path: str) -> WorkerView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Worker)
                .where(Worker.worktree_path == worktree_path)
                .order_by(col(Worker.created_at).desc()),
            ).first()
        return _to_worker_view(row) if row is not None else None

    def list_workers(self, *, repo_id: str, active_only: bool = True) -> list[WorkerView]:
        with Session(self.engine) as session:
            statement = (
                select(Worker)
                .where(Worker.repo_id == repo_id)
                .order_by(col(Worker.created_at).desc())
            )
            if active_only:
                statement = statement.where(col(Worker.status).not_in(_TERMINAL_VALUES))
            rows = session.exec(statement).all()
        return [_to_worker_view(row) for row in rows]

    def count_active_workers(self, *, repo_id: str) -> int:
        with Session(self.engine) as session:
            count = session.exec(
                select(func.count())
                .select_from(Worker)
                .where(
                    Worker.repo_id == repo_id,
                    col(Worker.status).not_in(_TERMINAL_VALUES),
                ),
            ).one()
        return int(count)

    def transition_worker(
        self,
        *,
        worker_id: str,
        expected: WorkerStatus,
        status_to: WorkerStatus,
        message: str | None = None,
        progress: int | None = None,
        details: dict[str, object] | None = None,
    ) -> WorkerView | None:
        """Compare-and-swap a non-terminal status change; ``None`` if state moved meanwhile."""

        ensure_transition(worker_id, expected, status_to)
        if status_to in TERMINAL_STATUSES:
            raise ValueError("Terminal transitions must go through finalize_worker().")

        now = to_db_datetime(utc_now())
        values: dict[str, Any] = {
            "status": status_to.value,
            "heartbeat_at": now,
            "updated_at": now,
        }
        if message is not None:
            values["message"] = message
        if progress is not None:
            values["progress"] = progress
        if status_to == WorkerStatus.WORKING:
            values["started_at"] = func.coalesce(col(Worker.started_at), now)

        with Session(self.engine) as session:
            row = session.get(Worker, worker_id)
            if row is None:
                raise WorkerNotFound(worker_id)
            result = session.exec(
                sa_update(Worker)
                .where(
                    col(Worker.worker_id) == worker_id,
                    col(Worker.status) == expected.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            if expected != status_to:
                self._add_event(
                    session=session,
                    repo_id=row.repo_id,
                    worker_id=worker_id,
                    event_type="status_changed",
                    status_from=expected,
                    status_to=status_to,
                    details={"message": message, **(details or {})},
                )
            session.commit()
        return self.get_worker(worker_id)

    def update_worker_fields(
        self,
        *,
        worker_id: str,
        message: str | None = None,
        progress: int | None = None,
    ) -> WorkerView | None:
        """Update message/progress and heartbeat of a live worker; ``None`` if terminal."""

        now = to_db_datetime(utc_now())
        values: dict[str, Any] = {"heartbeat_at": now, "updated_at": now}
        if message is not None:
            values["message"] = message
        if progress is not None:
            values["progress"] = progress
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Worker)
                .where(
                    col(Worker.worker_id) == worker_id,
                    col(Worker.status).not_in(_TERMINAL_VALUES),
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
        return self.get_worker(worker_id)

    def touch_heartbeat(
        self,
        *,
        worker_id: str,
        message: str | None = None,
        progress: int | None = None,
    ) -> WorkerView:
        """Record liveness; the first heartbeat of a not-started worker moves it to working."""

        worker = self.require_worker(worker_id)
        if worker.status in NOT_STARTED_STATUSES:
            moved = self.transition_worker(
                worker_id=worker_id,
                expected=worker.status,
                status_to=WorkerStatus.WORKING,
                message=message,
                progress=progress,
                details={"trigger": "heartbeat"},
            )
            if moved is not None:
                return moved
        updated = self.update_worker_fields(worker_id=worker_id, message=message, progress=progress)
        return updated if updated is not None else self.require_worker(worker_id)

    def finalize_worker(
        self,
        *,
        worker_id: str,
        expected: WorkerStatus,
        status_to: WorkerStatus,
        history: HistoryWrite,
        message: str | None = None,
    ) -> WorkerView | None:
        """Move a worker to ``merged``/``error`` and write its history row atomically.

        Returns ``None`` when the worker is no longer in ``expected``, so the
        terminal transition and its history happen at most once.
        """

        if status_to not in TERMINAL_STATUSES:
            raise ValueError(f"Unsupported terminal status: {status_to}")
        ensure_transition(worker_id, expected, status_to)

        now = utc_now()
        values: dict[str, Any] = {
            "status": status_to.value,
            "completed_at": to_db_datetime(now),
            "updated_at": to_db_datetime(now),
        }
        if message is not None:
            values["message"] = message
        if status_to == WorkerStatus.MERGED:
            values["progress"] = 100

        with Session(self.engine) as session:
            row = session.get(Worker, worker_id)
            if row is None:
                raise WorkerNotFound(worker_id)
            result = session.exec(
                sa_update(Worker)
                .where(
                    col(Worker.worker_id) == worker_id,
                    col(Worker.status) == expected.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            self._add_history(session=session, row=row, history=history, completed_at=now)
            self._add_event(
                session=session,
                repo_id=row.repo_id,
                worker_id=worker_id,
                event_type=status_to.value,
                status_from=expected,
                status_to=status_to,
                details={"outcome": history.outcome.value, "message": message},
            )
            session.commit()
        return self.get_worker(worker_id)

    def delete_worker(self, *, worker_id: str, history: HistoryWrite | None) -> bool:
        """Drop a worker record, writing ``history`` first when given."""

        with Session(self.engine) as session:
            row = session.get(Worker, worker_id)
            if row is None:
                return False
            if history is not None:
                self._add_history(session=session, row=row, history=history, completed_at=utc_now())
            self._add_event(
                session=session,
                repo_id=row.repo_id,
                worker_id=worker_id,
                event_type="deleted",
                status_from=WorkerStatus(row.status),
                status_to=None,
                details={"outcome": history.outcome.value if history is not None else None},
            )
            result = session.exec(
                sa_delete(Worker).where(
                    col(Worker.worker_id) == worker_id,
                    col(Worker.status) == row.status,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    # History

    def list_history(self, *, repo_id: str, limit: int = 50) -> list[WorkerHistoryView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(WorkerHistoryRow)
                .where(WorkerHistoryRow.repo_id == repo_id)
                .order_by(col(WorkerHistoryRow.completed_at).desc())
                .limit(limit),
            ).all()
        return [_to_history_view(row) for row in rows]

    def history_for_worker(self, worker_id: str) -> list[WorkerHistoryView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(WorkerHistoryRow)
                .where(WorkerHistoryRow.worker_id == worker_id)
                .order_by(col(WorkerHistoryRow.completed_at).asc()),
            ).all()
        return [_to_history_view(row) for row in rows]

    # Signals

    def create_signal(self, *, repo_id: str, payload: SignalCreate) -> SignalView:
        with Session(self.engine) as session:
            row = ManagerSignal(
                signal_id=f"signal-{uuid4().hex[:12]}",
                repo_id=repo_id,
                signal_type=payload.signal_type.value,
                message=payload.message,
                details_json=_dump_json(payload.details),
                worker_id=payload.worker_id,
                action_required=payload.action_required,
                action_options_json=_dump_json(payload.action_options),
                dismissed=False,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_signal_view(row)

    def list_signals(self, *, repo_id: str, include_dismissed: bool = False) -> list[SignalView]:
        with Session(self.engine) as session:
            statement = (
                select(ManagerSignal)
                .where(ManagerSignal.repo_id == repo_id)
                .order_by(col(ManagerSignal.created_at).desc())
            )
            if not include_dismissed:
                statement = statement.where(col(ManagerSignal.dismissed).is_(False))
            rows = session.exec(statement).all()
        return [_to_signal_view(row) for row in rows]

    def dismiss_signal(self, signal_id: str) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ManagerSignal)
                .where(
                    col(ManagerSignal.signal_id) == signal_id,
                    col(ManagerSignal.dismissed).is_(False),
                )
                .values(dismissed=True, dismissed_at=to_db_datetime(utc_now())),
            )
            session.commit()
            return result.rowcount == 1

    def dismiss_worker_signals(self, *, worker_id: str, signal_type: SignalType) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ManagerSignal)
                .where(
                    col(ManagerSignal.worker_id) == worker_id,
                    col(ManagerSignal.signal_type) == signal_type.value,
                    col(ManagerSignal.dismissed).is_(False),
                )
                .values(dismissed=True, dismissed_at=to_db_datetime(utc_now())),
            )
            session.commit()
            return int(result.rowcount)

    def dismiss_all_signals(self, *, repo_id: str) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ManagerSignal)
                .where(
                    col(ManagerSignal.repo_id) == repo_id,
                    col(ManagerSignal.dismissed).is_(False),
                )
                .values(dismissed=True, dismissed_at=to_db_datetime(utc_now())),
            )
            session.commit()
            return int(result.rowcount)

    # Events

    def list_worker_events(self, worker_id: str) -> list[WorkerEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(WorkerEvent)
                .where(WorkerEvent.worker_id == worker_id)
                .order_by(col(WorkerEvent.id).asc()),
            ).all()
        return [
            WorkerEventView(
                event_id=row.id or 0,
                worker_id=row.worker_id,
                event_type=row.event_type,
                status_from=WorkerStatus(row.status_from) if row.status_from else None,
                status_to=WorkerStatus(row.status_to) if row.status_to else None,
                created_at=to_utc_aware_datetime(row.created_at),
                details=_load_json_dict(row.details_json),
            )
            for row in rows
        ]

    def _add_history(
        self,
        *,
        session: Session,
        row: Worker,
        history: HistoryWrite,
        completed_at: datetime,
    ) -> None:
        started_at = to_utc_aware_datetime(row.started_at) if row.started_at is not None else None
        duration_ms = (
            int((completed_at - started_at).total_seconds() * 1000)
            if started_at is not None
            else None
        )
        session.add(
            WorkerHistoryRow(
                history_id=str(uuid4()),
                repo_id=row.repo_id,
                worker_id=row.worker_id,
                task_id=row.task_id,
                task_title=row.task_title,
                branch_name=row.branch_name,
                outcome=history.outcome.value,
                merge_conflicts=history.merge_conflicts,
                files_changed=history.files_changed,
                insertions=history.insertions,
                deletions=history.deletions,
                started_at=row.started_at,
                completed_at=completed_at,
                duration_ms=duration_ms,
            ),
        )

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        repo_id: str,
        worker_id: str,
        event_type: str,
        status_from: WorkerStatus | None,
        status_to: WorkerStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            WorkerEvent(
                repo_id=repo_id,
                worker_id=worker_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=_dump_json(details) if details else None,
                created_at=utc_now(),
            ),
        )


def _dump_json(value: object) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _load_json_dict(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else {}


def _to_repository_view(row: TrackedRepository) -> RepositoryView:
    return RepositoryView(
        repo_id=row.repo_id,
        path=row.path,
        name=row.name,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_worker_view(row: Worker) -> WorkerView:
    return WorkerView(
        worker_id=row.worker_id,
        repo_id=row.repo_id,
        username=row.username,
        task_id=row.task_id,
        task_title=row.task_title,
        worktree_path=row.worktree_path,
        branch_name=row.branch_name,
        status=WorkerStatus(row.status),
        progress=row.progress,
        message=row.message,
        next_task_id=row.next_task_id,
        next_task_title=row.next_task_title,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        started_at=to_utc_aware_datetime(row.started_at) if row.started_at is not None else None,
        heartbeat_at=(
            to_utc_aware_datetime(row.heartbeat_at) if row.heartbeat_at is not None else None
        ),
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
    )


def _to_history_view(row: WorkerHistoryRow) -> WorkerHistoryView:
    return WorkerHistoryView(
        history_id=row.history_id,
        repo_id=row.repo_id,
        worker_id=row.worker_id,
        task_id=row.task_id,
        task_title=row.task_title,
        branch_name=row.branch_name,
        outcome=WorkerOutcome(row.outcome),
        merge_conflicts=row.merge_conflicts,
        files_changed=row.files_changed,
        insertions=row.insertions,
        deletions=row.deletions,
        started_at=to_utc_aware_datetime(row.started_at) if row.started_at is not None else None,
        completed_at=to_utc_aware_datetime(row.completed_at),
        duration_ms=row.duration_ms,
    )


def _to_signal_view(row: ManagerSignal) -> SignalView:
    options = json.loads(row.action_options_json) if row.action_options_json else None
    return SignalView(
        signal_id=row.signal_id,
        repo_id=row.repo_id,
        signal_type=SignalType(row.signal_type),
        message=row.message,
        details=_load_json_dict(row.details_json) or None,
        worker_id=row.worker_id,
        action_required=bool(row.action_required),
        action_options=list(options) if isinstance(options, list) else None,
        dismissed=bool(row.dismissed),
        created_at=to_utc_aware_datetime(row.created_at),
        dismissed_at=(
            to_utc_aware_datetime(row.dismissed_at) if row.dismissed_at is not None else None
        ),
    )
