"""SQLModel ORM tables for the worker ledger."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, text
from sqlmodel import Field, SQLModel

# Partial unique indexes below only cover rows that still own a worktree.
NON_TERMINAL_PREDICATE = "status NOT IN ('merged', 'error')"


class TrackedRepository(SQLModel, table=True):
    __tablename__ = "repositories"  # type: ignore[bad-override]

    repo_id: str = Field(primary_key=True)
    path: str = Field(sa_column=Column(Text, nullable=False, unique=True))
    name: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Worker(SQLModel, table=True):
    __tablename__ = "workers"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "uq_workers_repo_task_active",
            "repo_id",
            "task_id",
            unique=True,
            sqlite_where=text(NON_TERMINAL_PREDICATE),
        ),
        Index(
            "uq_workers_repo_worktree_active",
            "repo_id",
            "worktree_path",
            unique=True,
            sqlite_where=text(NON_TERMINAL_PREDICATE),
        ),
        Index(
            "uq_workers_repo_branch_active",
            "repo_id",
            "branch_name",
            unique=True,
            sqlite_where=text(NON_TERMINAL_PREDICATE),
        ),
    )

    worker_id: str = Field(primary_key=True)
    repo_id: str = Field(
        sa_column=Column(
            ForeignKey("repositories.repo_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    username: str
    task_id: str = Field(index=True)
    task_title: str
    worktree_path: str
    branch_name: str
    status: str = Field(index=True)
    progress: int = 0
    message: str | None = None
    next_task_id: str | None = None
    next_task_title: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    heartbeat_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class WorkerHistoryRow(SQLModel, table=True):
    __tablename__ = "worker_history"  # type: ignore[bad-override]

    history_id: str = Field(primary_key=True)
    repo_id: str = Field(
        sa_column=Column(
            ForeignKey("repositories.repo_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    worker_id: str = Field(index=True)
    task_id: str | None = None
    task_title: str | None = None
    branch_name: str | None = None
    outcome: str = Field(index=True)
    merge_conflicts: int = 0
    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    duration_ms: int | None = None


class ManagerSignal(SQLModel, table=True):
    __tablename__ = "manager_signals"  # type: ignore[bad-override]

    signal_id: str = Field(primary_key=True)
    repo_id: str = Field(
        sa_column=Column(
            ForeignKey("repositories.repo_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    signal_type: str = Field(index=True)
    message: str
    details_json: str | None = None
    worker_id: str | None = Field(default=None, index=True)
    action_required: bool = False
    action_options_json: str | None = None
    dismissed: bool = Field(default=False, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    dismissed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class WorkerEvent(SQLModel, table=True):
    __tablename__ = "worker_events"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    repo_id: str = Field(
        sa_column=Column(
            ForeignKey("repositories.repo_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    worker_id: str = Field(index=True)
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
