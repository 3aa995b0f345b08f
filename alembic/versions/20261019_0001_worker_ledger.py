"""Worker ledger baseline: repositories, workers, history, signals, events."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

_NON_TERMINAL = sa.text("status NOT IN ('merged', 'error')")


def upgrade() -> None:
    op.create_table(
        "repositories",
        sa.Column("repo_id", sa.String(), nullable=False),
        sa.Column("path", sa.Text(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("repo_id"),
        sa.UniqueConstraint("path"),
    )

    op.create_table(
        "workers",
        sa.Column("worker_id", sa.String(), nullable=False),
        sa.Column("repo_id", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("task_title", sa.String(), nullable=False),
        sa.Column("worktree_path", sa.String(), nullable=False),
        sa.Column("branch_name", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("message", sa.String(), nullable=True),
        sa.Column("next_task_id", sa.String(), nullable=True),
        sa.Column("next_task_title", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["repo_id"], ["repositories.repo_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("worker_id"),
    )
    op.create_index("ix_workers_repo_id", "workers", ["repo_id"])
    op.create_index("ix_workers_task_id", "workers", ["task_id"])
    op.create_index("ix_workers_status", "workers", ["status"])
    op.create_index(
        "uq_workers_repo_task_active",
        "workers",
        ["repo_id", "task_id"],
        unique=True,
        sqlite_where=_NON_TERMINAL,
    )
    op.create_index(
        "uq_workers_repo_worktree_active",
        "workers",
        ["repo_id", "worktree_path"],
        unique=True,
        sqlite_where=_NON_TERMINAL,
    )
    op.create_index(
        "uq_workers_repo_branch_active",
        "workers",
        ["repo_id", "branch_name"],
        unique=True,
        sqlite_where=_NON_TERMINAL,
    )

    op.create_table(
        "worker_history",
        sa.Column("history_id", sa.String(), nullable=False),
        sa.Column("repo_id", sa.String(), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=True),
        sa.Column("task_title", sa.String(), nullable=True),
        sa.Column("branch_name", sa.String(), nullable=True),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("merge_conflicts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("files_changed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("insertions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deletions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["repo_id"], ["repositories.repo_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("history_id"),
    )
    op.create_index("ix_worker_history_repo_id", "worker_history", ["repo_id"])
    op.create_index("ix_worker_history_worker_id", "worker_history", ["worker_id"])
    op.create_index("ix_worker_history_outcome", "worker_history", ["outcome"])

    op.create_table(
        "manager_signals",
        sa.Column("signal_id", sa.String(), nullable=False),
        sa.Column("repo_id", sa.String(), nullable=False),
        sa.Column("signal_type", sa.String(), nullable=False),
        sa.Column("message", sa.String(), nullable=False),
        sa.Column("details_json", sa.String(), nullable=True),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("action_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("action_options_json", sa.String(), nullable=True),
        sa.Column("dismissed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dismissed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["repo_id"], ["repositories.repo_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("signal_id"),
    )
    op.create_index("ix_manager_signals_repo_id", "manager_signals", ["repo_id"])
    op.create_index("ix_manager_signals_signal_type", "manager_signals", ["signal_type"])
    op.create_index("ix_manager_signals_worker_id", "manager_signals", ["worker_id"])
    op.create_index("ix_manager_signals_dismissed", "manager_signals", ["dismissed"])

    op.create_table(
        "worker_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("repo_id", sa.String(), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["repo_id"], ["repositories.repo_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_worker_events_repo_id", "worker_events", ["repo_id"])
    op.create_index("ix_worker_events_worker_id", "worker_events", ["worker_id"])
    op.create_index("ix_worker_events_event_type", "worker_events", ["event_type"])


def downgrade() -> None:
    op.drop_table("worker_events")
    op.drop_table("manager_signals")
    op.drop_table("worker_history")
    op.drop_table("workers")
    op.drop_table("repositories")
