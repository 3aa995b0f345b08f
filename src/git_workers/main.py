"""CLI entrypoint for git-workers."""

import functools
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from git_workers import __version__
from git_workers.errors import GitWorkersError
from git_workers.orchestrator.controllers import (
    WorkerCliController,
    WorkerCompleteCommand,
    WorkerDeadCommand,
    WorkerDismissCommand,
    WorkerHeartbeatCommand,
    WorkerHistoryCommand,
    WorkerRepoCommand,
    WorkerResolveCommand,
    WorkerShowCommand,
    WorkerSignalsCommand,
    WorkerSpawnCommand,
    WorkerStopCommand,
    WorkerUpdateCommand,
)

click.rich_click.USE_MARKDOWN = True
WORKER_CONTROLLER = WorkerCliController()

UPDATABLE_STATUSES = ["pending", "waiting", "working", "paused", "merging", "error"]


def _cli_errors(func: Callable[..., None]) -> Callable[..., None]:
    """Report domain failures as CLI errors instead of tracebacks."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> None:
        try:
            func(*args, **kwargs)
        except (GitWorkersError, ValueError) as error:
            raise click.ClickException(str(error)) from error

    return wrapper


def _db_option(func: Callable[..., None]) -> Callable[..., None]:
    return click.option(
        "--db-path",
        type=click.Path(path_type=Path),
        default=None,
        help="SQLite DB path.",
    )(func)


def _repo_option(func: Callable[..., None]) -> Callable[..., None]:
    return click.option(
        "--repo",
        "repo_path",
        type=click.Path(path_type=Path, exists=True, file_okay=False),
        default=Path(),
        show_default=True,
        help="Path inside the git repository.",
    )(func)


@click.group()
@click.version_option(version=__version__, prog_name="git-workers")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def git_workers(verbose: bool) -> None:
    """Run parallel coding agents in isolated git worktrees."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@git_workers.group()
def workers() -> None:
    """Worker lifecycle commands."""


@workers.command("spawn")
@_db_option
@_repo_option
@click.option("--task-id", required=True, help="Task identifier, e.g. BE.1.")
@click.option("--title", "task_title", required=True, help="Task title.")
@click.option("--user", "username", default=None, help="Username for branch and worktree names.")
@click.option("--next-task-id", default=None, help="Task to suggest after this one merges.")
@click.option("--next-task-title", default=None, help="Title of the follow-up task.")
@_cli_errors
def workers_spawn(  # noqa: PLR0913
    db_path: Path | None,
    repo_path: Path,
    task_id: str,
    task_title: str,
    username: str | None,
    next_task_id: str | None,
    next_task_title: str | None,
) -> None:
    """Create a worktree and branch for a task and register a worker."""

    _emit_lines(
        WORKER_CONTROLLER.spawn(
            WorkerSpawnCommand(
                db_path=db_path,
                repo_path=repo_path,
                task_id=task_id,
                task_title=task_title,
                username=username,
                next_task_id=next_task_id,
                next_task_title=next_task_title,
            ),
        ),
    )


@workers.command("list")
@_db_option
@_repo_option
@_cli_errors
def workers_list(db_path: Path | None, repo_path: Path) -> None:
    """List active workers and remaining capacity."""

    _emit_lines(
        WORKER_CONTROLLER.list_workers(WorkerRepoCommand(db_path=db_path, repo_path=repo_path)),
    )


@workers.command("show")
@_db_option
@click.argument("worker_id", required=False)
@click.option(
    "--worktree",
    "worktree_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Find the worker owning this worktree instead.",
)
@click.option("--events", is_flag=True, default=False, help="Include the audit trail.")
@_cli_errors
def workers_show(
    db_path: Path | None,
    worker_id: str | None,
    worktree_path: Path | None,
    events: bool,
) -> None:
    """Show one worker."""

    _emit_lines(
        WORKER_CONTROLLER.show(
            WorkerShowCommand(
                db_path=db_path,
                worker_id=worker_id,
                worktree_path=worktree_path,
                show_events=events,
            ),
        ),
    )


@workers.command("update")
@_db_option
@click.argument("worker_id")
@click.option(
    "--status",
    type=click.Choice(UPDATABLE_STATUSES, case_sensitive=False),
    default=None,
    help="New lifecycle status.",
)
@click.option("--message", default=None, help="Free-form progress message.")
@click.option("--progress", type=int, default=None, help="Progress percentage 0-100.")
@_cli_errors
def workers_update(
    db_path: Path | None,
    worker_id: str,
    status: str | None,
    message: str | None,
    progress: int | None,
) -> None:
    """Report status, message or progress for a worker."""

    _emit_lines(
        WORKER_CONTROLLER.update(
            WorkerUpdateCommand(
                db_path=db_path,
                worker_id=worker_id,
                status=status.lower() if status is not None else None,
                message=message,
                progress=progress,
            ),
        ),
    )


@workers.command("heartbeat")
@_db_option
@click.argument("worker_id")
@click.option("--message", default=None, help="Free-form progress message.")
@click.option("--progress", type=int, default=None, help="Progress percentage 0-100.")
@_cli_errors
def workers_heartbeat(
    db_path: Path | None,
    worker_id: str,
    message: str | None,
    progress: int | None,
) -> None:
    """Record agent liveness and print pause/abort instructions."""

    _emit_lines(
        WORKER_CONTROLLER.heartbeat(
            WorkerHeartbeatCommand(
                db_path=db_path,
                worker_id=worker_id,
                message=message,
                progress=progress,
            ),
        ),
    )


@workers.command("stop")
@_db_option
@click.argument("worker_id")
@click.option("--force", is_flag=True, default=False, help="Stop even while working.")
@click.option(
    "--keep-branch",
    is_flag=True,
    default=False,
    help="Keep the worker branch after removing the worktree.",
)
@_cli_errors
def workers_stop(db_path: Path | None, worker_id: str, force: bool, keep_branch: bool) -> None:
    """Remove a worker's worktree and drop it from the ledger."""

    _emit_lines(
        WORKER_CONTROLLER.stop(
            WorkerStopCommand(
                db_path=db_path,
                worker_id=worker_id,
                force=force,
                delete_branch=not keep_branch,
            ),
        ),
    )


@workers.command("complete")
@_db_option
@click.argument("worker_id")
@click.option(
    "--auto-merge/--no-auto-merge",
    default=None,
    help="Merge immediately when clean (defaults to GIT_WORKERS_AUTO_MERGE).",
)
@click.option("--message", "commit_message", default=None, help="Merge commit message.")
@_cli_errors
def workers_complete(
    db_path: Path | None,
    worker_id: str,
    auto_merge: bool | None,
    commit_message: str | None,
) -> None:
    """Check a finished worker for conflicts and merge it."""

    _emit_lines(
        WORKER_CONTROLLER.complete(
            WorkerCompleteCommand(
                db_path=db_path,
                worker_id=worker_id,
                auto_merge=auto_merge,
                commit_message=commit_message,
            ),
        ),
    )


@workers.command("resolve")
@_db_option
@click.argument("worker_id")
@click.argument(
    "strategy",
    type=click.Choice(["ours", "theirs", "abort"], case_sensitive=False),
)
@click.option("--file", "files", multiple=True, help="Limit resolution to these files.")
@_cli_errors
def workers_resolve(
    db_path: Path | None,
    worker_id: str,
    strategy: str,
    files: tuple[str, ...],
) -> None:
    """Resolve a paused worker's merge conflicts, or abort the merge."""

    _emit_lines(
        WORKER_CONTROLLER.resolve(
            WorkerResolveCommand(
                db_path=db_path,
                worker_id=worker_id,
                strategy=strategy.lower(),
                files=files,
            ),
        ),
    )


@workers.command("dead")
@_db_option
@_repo_option
@click.option(
    "--threshold",
    "threshold_seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Heartbeat timeout in seconds.",
)
@click.option(
    "--pending-threshold",
    "pending_threshold_seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Timeout in seconds for workers that never started.",
)
@_cli_errors
def workers_dead(
    db_path: Path | None,
    repo_path: Path,
    threshold_seconds: int | None,
    pending_threshold_seconds: int | None,
) -> None:
    """Report workers whose agents stopped reporting."""

    _emit_lines(
        WORKER_CONTROLLER.dead(
            WorkerDeadCommand(
                db_path=db_path,
                repo_path=repo_path,
                threshold_seconds=threshold_seconds,
                pending_threshold_seconds=pending_threshold_seconds,
            ),
        ),
    )


@workers.command("history")
@_db_option
@_repo_option
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max rows to show.",
)
@_cli_errors
def workers_history(db_path: Path | None, repo_path: Path, limit: int) -> None:
    """Show finished and stopped workers."""

    _emit_lines(
        WORKER_CONTROLLER.history(
            WorkerHistoryCommand(db_path=db_path, repo_path=repo_path, limit=limit),
        ),
    )


@workers.command("signals")
@_db_option
@_repo_option
@click.option("--all", "include_dismissed", is_flag=True, default=False, help="Include dismissed.")
@_cli_errors
def workers_signals(db_path: Path | None, repo_path: Path, include_dismissed: bool) -> None:
    """Show operator signals."""

    _emit_lines(
        WORKER_CONTROLLER.signals(
            WorkerSignalsCommand(
                db_path=db_path,
                repo_path=repo_path,
                include_dismissed=include_dismissed,
            ),
        ),
    )


@workers.command("dismiss")
@_db_option
@_repo_option
@click.argument("signal_id", required=False)
@click.option("--all", "dismiss_all", is_flag=True, default=False, help="Dismiss every signal.")
@_cli_errors
def workers_dismiss(
    db_path: Path | None,
    repo_path: Path,
    signal_id: str | None,
    dismiss_all: bool,
) -> None:
    """Dismiss one signal or all of them."""

    _emit_lines(
        WORKER_CONTROLLER.dismiss(
            WorkerDismissCommand(
                db_path=db_path,
                repo_path=repo_path,
                signal_id=signal_id,
                dismiss_all=dismiss_all,
            ),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    git_workers()
