from __future__ import annotations

import re
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner
from conftest import commit_file

from git_workers.main import git_workers

pytestmark = [
    allure.epic("Worker Orchestration"),
    allure.feature("CLI"),
]


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "GIT_WORKERS_DB_PATH",
        "GIT_WORKERS_MAX_WORKERS",
        "GIT_WORKERS_AUTO_MERGE",
        "GIT_WORKERS_TARGET_BRANCH",
        "GIT_WORKERS_USERNAME",
        "GIT_WORKERS_AGENT_COMMAND",
        "GIT_WORKERS_COPY_PATHS",
    ):
        monkeypatch.delenv(name, raising=False)


def _invoke(runner: CliRunner, db_path: Path, *args: str):
    command, *rest = args
    return runner.invoke(git_workers, ["workers", command, "--db-path", str(db_path), *rest])


def test_cli_spawn_heartbeat_complete_and_inspect(tmp_path: Path, git_repo: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    spawn = _invoke(
        runner,
        db_path,
        "spawn",
        "--repo",
        str(git_repo),
        "--task-id",
        "BE.1",
        "--title",
        "Add endpoint",
        "--next-task-id",
        "BE.2",
        "--next-task-title",
        "Add tests",
    )
    assert spawn.exit_code == 0, spawn.output
    assert "branch=feature/alice/be1-add-endpoint" in spawn.output
    match = re.search(r"worker_id=(\S+)", spawn.output)
    assert match is not None
    worker_id = match.group(1)

    listing = _invoke(runner, db_path, "list", "--repo", str(git_repo))
    assert listing.exit_code == 0, listing.output
    assert "Active workers: 1/2 can_spawn_more=true" in listing.output
    assert worker_id in listing.output

    beat = _invoke(runner, db_path, "heartbeat", worker_id, "--progress", "30")
    assert beat.exit_code == 0, beat.output
    assert "status=working should_pause=false should_abort=false" in beat.output
    assert "next_task=BE.2 Add tests" in beat.output

    update = _invoke(runner, db_path, "update", worker_id, "--message", "Writing handler")
    assert update.exit_code == 0, update.output
    assert "status=working" in update.output

    show = _invoke(runner, db_path, "show", worker_id, "--events")
    assert show.exit_code == 0, show.output
    assert "message=Writing handler" in show.output
    assert "event" in show.output and "spawned" in show.output

    worktree = git_repo.parent / "repo-alice-1"
    commit_file(worktree, "api/endpoint.py", "ROUTE = '/items'\n", "Add endpoint")

    complete = _invoke(runner, db_path, "complete", worker_id)
    assert complete.exit_code == 0, complete.output
    assert "merge_status=clean" in complete.output
    assert "files_changed=1 insertions=1 deletions=0" in complete.output
    assert "next_task=BE.2 Add tests" in complete.output

    finished = _invoke(runner, db_path, "show", worker_id)
    assert finished.exit_code == 0, finished.output
    assert "status=merged progress=100" in finished.output
    assert "outcome=merged conflicts=0 files=1 +1 -0" in finished.output

    history =_invoke(runner, db_path, "history", "--repo", str(git_repo))
    assert history.exit_code == 0, history.output
    assert f"{worker_id} task=BE.1 outcome=merged" in history.output

    signals = _invoke(runner, db_path, "signals", "--repo", str(git_repo))
    assert signals.exit_code == 0, signals.output
    assert "[decision]" in signals.output
    assert "options: Spawn Next Task | Skip" in signals.output

    dismiss = _invoke(runner, db_path, "dismiss", "--repo", str(git_repo), "--all")
    assert dismiss.exit_code == 0, dismiss.output
    assert "Dismissed 2 signal(s)." in dismiss.output

    dead = _invoke(runner, db_path, "dead", "--repo", str(git_repo))
    assert dead.exit_code == 0, dead.output
    assert "Dead workers: 0/0 active" in dead.output


def test_cli_reports_conflicts_and_resolves(tmp_path: Path, git_repo: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    spawn = _invoke(
        runner,
        db_path,
        "spawn",
        "--repo",
        str(git_repo),
        "--task-id",
        "BE.7",
        "--title",
        "Change handler",
    )
    assert spawn.exit_code == 0, spawn.output
    worker_id = re.search(r"worker_id=(\S+)", spawn.output).group(1)  # type: ignore[union-attr]
    commit_file(
        git_repo.parent / "repo-alice-1",
        "app.py",
        "def handler():\n    return 'worker'\n",
        "Worker change",
    )
    commit_file(git_repo, "app.py", "def handler():\n    return 'main'\n", "Main change")

    complete = _invoke(runner, db_path, "complete", worker_id)
    assert complete.exit_code == 0, complete.output
    assert "merge_status=conflicts" in complete.output
    assert "conflict content app.py regions=1" in complete.output

    resolve = _invoke(runner, db_path, "resolve", worker_id, "ours")
    assert resolve.exit_code == 0, resolve.output
    assert "Resolved with ours: merged=true files=app.py" in resolve.output
    assert "return 'worker'" in (git_repo / "app.py").read_text(encoding="utf-8")


def test_cli_maps_domain_errors_to_click_errors(tmp_path: Path, git_repo: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()

    missing = _invoke(runner, db_path, "show", "worker-nobody-1-zzzz")
    assert missing.exit_code == 1
    assert "Worker not found: worker-nobody-1-zzzz" in missing.output

    plain = tmp_path / "plain"
    plain.mkdir()
    not_repo = _invoke(runner, db_path, "list", "--repo", str(plain))
    assert not_repo.exit_code == 1
    assert "Not a git repository" in not_repo.output

    spawn = _invoke(
        runner,
        db_path,
        "spawn",
        "--repo",
        str(git_repo),
        "--task-id",
        "BE.1",
        "--title",
        "Add endpoint",
    )
    worker_id = re.search(r"worker_id=(\S+)", spawn.output).group(1)  # type: ignore[union-attr]
    bad_progress = _invoke(runner, db_path, "update", worker_id, "--progress", "150")
    assert bad_progress.exit_code == 1
    assert "Progress must be between 0 and 100" in bad_progress.output

    stop = _invoke(runner, db_path, "stop", worker_id)
    assert stop.exit_code == 0, stop.output
    assert "deleted=true worktree_removed=true branch_deleted=true" in stop.output
