"""Shared test fixtures."""

from __future__ import annotations

import subprocess
from collections.abc import Iterator
from pathlib import Path

import pytest

from git_workers.config import GitSettings, Settings
from git_workers.orchestrator.repository import WorkerRepository
from git_workers.orchestrator.services import WorkerOrchestrator


def git(cwd: Path, *args: str) -> str:
    """Run git in ``cwd`` and return stripped stdout, failing the test on error."""

    result = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=False,
    )
    assert result.returncode == 0, f"git {' '.join(args)} failed: {result.stderr}"
    return result.stdout.strip()


def commit_file(repo: Path, relative: str, content: str, message: str) -> str:
    path = repo / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    git(repo, "add", "--", relative)
    git(repo, "commit", "--quiet", "-m", message)
    return git(repo, "rev-parse", "HEAD")


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """Fresh repository ``<tmp>/workspace/repo`` on ``main`` with one commit."""

    repo = tmp_path / "workspace" / "repo"
    repo.mkdir(parents=True)
    git(repo, "init", "--quiet", "-b", "main")
    git(repo, "config", "user.name", "Alice")
    git(repo, "config", "user.email", "alice@example.com")
    git(repo, "config", "commit.gpgsign", "false")
    git(repo, "config", "merge.conflictStyle", "merge")
    commit_file(repo, "README.md", "# Demo\n", "Initial commit")
    commit_file(repo, "app.py", "def handler():\n    return 'v1'\n", "Add app")
    return repo.resolve()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "ledger.db",
        git=GitSettings(lock_timeout_seconds=5.0),
    )


@pytest.fixture()
def repository(settings: Settings) -> Iterator[WorkerRepository]:
    repository = WorkerRepository(settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@pytest.fixture()
def orchestrator(repository: WorkerRepository, settings: Settings) -> WorkerOrchestrator:
    return WorkerOrchestrator(repository=repository, settings=settings)
