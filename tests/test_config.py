from __future__ import annotations

from pathlib import Path

import allure
import pytest

from git_workers.config import DEFAULT_COPY_PATHS, Settings, WorkerLimits

pytestmark = [
    allure.epic("Worker Orchestration"),
    allure.feature("Configuration"),
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "GIT_WORKERS_DB_PATH",
        "GIT_WORKERS_MAX_WORKERS",
        "GIT_WORKERS_AUTO_MERGE",
        "GIT_WORKERS_TARGET_BRANCH",
        "GIT_WORKERS_COPY_PATHS",
        "GIT_WORKERS_USERNAME",
        "GIT_WORKERS_AGENT_COMMAND",
    ):
        monkeypatch.delenv(name, raising=False)


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".git_workers.db")
    assert settings.limits.max_workers == 2
    assert settings.limits.pending_timeout_seconds == 300
    assert settings.limits.heartbeat_timeout_seconds == 120
    assert settings.git.auto_merge is True
    assert settings.git.target_branch is None
    assert settings.git.copy_paths == DEFAULT_COPY_PATHS
    assert settings.agent.command == "claude"
    settings.validate()


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GIT_WORKERS_MAX_WORKERS", "4")
    monkeypatch.setenv("GIT_WORKERS_AUTO_MERGE", "off")
    monkeypatch.setenv("GIT_WORKERS_TARGET_BRANCH", " develop ")
    monkeypatch.setenv("GIT_WORKERS_COPY_PATHS", "AGENTS.md, docs ,AGENTS.md,")
    monkeypatch.setenv("GIT_WORKERS_AGENT_COMMAND", "codex")

    settings = Settings.from_env(db_path=tmp_path / "ledger.db")

    assert settings.db_path == tmp_path / "ledger.db"
    assert settings.limits.max_workers == 4
    assert settings.git.auto_merge is False
    assert settings.git.target_branch == "develop"
    assert settings.git.copy_paths == ("AGENTS.md", "docs")
    assert settings.agent.command == "codex"


def test_from_env_rejects_invalid_boolean(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_WORKERS_AUTO_MERGE", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value for GIT_WORKERS_AUTO_MERGE"):
        Settings.from_env()


@pytest.mark.parametrize("entry", ["/etc/passwd", "../outside"])
def test_from_env_rejects_copy_paths_outside_repository(
    monkeypatch: pytest.MonkeyPatch,
    entry: str,
) -> None:
    monkeypatch.setenv("GIT_WORKERS_COPY_PATHS", entry)

    with pytest.raises(ValueError, match="Invalid GIT_WORKERS_COPY_PATHS entry"):
        Settings.from_env()


def test_validate_rejects_non_positive_worker_cap() -> None:
    settings = Settings(limits=WorkerLimits(max_workers=0))

    with pytest.raises(ValueError, match="GIT_WORKERS_MAX_WORKERS"):
        settings.validate()
