"""Runtime configuration for the worker orchestrator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_COPY_PATHS: tuple[str, ...] = ("CLAUDE.md", "docs", ".claude")


@dataclass(slots=True)
class WorkerLimits:
    """Capacity and liveness thresholds."""

    max_workers: int = 2
    pending_timeout_seconds: int = 300
    heartbeat_timeout_seconds: int = 120


@dataclass(slots=True)
class GitSettings:
    """Git subprocess and merge policy settings."""

    command_timeout_seconds: float = 120.0
    lock_timeout_seconds: float = 60.0
    target_branch: str | None = None
    auto_merge: bool = True
    copy_paths: tuple[str, ...] = DEFAULT_COPY_PATHS


@dataclass(slots=True)
class AgentSettings:
    """How spawned agents are started and identified."""

    command: str = "claude"
    username: str | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".git_workers.db")
    sqlite_busy_timeout_ms: int = 5_000
    limits: WorkerLimits = field(default_factory=WorkerLimits)
    git: GitSettings = field(default_factory=GitSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults suitable for a local checkout."""

        target_branch = os.getenv("GIT_WORKERS_TARGET_BRANCH", "").strip() or None
        username = os.getenv("GIT_WORKERS_USERNAME", "").strip() or None
        return cls(
            db_path=db_path or Path(os.getenv("GIT_WORKERS_DB_PATH", ".git_workers.db")),
            sqlite_busy_timeout_ms=int(os.getenv("GIT_WORKERS_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            limits=WorkerLimits(
                max_workers=int(os.getenv("GIT_WORKERS_MAX_WORKERS", "2")),
                pending_timeout_seconds=int(
                    os.getenv("GIT_WORKERS_PENDING_TIMEOUT_SECONDS", "300"),
                ),
                heartbeat_timeout_seconds=int(
                    os.getenv("GIT_WORKERS_HEARTBEAT_TIMEOUT_SECONDS", "120"),
                ),
            ),
            git=GitSettings(
                command_timeout_seconds=float(
                    os.getenv("GIT_WORKERS_GIT_TIMEOUT_SECONDS", "120"),
                ),
                lock_timeout_seconds=float(os.getenv("GIT_WORKERS_LOCK_TIMEOUT_SECONDS", "60")),
                target_branch=target_branch,
                auto_merge=_env_bool("GIT_WORKERS_AUTO_MERGE", default=True),
                copy_paths=_collect_copy_paths(),
            ),
            agent=AgentSettings(
                command=os.getenv("GIT_WORKERS_AGENT_COMMAND", "claude").strip() or "claude",
                username=username,
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for limits that would make the engine unusable."""

        if self.limits.max_workers <= 0:
            raise ValueError("GIT_WORKERS_MAX_WORKERS must be a positive integer.")
        if self.limits.pending_timeout_seconds <= 0:
            raise ValueError("GIT_WORKERS_PENDING_TIMEOUT_SECONDS must be > 0.")
        if self.limits.heartbeat_timeout_seconds <= 0:
            raise ValueError("GIT_WORKERS_HEARTBEAT_TIMEOUT_SECONDS must be > 0.")
        if self.git.command_timeout_seconds <= 0:
            raise ValueError("GIT_WORKERS_GIT_TIMEOUT_SECONDS must be > 0.")
        if self.git.lock_timeout_seconds <= 0:
            raise ValueError("GIT_WORKERS_LOCK_TIMEOUT_SECONDS must be > 0.")
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("GIT_WORKERS_SQLITE_BUSY_TIMEOUT_MS must be > 0.")


def _collect_copy_paths() -> tuple[str, ...]:
    raw = os.getenv("GIT_WORKERS_COPY_PATHS")
    if raw is None:
        return DEFAULT_COPY_PATHS

    values: list[str] = []
    seen: set[str] = set()
    for part in raw.split(","):
        normalized = part.strip()
        if not normalized or normalized in seen:
            continue
        if Path(normalized).is_absolute() or ".." in Path(normalized).parts:
            raise ValueError(
                f"Invalid GIT_WORKERS_COPY_PATHS entry: {normalized!r}. "
                "Expected a path relative to the repository root.",
            )
        seen.add(normalized)
        values.append(normalized)
    return tuple(values)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
