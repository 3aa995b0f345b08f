"""Deterministic naming of workers, branches, worktrees and slots."""

from __future__ import annotations

import getpass
import re
import secrets
import string
import time
from collections.abc import Iterable
from pathlib import Path

from git_workers.git.runner import GitClient

BRANCH_SLUG_MAX_CHARS = 40

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_SLOT_SUFFIX = re.compile(r"-(\d+)$")
_ID_ALPHABET = string.ascii_lowercase + string.digits


def slugify(text: str, *, max_chars: int = BRANCH_SLUG_MAX_CHARS) -> str:
    """Lowercase, collapse non-alphanumerics into ``-``, trim edges, cap length."""

    slug = _NON_ALNUM.sub("-", text.lower()).strip("-")
    return slug[:max_chars].rstrip("-")


def generate_worker_id(username: str, *, now_ms: int | None = None) -> str:
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(4))
    return f"worker-{username}-{timestamp}-{suffix}"


def generate_branch_name(username: str, task_id: str, task_title: str) -> str:
    """``feature/<user>/<taskid>-<slug>``; the task id keeps only safe characters."""

    task_slug = slugify(task_id, max_chars=BRANCH_SLUG_MAX_CHARS).replace("-", "")
    title_slug = slugify(task_title)
    if not title_slug:
        return f"feature/{username}/{task_slug}"
    return f"feature/{username}/{task_slug}-{title_slug}"


def generate_worktree_path(repo_path: Path, username: str, slot: int) -> Path:
    """Sibling directory of the repository: ``<parent>/<repo>-<user>-<slot>``."""

    return repo_path.parent / f"{repo_path.name}-{username}-{slot}"


def slot_of(path: str | Path) -> int | None:
    match = _SLOT_SUFFIX.search(str(path).rstrip("/"))
    return int(match.group(1)) if match else None


def next_free_slot(paths: Iterable[str | Path]) -> int:
    """Lowest positive slot number not used as a trailing ``-N`` of any path."""

    used = {slot for slot in (slot_of(path) for path in paths) if slot is not None}
    slot = 1
    while slot in used:
        slot += 1
    return slot


def resolve_username(git: GitClient, repo_path: Path) -> str:
    """Username for branch naming: git ``user.name`` first, then the OS user."""

    result = git.run_unchecked(repo_path, "config", "user.name")
    if result.returncode == 0 and slugify(result.stdout.strip()):
        return slugify(result.stdout.strip())
    try:
        return slugify(getpass.getuser()) or "user"
    except (KeyError, OSError):
        return "user"
