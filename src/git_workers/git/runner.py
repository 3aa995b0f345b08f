"""Subprocess wrapper around the git CLI."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from git_workers.errors import GitCommandError, GitTimeout, NotAGitRepo

logger = logging.getLogger(__name__)


class GitClient:
    """Runs git commands synchronously with a timeout and typed failures."""

    def __init__(self, *, timeout_seconds: float = 120.0) -> None:
        self.timeout_seconds = timeout_seconds

    def run(self, cwd: Path | str, *args: str) -> str:
        """Run git and return stripped stdout; raise ``GitCommandError`` on failure."""

        result = self.run_unchecked(cwd, *args)
        if result.returncode != 0:
            raise GitCommandError(
                list(args),
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result.stdout.strip()

    def run_raw(self, cwd: Path | str, *args: str) -> str:
        """Like ``run`` but keeps stdout untouched (needed for ``-z`` output)."""

        result = self.run_unchecked(cwd, *args)
        if result.returncode != 0:
            raise GitCommandError(
                list(args),
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result.stdout

    def run_unchecked(self, cwd: Path | str, *args: str) -> subprocess.CompletedProcess[str]:
        logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
        try:
            return subprocess.run(  # noqa: S603
                ["git", *args],  # noqa: S607
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as error:
            logger.warning(
                "git %s timed out after %ss (cwd=%s)",
                " ".join(args),
                self.timeout_seconds,
                cwd,
            )
            raise GitTimeout(list(args), timeout_seconds=self.timeout_seconds) from error

    def succeeds(self, cwd: Path | str, *args: str) -> bool:
        return self.run_unchecked(cwd, *args).returncode == 0

    def is_repo(self, path: Path | str) -> bool:
        if not Path(path).is_dir():
            return False
        return self.succeeds(path, "rev-parse", "--git-dir")

    def repo_root(self, path: Path | str) -> Path:
        if not self.is_repo(path):
            raise NotAGitRepo(str(path))
        return Path(self.run(path, "rev-parse", "--show-toplevel"))

    def common_dir(self, path: Path | str) -> Path:
        raw = Path(self.run(path, "rev-parse", "--git-common-dir"))
        if not raw.is_absolute():
            raw = Path(path) / raw
        return raw.resolve()

    def current_branch(self, path: Path | str) -> str:
        return self.run(path, "rev-parse", "--abbrev-ref", "HEAD")

    def current_commit(self, path: Path | str) -> str:
        return self.run(path, "rev-parse", "HEAD")

    def branch_exists(self, path: Path | str, branch: str) -> bool:
        return self.succeeds(path, "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}")

    def merge_in_progress(self, path: Path | str) -> bool:
        return self.succeeds(path, "rev-parse", "-q", "--verify", "MERGE_HEAD")
