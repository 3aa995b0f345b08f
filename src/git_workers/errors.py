"""Error hierarchy shared by git plumbing and the worker orchestrator."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from git_workers.git.models import ConflictInfo


class GitWorkersError(RuntimeError):
    """Base class for every error raised by this package."""


class PreconditionViolation(GitWorkersError):
    """Request rejected before any repository or ledger mutation."""


class NotAGitRepo(PreconditionViolation):
    def __init__(self, path: str) -> None:
        super().__init__(f"Not a git repository: {path}")
        self.path = path


class PathCollision(PreconditionViolation):
    def __init__(self, path: str) -> None:
        super().__init__(f"Worktree path already exists: {path}")
        self.path = path


class BranchCollision(PreconditionViolation):
    def __init__(self, branch: str) -> None:
        super().__init__(f"Branch already exists: {branch}")
        self.branch = branch


class DirtyWorkingTree(PreconditionViolation):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Working tree is not clean at {path}: {reason}")
        self.path = path


class MaxWorkersReached(PreconditionViolation):
    def __init__(self, max_workers: int) -> None:
        super().__init__(f"Maximum workers reached ({max_workers}). Wait for one to complete.")
        self.max_workers = max_workers


class TaskAlreadyActive(PreconditionViolation):
    def __init__(self, task_id: str, worker_id: str | None) -> None:
        owner = f" by worker {worker_id}" if worker_id else ""
        super().__init__(f"Task {task_id} is already being worked on{owner}")
        self.task_id = task_id
        self.worker_id = worker_id


class WorkerNotFound(PreconditionViolation):
    def __init__(self, worker_id: str) -> None:
        super().__init__(f"Worker not found: {worker_id}")
        self.worker_id = worker_id


class RepositoryNotRegistered(PreconditionViolation):
    def __init__(self, path: str) -> None:
        super().__init__(f"Repository not found: {path}")
        self.path = path


class InvalidTransition(PreconditionViolation):
    def __init__(self, worker_id: str, status_from: str, status_to: str) -> None:
        super().__init__(
            f"Worker {worker_id} cannot move from status={status_from} to status={status_to}",
        )
        self.worker_id = worker_id
        self.status_from = status_from
        self.status_to = status_to


class InvalidWorkerUpdate(PreconditionViolation):
    """Malformed update payload (progress out of range, missing branch, ...)."""


class UnresolvedConflicts(PreconditionViolation):
    def __init__(self, files: list[str]) -> None:
        super().__init__(
            "Conflicts remain unresolved after applying strategy: " + ", ".join(files),
        )
        self.files = files


class WorktreeCreationFailed(PreconditionViolation):
    def __init__(self, message: str) -> None:
        super().__init__(f"Failed to create worktree: {message}")


class GitCommandError(GitWorkersError):
    """Non-zero exit of a git subprocess with its raw diagnostics."""

    def __init__(
        self,
        args: list[str],
        *,
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        detail = stderr.strip() or stdout.strip() or f"exit code {returncode}"
        super().__init__(f"Git error ({' '.join(args)}): {detail}")
        self.git_args = args
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class GitTimeout(GitCommandError):
    """A git subprocess exceeded the configured timeout and was killed."""

    def __init__(self, args: list[str], *, timeout_seconds: float) -> None:
        super().__init__(
            args,
            returncode=-1,
            stdout="",
            stderr=f"timed out after {timeout_seconds:.0f}s",
        )
        self.timeout_seconds = timeout_seconds


class UnexpectedMergeFailure(GitWorkersError):
    """A merge failed for a reason other than content conflicts."""

    def __init__(self, message: str, *, diagnostics: str) -> None:
        super().__init__(f"{message}: {diagnostics}" if diagnostics else message)
        self.diagnostics = diagnostics


class ConflictsPersisted(GitWorkersError):
    """Conflicts still reported after an explicit resolution strategy was applied."""

    def __init__(self, branch: str, conflicts: list[ConflictInfo]) -> None:
        super().__init__(
            f"Merge of {branch} still conflicts after resolution "
            f"({len(conflicts)} file(s)): {', '.join(item.file for item in conflicts)}",
        )
        self.branch = branch
        self.conflicts = conflicts


class RepoLockTimeout(GitWorkersError):
    def __init__(self, lock_path: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Timed out after {timeout_seconds:.0f}s waiting for repository lock {lock_path}",
        )
        self.lock_path = lock_path
