"""Typed values produced by the git layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ConflictType(str, Enum):
    """Kind of conflict reported for one path."""

    CONTENT = "content"
    DELETED = "deleted"
    RENAMED = "renamed"
    ADDED = "added"


class ResolutionStrategy(str, Enum):
    """Which side wins when resolving conflicts deterministically.

    ``ours`` keeps the worker branch, ``theirs`` keeps the merge target.
    """

    OURS = "ours"
    THEIRS = "theirs"


@dataclass(slots=True)
class WorktreeInfo:
    """One entry of ``git worktree list``; derived live, never persisted."""

    path: str
    branch: str
    commit: str
    is_main: bool


@dataclass(slots=True)
class StatusEntry:
    """One line of ``git status --porcelain``."""

    code: str
    path: str
    orig_path: str | None = None

    @property
    def is_unmerged(self) -> bool:
        return "U" in self.code or self.code in {"DD", "AA"}


@dataclass(slots=True)
class ConflictRegion:
    """First conflict region of a file plus the number of regions in it."""

    ours: str
    theirs: str
    marker_count: int


@dataclass(slots=True)
class ConflictInfo:
    """Classification of one conflicted path found by a dry-run merge."""

    file: str
    type: ConflictType
    status_code: str
    ours_content: str | None = None
    theirs_content: str | None = None
    conflict_lines: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "file": self.file,
            "type": self.type.value,
            "status_code": self.status_code,
            "ours_content": self.ours_content,
            "theirs_content": self.theirs_content,
            "conflict_lines": self.conflict_lines,
        }


@dataclass(slots=True)
class BranchStats:
    """Diff statistics between a target and a branch."""

    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0
    files: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MergeResult:
    """Outcome of a real merge attempt."""

    success: bool
    conflicts: list[ConflictInfo] = field(default_factory=list)
    stats: BranchStats = field(default_factory=BranchStats)
    commit_hash: str | None = None


@dataclass(slots=True)
class WorktreeRemoval:
    """What a worktree removal actually achieved."""

    worktree_removed: bool
    branch_deleted: bool
    branch_name: str | None = None


@dataclass(slots=True)
class ResolutionOutcome:
    """Result of applying a strategy inside the worker's worktree."""

    strategy: ResolutionStrategy
    resolved_files: list[str]
    commit_hash: str | None
