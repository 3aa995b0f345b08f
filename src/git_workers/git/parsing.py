"""Parsers for git porcelain output.

Every function here is pure: it takes raw text from one git command and
returns typed values, so the rest of the package never slices git output.
"""

from __future__ import annotations

from git_workers.git.models import (
    BranchStats,
    ConflictRegion,
    ConflictType,
    StatusEntry,
    WorktreeInfo,
)

PREVIEW_MAX_LINES = 10

_OURS_MARKER = "<<<<<<<"
_BASE_MARKER = "|||||||"
_SPLIT_MARKER = "======="
_THEIRS_MARKER = ">>>>>>>"

# Codes where the named side has no version of the file.
_OURS_ABSENT_CODES = frozenset({"DD", "DU", "UA"})
_THEIRS_ABSENT_CODES = frozenset({"DD", "UD", "AU"})


def parse_worktree_list(output: str) -> list[WorktreeInfo]:
    """Parse ``git worktree list --porcelain``.

    Blocks are separated by blank lines; each holds ``worktree <path>``,
    ``HEAD <sha>`` and either ``branch refs/heads/<name>`` or ``detached``.
    Git always lists the main worktree first.
    """

    worktrees: list[WorktreeInfo] = []
    for block in output.strip().split("\n\n"):
        path = ""
        commit = ""
        branch = ""
        for line in block.splitlines():
            if line.startswith("worktree "):
                path = line[len("worktree ") :]
            elif line.startswith("HEAD "):
                commit = line[len("HEAD ") :]
            elif line.startswith("branch "):
                branch = line[len("branch ") :].removeprefix("refs/heads/")
            elif line == "detached":
                branch = "(detached)"
            elif line == "bare":
                branch = "(bare)"
        if path:
            worktrees.append(
                WorktreeInfo(path=path, branch=branch, commit=commit, is_main=not worktrees),
            )
    return worktrees


def parse_status_porcelain(output: str) -> list[StatusEntry]:
    """Parse ``git status --porcelain -z`` (NUL separated, rename source follows)."""

    entries: list[StatusEntry] = []
    tokens = output.split("\0")
    index = 0
    while index < len(tokens):
        token = tokens[index]
        index += 1
        if len(token) < 4:
            continue
        code = token[:2]
        path = token[3:]
        orig_path: str | None = None
        if code[0] in {"R", "C"} and index < len(tokens):
            orig_path = tokens[index]
            index += 1
        entries.append(StatusEntry(code=code, path=path, orig_path=orig_path))
    return entries


def classify_conflict(code: str, *, renamed: bool = False) -> ConflictType:
    """Map an unmerged porcelain code to a conflict type.

    Porcelain codes cannot tell a rename conflict apart, so ``renamed`` comes
    from the merge output (see ``renamed_conflict_paths``).
    """

    if renamed:
        return ConflictType.RENAMED
    if code in {"AA", "AU", "UA"}:
        return ConflictType.ADDED
    if "D" in code:
        return ConflictType.DELETED
    return ConflictType.CONTENT


def renamed_conflict_paths(merge_output: str) -> set[str]:
    """Paths named by ``CONFLICT (rename/...)`` lines of ``git merge`` output."""

    paths: set[str] = set()
    for line in merge_output.splitlines():
        if not line.startswith("CONFLICT (rename"):
            continue
        _, _, description = line.partition("): ")
        paths.update(token.rstrip(".,") for token in description.split())
    return paths


def side_has_file(code: str, *, ours: bool) -> bool:
    """Whether the given side of an unmerged path still has a version of it."""

    if ours:
        return code not in _OURS_ABSENT_CODES
    return code not in _THEIRS_ABSENT_CODES


def extract_first_conflict(content: str, *, max_lines: int = PREVIEW_MAX_LINES) -> ConflictRegion:
    """Return bounded previews of the first conflict region and the region count."""

    lines = content.splitlines()
    marker_count = sum(1 for line in lines if line.startswith(_OURS_MARKER))
    ours: list[str] = []
    theirs: list[str] = []
    section: str | None = None
    for line in lines:
        if section is None:
            if line.startswith(_OURS_MARKER):
                section = "ours"
            continue
        if section == "ours" and line.startswith(_BASE_MARKER):
            section = "base"
        elif section in {"ours", "base"} and line.startswith(_SPLIT_MARKER):
            section = "theirs"
        elif section == "theirs" and line.startswith(_THEIRS_MARKER):
            break
        elif section == "ours":
            ours.append(line)
        elif section == "theirs":
            theirs.append(line)
    return ConflictRegion(
        ours="\n".join(ours[:max_lines]),
        theirs="\n".join(theirs[:max_lines]),
        marker_count=marker_count,
    )


def parse_numstat(output: str) -> BranchStats:
    """Parse ``git diff --numstat``; binary files report ``-`` for both counts."""

    stats = BranchStats()
    for line in output.splitlines():
        parts = line.split("\t", 2)
        if len(parts) != 3:
            continue
        added, deleted, path = parts
        stats.files_changed += 1
        stats.files.append(_numstat_path(path))
        if added.isdigit():
            stats.insertions += int(added)
        if deleted.isdigit():
            stats.deletions += int(deleted)
    return stats


def _numstat_path(path: str) -> str:
    # Renames render as "old => new" or "dir/{old => new}/file".
    if " => " not in path:
        return path
    if "{" in path and "}" in path:
        prefix, rest = path.split("{", 1)
        inner, suffix = rest.split("}", 1)
        new = inner.split(" => ", 1)[1]
        return f"{prefix}{new}{suffix}".replace("//", "/")
    return path.split(" => ", 1)[1]
