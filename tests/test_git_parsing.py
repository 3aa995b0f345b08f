from __future__ import annotations

import allure
import pytest

from git_workers.git.models import ConflictType, StatusEntry
from git_workers.git.parsing import (
    classify_conflict,
    extract_first_conflict,
    parse_numstat,
    parse_status_porcelain,
    parse_worktree_list,
    renamed_conflict_paths,
    side_has_file,
)

pytestmark = [
    allure.epic("Git Plumbing"),
    allure.feature("Porcelain Parsing"),
]


def test_parse_worktree_list_marks_first_entry_as_main() -> None:
    output = (
        "worktree /work/repo\n"
        "HEAD 1111111111111111111111111111111111111111\n"
        "branch refs/heads/main\n"
        "\n"
        "worktree /work/repo-alice-1\n"
        "HEAD 2222222222222222222222222222222222222222\n"
        "branch refs/heads/feature/alice/be1-add-endpoint\n"
        "\n"
        "worktree /work/repo-alice-2\n"
        "HEAD 3333333333333333333333333333333333333333\n"
        "detached\n"
    )

    worktrees = parse_worktree_list(output)

    assert [item.path for item in worktrees] == [
        "/work/repo",
        "/work/repo-alice-1",
        "/work/repo-alice-2",
    ]
    assert [item.is_main for item in worktrees] == [True, False, False]
    assert worktrees[1].branch == "feature/alice/be1-add-endpoint"
    assert worktrees[2].branch == "(detached)"
    assert worktrees[0].commit.startswith("1111")


def test_parse_worktree_list_handles_empty_output() -> None:
    assert parse_worktree_list("") == []


def test_parse_status_porcelain_reads_nul_separated_entries_with_renames() -> None:
    output = "UU src/app.py\0R  new_name.py\0old_name.py\0 M README.md\0AA added.txt\0"

    entries = parse_status_porcelain(output)

    assert entries == [
        StatusEntry(code="UU", path="src/app.py"),
        StatusEntry(code="R ", path="new_name.py", orig_path="old_name.py"),
        StatusEntry(code=" M", path="README.md"),
        StatusEntry(code="AA", path="added.txt"),
    ]
    assert [entry.is_unmerged for entry in entries] == [True, False, False, True]


def test_parse_status_porcelain_keeps_paths_with_spaces() -> None:
    entries = parse_status_porcelain("DU docs/release notes.md\0")

    assert entries[0].path == "docs/release notes.md"
    assert entries[0].is_unmerged


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("UU", ConflictType.CONTENT),
        ("AA", ConflictType.ADDED),
        ("AU", ConflictType.ADDED),
        ("UA", ConflictType.ADDED),
        ("DD", ConflictType.DELETED),
        ("DU", ConflictType.DELETED),
        ("UD", ConflictType.DELETED),
    ],
)
def test_classify_conflict(code: str, expected: ConflictType) -> None:
    assert classify_conflict(code) is expected


def test_side_has_file_reports_missing_side_for_delete_conflicts() -> None:
    assert side_has_file("UU", ours=True)
    assert side_has_file("UU", ours=False)
    assert not side_has_file("DU", ours=True)
    assert side_has_file("DU", ours=False)
    assert side_has_file("UD", ours=True)
    assert not side_has_file("UD", ours=False)
    assert not side_has_file("DD", ours=True)


def test_extract_first_conflict_returns_first_region_and_counts_all() -> None:
    content = "\n".join(
        [
            "header",
            "<<<<<<< HEAD",
            "ours line",
            "=======",
            "theirs line",
            ">>>>>>> feature",
            "middle",
            "<<<<<<< HEAD",
            "second ours",
            "=======",
            "second theirs",
            ">>>>>>> feature",
        ],
    )

    region = extract_first_conflict(content)

    assert region.ours == "ours line"
    assert region.theirs == "theirs line"
    assert region.marker_count == 2


def test_extract_first_conflict_skips_diff3_base_section() -> None:
    content = "\n".join(
        [
            "<<<<<<< HEAD",
            "ours",
            "||||||| base",
            "original",
            "=======",
            "theirs",
            ">>>>>>> feature",
        ],
    )

    region = extract_first_conflict(content)

    assert region.ours == "ours"
    assert region.theirs == "theirs"


def test_extract_first_conflict_caps_preview_lines() -> None:
    ours = [f"ours {index}" for index in range(25)]
    content = "\n".join(["<<<<<<< HEAD", *ours, "=======", "theirs", ">>>>>>> feature"])

    region = extract_first_conflict(content)

    assert region.ours.splitlines() == ours[:10]
    assert region.marker_count == 1


def test_extract_first_conflict_without_markers_is_empty() -> None:
    region = extract_first_conflict("plain file\n")

    assert region.ours == ""
    assert region.theirs == ""
    assert region.marker_count == 0


def test_parse_numstat_counts_binary_files_and_renames() -> None:
    output = "\n".join(
        [
            "10\t2\tsrc/app.py",
            "-\t-\tassets/logo.png",
            "0\t0\tsrc/{old => new}/module.py",
            "3\t0\told.txt => renamed.txt",
        ],
    )

    stats = parse_numstat(output)

    assert stats.files_changed == 4
    assert stats.insertions == 13
    assert stats.deletions == 2
    assert stats.files == [
        "src/app.py",
        "assets/logo.png",
        "src/new/module.py",
        "renamed.txt",
    ]


def test_parse_numstat_empty_diff() -> None:
    stats = parse_numstat("")

    assert stats.files_changed == 0
    assert stats.files == []


def test_renamed_conflict_paths_reads_rename_conflict_lines() -> None:
    output = (
        "Auto-merging README.md\n"
        "CONFLICT (rename/delete): app.py renamed to service.py in feature/alice/x, "
        "but deleted in HEAD.\n"
        "CONFLICT (content): Merge conflict in README.md\n"
        "Automatic merge failed; fix conflicts and then commit the result.\n"
    )

    paths = renamed_conflict_paths(output)

    assert {"app.py", "service.py"} <= paths
    assert "README.md" not in paths
    assert classify_conflict("UA", renamed="service.py" in paths) is ConflictType.RENAMED
    assert renamed_conflict_paths("") == set()
