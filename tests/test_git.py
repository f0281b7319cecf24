import shutil
import subprocess
from pathlib import Path

import pytest

from specs_dashboard.git import (
    find_git_root,
    list_git_changes,
    list_git_commits,
    load_git_commit_preview,
    load_git_diff_preview,
    parse_branch_summary,
    parse_status_entry,
)

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


def _git(cwd, *args):
    subprocess.run(
        ["git", "-c", "user.name=Dashboard Tests", "-c", "user.email=tests@example.com",
         "-c", "commit.gpgsign=false", "-c", "init.defaultBranch=main", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
    )


def test_branch_summary_with_tracking():
    summary = parse_branch_summary("## main...origin/main [ahead 2, behind 1]")

    assert summary.branch == "main"
    assert summary.upstream == "origin/main"
    assert (summary.ahead, summary.behind) == (2, 1)
    assert not summary.detached


def test_branch_summary_variants():
    assert parse_branch_summary("## main").branch == "main"
    assert parse_branch_summary("## main").upstream is None
    assert parse_branch_summary("## HEAD (no branch)").detached
    assert parse_branch_summary("## No commits yet on trunk").branch == "trunk"
    assert parse_branch_summary("## Initial commit on trunk").branch == "trunk"
    assert parse_branch_summary("").branch == "(unknown)"


def test_status_entry_classification():
    modified = parse_status_entry(" M src/app.py", "/repo")
    assert modified.unstaged and not modified.staged
    assert modified.absolute_path == str(Path("/repo") / "src/app.py")

    renamed = parse_status_entry("R  old.py -> new.py", "/repo")
    assert renamed.staged and not renamed.unstaged
    assert renamed.relative_path == "new.py"

    untracked = parse_status_entry("?? notes.md", "/repo")
    assert untracked.untracked and not untracked.staged and not untracked.unstaged

    conflicted = parse_status_entry("UU merge.txt", "/repo")
    assert conflicted.conflicted

    assert parse_status_entry("## main", "/repo") is None
    assert parse_status_entry("", "/repo") is None


def test_non_repository_is_unavailable(tmp_path):
    changes = list_git_changes(tmp_path / "missing")

    assert not changes.available
    assert changes.branch == "(not a git repo)"
    assert changes.counts.total == 0
    assert find_git_root(None) is None


def test_previews_without_repository():
    assert load_git_diff_preview(None, "a.txt").startswith("[git]")
    assert load_git_diff_preview("/repo", "") == "[git] no file selected."
    assert load_git_commit_preview("/repo", "") == "[git] no commit selected."
    assert list_git_commits(None) == []


@requires_git
def test_real_repository_changes(tmp_path):
    _git(tmp_path, "init")
    (tmp_path / "tracked.txt").write_text("first\n", encoding="utf-8")
    _git(tmp_path, "add", "tracked.txt")
    _git(tmp_path, "commit", "-m", "initial import")

    (tmp_path / "tracked.txt").write_text("first\nchanged\n", encoding="utf-8")
    (tmp_path / "new.txt").write_text("fresh\n", encoding="utf-8")

    changes = list_git_changes(tmp_path)

    assert changes.available
    assert Path(changes.root_path).resolve() == tmp_path.resolve()
    assert changes.branch in ("main", "master")
    assert not changes.clean
    assert (changes.counts.unstaged, changes.counts.untracked, changes.counts.total) == (1, 1, 2)
    assert changes.unstaged[0].key == "unstaged:tracked.txt"

    diff = load_git_diff_preview(changes.root_path, "tracked.txt", "unstaged")
    assert "+changed" in diff

    untracked = changes.untracked[0]
    assert "+fresh" in load_git_diff_preview(changes.root_path, "new.txt", "untracked", untracked.path)

    commits = list_git_commits(changes.root_path)
    assert [subject for _, subject in commits] == ["initial import"]
    assert "initial import" in load_git_commit_preview(changes.root_path, commits[0][0])
