import shutil
import subprocess
from pathlib import Path

import pytest

from conftest import FIRE_STATE, write

from specs_dashboard.dashboard.models import GitChangeSet
from specs_dashboard.dashboard.parser import MAX_WORKTREE_WATCH_ROOTS, WorkspaceParser
from specs_dashboard.dashboard.tui.worktree_panels import (
    build_other_worktree_lines,
    build_worktree_lines,
    get_selected_worktree_label,
)
from specs_dashboard.worktrees import (
    Worktree,
    WorktreeDiscovery,
    build_worktree_id,
    discover_git_worktrees,
    mark_current_worktree,
    parse_branch_name,
    parse_worktree_porcelain,
    pick_worktree,
    sort_worktrees,
)

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")

PORCELAIN = """worktree /repo
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /repo-wt/feature
HEAD 2222222222222222222222222222222222222222
branch refs/heads/feature/auth
locked

worktree /repo-wt/hotfix
HEAD abcdef0123456789abcdef0123456789abcdef01
detached
prunable gitdir file points to non-existent location
"""


def _git(cwd, *args):
    subprocess.run(
        ["git", "-c", "user.name=Dashboard Tests", "-c", "user.email=tests@example.com",
         "-c", "commit.gpgsign=false", "-c", "init.defaultBranch=main", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
    )


def test_parse_branch_name():
    assert parse_branch_name("refs/heads/feature/x") == "feature/x"
    assert parse_branch_name("main") == "main"
    assert parse_branch_name(None) == ""


def test_worktree_id_is_path_safe():
    assert build_worktree_id("/Work/My Repo.git") == "/work/my-repo-git"


def test_parse_porcelain_blocks():
    worktrees = parse_worktree_porcelain(PORCELAIN)

    assert [wt.path for wt in worktrees] == ["/repo", "/repo-wt/feature", "/repo-wt/hotfix"]
    main, feature, hotfix = worktrees
    assert main.branch == "main" and main.is_main_branch
    assert feature.display_branch == "feature/auth" and feature.locked
    assert not feature.is_main_branch
    assert hotfix.detached and hotfix.prunable
    assert hotfix.display_branch == "[detached:abcdef0]"
    assert hotfix.name == "hotfix"


def test_parse_empty_porcelain_falls_back(tmp_path):
    worktrees = parse_worktree_porcelain("", tmp_path)

    assert len(worktrees) == 1
    assert worktrees[0].display_branch == "[non-git]"
    assert worktrees[0].is_current_path
    assert worktrees[0].path == str(tmp_path.resolve())


def test_mark_current_prefers_deepest_worktree():
    worktrees = [
        Worktree(id="main", path="/repo", name="repo", branch="main", is_main_branch=True),
        Worktree(id="nested", path="/repo/.worktrees/feature", name="feature", branch="feature"),
    ]

    marked = mark_current_worktree(worktrees, "/repo/.worktrees/feature/app")
    assert [wt.is_current_path for wt in marked] == [False, True]

    outside = mark_current_worktree(worktrees, "/elsewhere")
    assert [wt.is_current_path for wt in outside] == [True, False]


def test_sort_puts_current_then_main_first():
    worktrees = [
        Worktree(id="b", path="/b", name="b", display_branch="zeta"),
        Worktree(id="m", path="/m", name="m", display_branch="main", is_main_branch=True),
        Worktree(id="c", path="/c", name="c", display_branch="alpha", is_current_path=True),
        Worktree(id="a", path="/a", name="a", display_branch="beta"),
    ]

    assert [wt.id for wt in sort_worktrees(worktrees)] == ["c", "m", "a", "b"]


def test_pick_worktree_selectors():
    worktrees = parse_worktree_porcelain(PORCELAIN)
    feature = worktrees[1]

    assert pick_worktree(worktrees, feature.id) == feature
    assert pick_worktree(worktrees, "/repo-wt/feature") == feature
    assert pick_worktree(worktrees, "feature/auth") == feature
    assert pick_worktree(worktrees, "hotfix") == worktrees[2]
    assert pick_worktree(worktrees, "nope", "/repo") == worktrees[0]
    assert pick_worktree(worktrees) == worktrees[0]
    assert pick_worktree([]) is None


def test_discover_outside_git_falls_back(tmp_path):
    discovery = discover_git_worktrees(tmp_path)

    assert discovery.source == "fallback"
    assert not discovery.is_git_repo
    assert [wt.display_branch for wt in discovery.worktrees] == ["[non-git]"]


def _fire_copy(source: Path, target: Path, project: str) -> None:
    shutil.copytree(source / ".specs-fire", target / ".specs-fire")
    write(target / ".specs-fire" / "state.yaml", FIRE_STATE.replace("name: demo-app", f"name: {project}"))


def test_parser_lists_worktrees_and_watches_every_marker(fire_workspace, tmp_path_factory):
    feature = tmp_path_factory.mktemp("feature")
    plain = tmp_path_factory.mktemp("plain")
    _fire_copy(fire_workspace, feature, "feature-app")
    worktrees = [
        Worktree(id="main", path=str(fire_workspace), name=fire_workspace.name, branch="main",
                 display_branch="main", is_main_branch=True, is_current_path=True),
        Worktree(id="feature", path=str(feature), name=feature.name, branch="feature/auth",
                 display_branch="feature/auth"),
        Worktree(id="plain", path=str(plain), name=plain.name, branch="docs", display_branch="docs"),
    ]
    parser = WorkspaceParser(
        fire_workspace,
        git_collector=lambda path: GitChangeSet(),
        worktree_discoverer=lambda path: WorktreeDiscovery(worktrees=worktrees, source="git", is_git_repo=True),
    )

    snapshot = parser.parse("fire").snapshot

    items = {item.id: item for item in snapshot.worktrees.items}
    assert items["main"].is_selected and items["main"].status == "ready"
    assert items["feature"].active_count == 1
    assert [run.id for run in items["feature"].active_runs] == ["run-002"]
    assert items["plain"].status == "unavailable" and not items["plain"].flow_available
    assert parser.root_paths("fire") == [fire_workspace / ".specs-fire", feature / ".specs-fire"]

    assert get_selected_worktree_label(snapshot) == "main"
    texts = [line.text for line in build_worktree_lines(snapshot, "fire", 200)]
    assert texts[0].startswith("[CURRENT] [MAIN] main")
    assert texts[2].endswith("(flow unavailable) 0 active runs")
    others = [line.text for line in build_other_worktree_lines(snapshot, "fire", 200)]
    assert others == ["[WT feature/auth] run-002 [single] 0/1 items"]

    assert parser.select_worktree("feature")
    switched = parser.parse("fire").snapshot
    assert switched.project.name == "feature-app"
    assert [line.text for line in build_other_worktree_lines(switched, "fire", 200)] == [
        "Switch to main worktree to view active items from other worktrees",
    ]


def test_watch_roots_are_capped(fire_workspace, tmp_path_factory):
    worktrees = [Worktree(id="main", path=str(fire_workspace), name="main", branch="main",
                          display_branch="main", is_main_branch=True, is_current_path=True)]
    for index in range(MAX_WORKTREE_WATCH_ROOTS + 3):
        extra = tmp_path_factory.mktemp(f"extra{index}")
        write(extra / ".specs-fire" / "state.yaml", "project:\n  name: extra\n")
        worktrees.append(Worktree(id=f"extra{index}", path=str(extra), name=extra.name,
                                  branch=f"b{index}", display_branch=f"b{index}"))
    parser = WorkspaceParser(
        fire_workspace,
        git_collector=lambda path: GitChangeSet(),
        worktree_discoverer=lambda path: WorktreeDiscovery(worktrees=worktrees, source="git", is_git_repo=True),
    )
    parser.parse("fire")

    roots = parser.root_paths("fire")

    assert len(roots) == MAX_WORKTREE_WATCH_ROOTS
    assert roots[0] == fire_workspace / ".specs-fire"


def test_failed_worktree_parse_names_worktree(fire_workspace, tmp_path_factory):
    broken = tmp_path_factory.mktemp("broken")
    write(broken / ".specs-fire" / "state.yaml", "project: [unclosed\n")
    worktrees = [
        Worktree(id="main", path=str(fire_workspace), name="main", branch="main",
                 display_branch="main", is_main_branch=True, is_current_path=True),
        Worktree(id="broken", path=str(broken), name=broken.name, branch="broken", display_branch="broken"),
    ]
    parser = WorkspaceParser(
        fire_workspace,
        git_collector=lambda path: GitChangeSet(),
        worktree_selector="broken",
        worktree_discoverer=lambda path: WorktreeDiscovery(worktrees=worktrees, source="git", is_git_repo=True),
    )

    result = parser.parse("fire")

    assert not result.ok
    assert result.error.code == "STATE_PARSE_ERROR"
    assert result.error.details.startswith(f"worktree: broken ({broken}) | ")
    assert parser.worktree_set.selected.status == "error"


@requires_git
def test_real_worktrees(fire_workspace, tmp_path_factory):
    _git(fire_workspace, "init")
    _git(fire_workspace, "add", ".")
    _git(fire_workspace, "commit", "-m", "Add FIRE workspace")
    feature = tmp_path_factory.mktemp("worktrees") / "feature"
    _git(fire_workspace, "worktree", "add", "-b", "feature/auth", str(feature))
    write(feature / ".specs-fire" / "state.yaml", FIRE_STATE.replace("name: demo-app", "name: feature-app"))

    discovery = discover_git_worktrees(fire_workspace)

    assert discovery.source == "git"
    assert discovery.is_git_repo
    assert [wt.display_branch for wt in discovery.worktrees] == ["main", "feature/auth"]
    assert discovery.worktrees[0].is_current_path

    parser = WorkspaceParser(fire_workspace)
    snapshot = parser.parse("fire").snapshot

    assert len(snapshot.worktrees.items) == 2
    assert snapshot.worktrees.selected.branch == "main"
    assert snapshot.git_changes.available
    assert parser.root_paths("fire") == [
        fire_workspace.resolve() / ".specs-fire",
        feature.resolve() / ".specs-fire",
    ]

    feature_id = discovery.worktrees[1].id
    assert parser.select_worktree(feature_id)
    switched = parser.parse("fire").snapshot

    assert switched.project.name == "feature-app"
    assert switched.workspace_path == str(feature.resolve())
    assert [change.relative_path for change in switched.git_changes.unstaged] == [".specs-fire/state.yaml"]
