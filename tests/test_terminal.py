import asyncio
import contextlib
import io
import shutil

from rich.console import Console

from conftest import FIRE_STATE, write

from specs_dashboard.dashboard.config import DashboardConfig
from specs_dashboard.dashboard.models import DashboardError, GitChange, GitChangeSet, GitCounts, ParseResult
from specs_dashboard.dashboard.parser import WorkspaceParser
from specs_dashboard.dashboard.simple import parse_simple_dashboard
from specs_dashboard.dashboard.terminal import KeyReader, TerminalDashboard
from specs_dashboard.dashboard.tui.layout import build_frame
from specs_dashboard.exceptions import WatchError
from specs_dashboard.worktrees import Worktree, WorktreeDiscovery, build_worktree_id


class FakeParser:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def parse(self, flow):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result

    def root_paths(self, flow):
        return []


class FakeTerminal:
    def __init__(self, keys=(), width=100, height=40):
        self.console = Console(file=io.StringIO(), width=width, height=height)
        self.keys = list(keys)
        self.width = width
        self.height = height

    def is_interactive(self):
        return True

    @contextlib.contextmanager
    def raw_mode(self):
        yield

    def read_keys(self, timeout=0.0):
        keys, self.keys = self.keys, []
        return keys


def _dashboard(parser, tmp_path, **kwargs):
    config = DashboardConfig(workspace_path=tmp_path, watch=kwargs.pop("watch", False),
                             include_git=kwargs.pop("include_git", False))
    return TerminalDashboard(parser, config, terminal=kwargs.pop("terminal", FakeTerminal()), **kwargs)


def test_key_reader_decodes_sequences():
    reader = KeyReader()

    assert reader.decode("\x1b[A\x1b[Zq\t") == ["up", "shift-tab", "q", "tab"]
    assert reader.decode("\x1b") == ["esc"]
    assert reader.decode("\r \x03") == ["enter", "space", "ctrl-c"]


def test_refresh_publishes_only_changes(simple_workspace):
    parser = FakeParser(parse_simple_dashboard(simple_workspace))
    dashboard = _dashboard(parser, simple_workspace, initial_flow="simple")

    assert dashboard.refresh() is True
    assert dashboard.refresh() is False
    assert dashboard.snapshot.project.name == "simple-app"
    assert dashboard.error is None
    assert dashboard.last_refresh_at is not None


def test_parse_error_keeps_last_snapshot(simple_workspace):
    good = parse_simple_dashboard(simple_workspace)
    bad = ParseResult.failure(DashboardError(code="SIMPLE_NOT_FOUND", message="specs/ missing"))
    dashboard = _dashboard(FakeParser(good, bad, bad, good), simple_workspace, initial_flow="simple")

    assert dashboard.refresh() is True
    assert dashboard.refresh() is True
    assert dashboard.error.code == "SIMPLE_NOT_FOUND"
    assert dashboard.snapshot is not None

    assert dashboard.refresh() is False

    assert dashboard.refresh() is True
    assert dashboard.error is None


def test_parser_exception_becomes_refresh_failure(tmp_path):
    dashboard = _dashboard(FakeParser(RuntimeError("disk vanished")), tmp_path)

    assert dashboard.refresh() is True
    assert (dashboard.error.code, dashboard.error.message) == ("REFRESH_FAILED", "disk vanished")
    assert dashboard.snapshot is None


def test_refresh_is_not_reentrant(simple_workspace):
    nested = []
    result = parse_simple_dashboard(simple_workspace)

    class ReentrantParser(FakeParser):
        def parse(self, flow):
            nested.append(dashboard.refresh())
            return result

    dashboard = _dashboard(ReentrantParser(result), simple_workspace, initial_flow="simple")

    assert dashboard.refresh() is True
    assert nested == [False]


def test_view_keys(tmp_path):
    dashboard = _dashboard(FakeParser(RuntimeError("x")), tmp_path)

    dashboard.handle_key("tab")
    assert dashboard.state.view == "overview"
    dashboard.handle_key("4")
    assert dashboard.state.view == "git"
    dashboard.handle_key("right")
    assert dashboard.state.view == "runs"
    dashboard.handle_key("left")
    assert dashboard.state.view == "git"
    dashboard.handle_key("shift-tab")
    assert dashboard.state.view == "health"

    dashboard.handle_key("?")
    assert dashboard.state.show_help_overlay
    dashboard.handle_key("esc")
    assert not dashboard.state.show_help_overlay

    dashboard.handle_key("q")
    assert not dashboard.is_running()


def test_run_filter_and_group_toggle(fire_workspace):
    dashboard = _dashboard(WorkspaceParser(fire_workspace, include_git=False), fire_workspace, initial_flow="fire")
    dashboard.refresh()

    dashboard.handle_key("f")
    assert dashboard.state.run_filter == "active"
    assert dashboard.state.status_message == "File filter: active"
    dashboard.handle_key("f")
    dashboard.handle_key("f")
    assert dashboard.state.run_filter == "all"

    assert dashboard.file_rows()[0].key == "files:active"
    dashboard.handle_key("enter")
    assert "files:active" in dashboard.state.collapsed
    assert dashboard.file_rows()[1].kind == "group"
    dashboard.handle_key("enter")
    assert dashboard.state.collapsed == set()


def test_preview_loads_selected_file(fire_workspace):
    dashboard = _dashboard(WorkspaceParser(fire_workspace, include_git=False), fire_workspace, initial_flow="fire")

    async def scenario():
        dashboard.refresh()
        dashboard.handle_key("down")
        assert dashboard.selected_entry().label == "run-002/run.md"
        dashboard.handle_key("v")
        assert dashboard.state.preview_open
        for _ in range(100):
            lines = dashboard.build_context(100, 40).preview_lines
            if lines and lines[0].text.startswith("file:"):
                return lines
            await asyncio.sleep(0.01)
        return dashboard.build_context(100, 40).preview_lines

    lines = asyncio.run(scenario())

    assert lines[0].text.endswith("run.md")
    assert any("current_item: logout" in line.text for line in lines)

    dashboard.handle_key("down")
    assert dashboard.state.preview_scroll == 1
    dashboard.handle_key("esc")
    assert not dashboard.state.preview_open


def test_flow_switch_resets_state(fire_workspace):
    write(fire_workspace / "specs" / "search" / "requirements.md", "# R\n")
    dashboard = _dashboard(
        WorkspaceParser(fire_workspace, include_git=False),
        fire_workspace,
        available_flows=["fire", "simple"],
        initial_flow="fire",
    )
    dashboard.refresh()
    dashboard.handle_key("3")

    dashboard.handle_key("]")

    assert dashboard.flow == "simple"
    assert dashboard.state.view == "runs"
    assert [spec.name for spec in dashboard.snapshot.specs] == ["search"]

    dashboard.handle_key("[")
    assert dashboard.flow == "fire"


def test_git_view_focus_and_commits(simple_workspace):
    change = GitChange(
        key="unstaged:specs/checkout/tasks.md",
        bucket="unstaged",
        code=" M",
        path=str(simple_workspace / "specs" / "checkout" / "tasks.md"),
        relative_path="specs/checkout/tasks.md",
        label="specs/checkout/tasks.md",
        repo_root=str(simple_workspace),
    )
    changes = GitChangeSet(
        available=True,
        root_path=str(simple_workspace),
        branch="main",
        clean=False,
        counts=GitCounts(total=1, unstaged=1),
        unstaged=[change],
    )
    parser = WorkspaceParser(simple_workspace, git_collector=lambda path: changes)
    dashboard = _dashboard(
        parser,
        simple_workspace,
        initial_flow="simple",
        include_git=True,
        commit_loader=lambda root: [("abc1234", "Add checkout spec")],
    )
    dashboard.refresh()

    dashboard.handle_key("4")
    rows = dashboard.git_change_rows()
    assert [row.label for row in rows if row.kind == "git-file"] == ["specs/checkout/tasks.md"]

    dashboard.handle_key("g")
    assert dashboard.state.git_focus == "commits"
    assert dashboard.selected_entry().commit_hash == "abc1234"

    frame_context = dashboard.build_context(100, 40)
    assert frame_context.git_commit_rows[0].label == "abc1234 Add checkout spec"


def test_watch_error_is_published(tmp_path):
    dashboard = _dashboard(FakeParser(RuntimeError("x")), tmp_path, watch=True)

    dashboard._handle_watch_error(WatchError("observer died", path=str(tmp_path)))

    assert dashboard.watch_status == "reconnecting"
    assert dashboard.error.code == "WATCH_ERROR"


def test_start_runs_until_quit(simple_workspace):
    parser = FakeParser(parse_simple_dashboard(simple_workspace))
    terminal = FakeTerminal(keys=["2", "q"])
    dashboard = _dashboard(parser, simple_workspace, initial_flow="simple", terminal=terminal)

    asyncio.run(dashboard.start())

    assert not dashboard.is_running()
    assert dashboard.state.view == "overview"
    assert parser.calls == 1


def test_successful_refresh_clears_reconnecting(simple_workspace):
    parser = FakeParser(parse_simple_dashboard(simple_workspace))
    dashboard = _dashboard(parser, simple_workspace, initial_flow="simple", watch=True)
    dashboard.refresh()

    dashboard._handle_watch_error(WatchError("observer died", path=str(simple_workspace)))
    assert dashboard.watch_status == "reconnecting"

    assert dashboard.refresh() is True
    assert dashboard.watch_status == "watching"
    assert dashboard.error is None


def _open_run_preview(dashboard):
    async def scenario():
        dashboard.refresh()
        dashboard.handle_key("down")
        dashboard.handle_key("v")
        for _ in range(100):
            dashboard.build_context(100, 40)
            if dashboard._preview_raw is not None:
                return
            await asyncio.sleep(0.01)

    asyncio.run(scenario())
    assert dashboard._preview_raw is not None


def test_preview_scroll_stops_at_last_line(fire_workspace):
    dashboard = _dashboard(WorkspaceParser(fire_workspace, include_git=False), fire_workspace, initial_flow="fire")
    _open_run_preview(dashboard)
    line_count = len(dashboard._preview_raw)

    for _ in range(line_count + 20):
        dashboard.handle_key("down")
    assert dashboard.state.preview_scroll == line_count - 1

    dashboard.handle_key("up")
    assert dashboard.state.preview_scroll == line_count - 2


def test_full_document_toggle(fire_workspace):
    notes = "\n".join(f"note {index}" for index in range(400))
    write(fire_workspace / ".specs-fire" / "runs" / "run-002" / "run.md",
          f"---\nscope: single\ncurrent_item: logout\n---\n{notes}\n")
    dashboard = _dashboard(WorkspaceParser(fire_workspace, include_git=False), fire_workspace, initial_flow="fire")
    _open_run_preview(dashboard)
    line_count = len(dashboard._preview_raw)
    assert line_count > 300

    for _ in range(line_count):
        dashboard.handle_key("down")
    assert dashboard.state.preview_scroll == 300

    dashboard.handle_key("d")
    assert dashboard.state.preview_full_document
    assert dashboard.state.status_message == "Full document: on"
    lines = dashboard.build_context(100, 40).preview_lines
    assert not any("additional lines hidden" in line.text for line in lines)

    for _ in range(line_count):
        dashboard.handle_key("down")
    assert dashboard.state.preview_scroll == line_count - 1

    dashboard.handle_key("d")
    assert not dashboard.state.preview_full_document
    assert dashboard.state.preview_scroll == 300

    dashboard.handle_key("esc")
    assert not dashboard.state.preview_open
    assert not dashboard.state.preview_full_document


def _worktree(path, branch, current=False):
    return Worktree(
        id=build_worktree_id(str(path)),
        path=str(path),
        name=path.name,
        branch=branch,
        display_branch=branch,
        is_main_branch=branch == "main",
        is_current_path=current,
    )


def test_worktree_picker_switches_worktree(fire_workspace, tmp_path_factory):
    feature = tmp_path_factory.mktemp("feature")
    shutil.copytree(fire_workspace / ".specs-fire", feature / ".specs-fire")
    write(feature / ".specs-fire" / "state.yaml", FIRE_STATE.replace("name: demo-app", "name: feature-app"))
    worktrees = [_worktree(fire_workspace, "main", current=True), _worktree(feature, "feature/auth")]
    parser = WorkspaceParser(
        fire_workspace,
        git_collector=lambda path: GitChangeSet(),
        worktree_discoverer=lambda path: WorktreeDiscovery(worktrees=worktrees, source="git", is_git_repo=True),
    )
    dashboard = _dashboard(parser, fire_workspace, initial_flow="fire", include_git=True)
    dashboard.refresh()

    frame = build_frame(dashboard.build_context(140, 60))
    assert "wt:main" in frame.header
    assert "Worktrees" in [panel.title for panel in frame.panels]

    dashboard.handle_key("b")
    assert dashboard.state.show_worktree_overlay
    assert dashboard.state.worktree_selection == 0
    overlay = build_frame(dashboard.build_context(140, 60)).overlay
    assert overlay.title == "Switch Worktree"
    assert overlay.lines[1].text.startswith("> [CURRENT] [MAIN] main")

    dashboard.handle_key("down")
    dashboard.handle_key("enter")

    assert not dashboard.state.show_worktree_overlay
    assert dashboard.snapshot.project.name == "feature-app"
    assert dashboard.snapshot.workspace_path == str(feature)
    assert dashboard.snapshot.worktrees.selected.branch == "feature/auth"
    assert parser.root_paths("fire")[0] == feature / ".specs-fire"


def test_worktree_key_without_worktrees(simple_workspace):
    dashboard = _dashboard(WorkspaceParser(simple_workspace, include_git=False), simple_workspace, initial_flow="simple")
    dashboard.refresh()

    dashboard.handle_key("b")

    assert not dashboard.state.show_worktree_overlay
    assert dashboard.state.status_message == "No additional worktrees"
