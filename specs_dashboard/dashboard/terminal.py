"""Rich-based interactive dashboard.

``TerminalDashboard`` owns the refresh loop: it asks the workspace parser for
a snapshot, publishes it only when its structural hash changed, turns key
presses into UI state changes and repaints through ``rich.live.Live``.
Watch events, the fallback poll timer and the manual refresh key all end up
in the same non-reentrant ``refresh``.
"""

import asyncio
import contextlib
import logging
import os
import select
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from rich.console import Console, RenderableType
from rich.live import Live

from ..git import list_git_commits
from ..utils import clamp_index, now_iso
from .config import DashboardConfig
from .models import DashboardError, snapshot_hash, to_dashboard_error
from .parser import WorkspaceParser
from .tui.files import (
    FileEntry,
    Row,
    first_selectable_index,
    get_run_file_entries,
    get_selected_row,
    group_file_entries,
    move_row_selection,
    open_file_with_default_app,
    rows_by_key,
    to_expandable_rows,
)
from .tui.git_panels import build_git_change_groups, build_git_commit_rows, get_git_changes
from .tui.layout import FrameContext, build_frame, resolve_frame_width
from .tui.preview import (
    PreviewCache,
    build_preview_lines,
    load_preview_content,
    preview_body_length,
    preview_cache_key,
)
from .tui.renderer import RichRenderer
from .tui.state import UIState, cycle_flow, cycle_run_filter, cycle_view, cycle_view_backward
from .tui.worktree_panels import get_worktree_set
from .watcher import WatchRuntime

if sys.platform != "win32":
    import termios
    import tty

logger = logging.getLogger(__name__)

KEY_POLL_SECONDS = 0.05

_ESCAPE_SEQUENCES = {
    "\x1b[A": "up",
    "\x1b[B": "down",
    "\x1b[C": "right",
    "\x1b[D": "left",
    "\x1bOA": "up",
    "\x1bOB": "down",
    "\x1bOC": "right",
    "\x1bOD": "left",
    "\x1b[Z": "shift-tab",
}

_SINGLE_KEYS = {
    "\t": "tab",
    "\r": "enter",
    "\n": "enter",
    "\x03": "ctrl-c",
    " ": "space",
    "\x1b": "esc",
}


class KeyReader:
    """Decode raw terminal input into key names.

    Arrow keys become ``up``/``down``/``left``/``right``; tab, enter, space,
    escape and Ctrl+C get names too. Everything else is passed through as
    the character itself.
    """

    def decode(self, data: str) -> List[str]:
        keys: List[str] = []
        index = 0
        while index < len(data):
            if data[index] == "\x1b":
                sequence = data[index:index + 3]
                if sequence in _ESCAPE_SEQUENCES:
                    keys.append(_ESCAPE_SEQUENCES[sequence])
                    index += 3
                    continue
            char = data[index]
            keys.append(_SINGLE_KEYS.get(char, char))
            index += 1
        return keys


class RichTerminal:
    """The real terminal: a Rich console plus raw keyboard input."""

    def __init__(self, console: Optional[Console] = None, stream=None) -> None:
        self.console = console or Console()
        self.stream = stream or sys.stdin
        self.key_reader = KeyReader()

    @property
    def width(self) -> int:
        return self.console.size.width

    @property
    def height(self) -> int:
        return self.console.size.height

    def is_interactive(self) -> bool:
        return bool(self.stream.isatty())

    @contextlib.contextmanager
    def raw_mode(self) -> Iterator[None]:
        """Put the input stream into cbreak mode for the duration of the block."""
        if sys.platform == "win32" or not self.is_interactive():
            yield
            return
        fd = self.stream.fileno()
        saved = termios.tcgetattr(fd)
        try:
            tty.setcbreak(fd)
            yield
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)

    def read_keys(self, timeout: float = 0.0) -> List[str]:
        if sys.platform == "win32" or not self.is_interactive():
            return []
        fd = self.stream.fileno()
        ready, _, _ = select.select([fd], [], [], timeout)
        if not ready:
            return []
        data = os.read(fd, 64).decode("utf-8", errors="ignore")
        return self.key_reader.decode(data)


class TerminalDashboard:
    """Interactive dashboard for one workspace."""

    def __init__(
        self,
        parser: WorkspaceParser,
        config: DashboardConfig,
        available_flows: Optional[Sequence[str]] = None,
        initial_flow: Optional[str] = None,
        renderer: Optional[RichRenderer] = None,
        terminal: Optional[RichTerminal] = None,
        commit_loader: Optional[Callable[[str], List[Tuple[str, str]]]] = None,
        observer_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        """Initialize the dashboard.

        Args:
            parser: Produces snapshots for a flow.
            config: Session settings.
            available_flows: Flows the user can switch between.
            initial_flow: Flow shown first; defaults to the first available.
            renderer: Paints frames; a ``RichRenderer`` by default.
            terminal: Screen and keyboard; a ``RichTerminal`` by default.
            commit_loader: Returns ``(hash, subject)`` pairs for a repo root.
            observer_factory: Passed through to the watch runtime.
        """
        self.parser = parser
        self.config = config
        self.available_flows = list(available_flows or ([initial_flow] if initial_flow else []))
        self.flow = initial_flow or (self.available_flows[0] if self.available_flows else "fire")
        self.renderer = renderer or RichRenderer()
        self.terminal = terminal or RichTerminal()
        self.commit_loader = commit_loader or list_git_commits
        self.observer_factory = observer_factory

        self.state = UIState()
        self.snapshot = None
        self.error: Optional[DashboardError] = None
        self.last_refresh_at: Optional[str] = None
        self.watch_status = "watching" if config.watch else "off"
        self.commits: List[Tuple[str, str]] = []
        self.preview_cache = PreviewCache()

        self._snapshot_hash: Optional[str] = None
        self._error_hash: Optional[str] = None
        self._refreshing = False
        self._running = False
        self._dirty = True
        self._selected_keys: Dict[str, str] = {}
        self._preview_key: Optional[str] = None
        self._preview_raw: Optional[List[str]] = None
        self._preview_error: Optional[str] = None
        self._preview_loading = False
        self._watch: Optional[WatchRuntime] = None
        self._tasks: List[asyncio.Task] = []

    # Refresh

    def refresh(self) -> bool:
        """Re-parse the workspace and publish the result if it changed.

        Returns:
            True when a new snapshot or a new error was published.
        """
        if self._refreshing:
            logger.debug("Refresh already in progress; skipping")
            return False
        self._refreshing = True
        try:
            try:
                result = self.parser.parse(self.flow)
            except Exception as error:
                logger.exception(f"Refresh failed for {self.flow}")
                return self._publish_error(to_dashboard_error(error, "REFRESH_FAILED"))
            if result.ok and result.snapshot is not None:
                self._mark_watching()
                return self._publish_snapshot(result.snapshot)
            return self._publish_error(to_dashboard_error(result.error, "PARSE_ERROR"))
        finally:
            self._refreshing = False

    def _mark_watching(self) -> None:
        if self.config.watch and self.watch_status != "watching":
            logger.info(f"Watch recovered for {self.flow}")
            self.watch_status = "watching"
            self._dirty = True

    def _publish_snapshot(self, snapshot) -> bool:
        digest = snapshot_hash(snapshot)
        if digest == self._snapshot_hash and self.error is None:
            return False
        self.snapshot = snapshot
        self.error = None
        self._snapshot_hash = digest
        self._error_hash = None
        self.last_refresh_at = now_iso()
        self._load_commits()
        self._restore_selection()
        self._sync_watch_roots()
        self._dirty = True
        logger.debug(f"Published {self.flow} snapshot {digest[:8]}")
        return True

    def _publish_error(self, error: DashboardError) -> bool:
        digest = snapshot_hash(error)
        if digest == self._error_hash and self.error is not None:
            return False
        self.error = error
        self._error_hash = digest
        self._dirty = True
        logger.warning(f"[{error.code}] {error.message}")
        return True

    def _load_commits(self) -> None:
        git = get_git_changes(self.snapshot)
        if not self.config.include_git or not git.available or not git.root_path:
            self.commits = []
            return
        self.commits = self.commit_loader(git.root_path)

    # Rows and selection

    def file_rows(self) -> List[Row]:
        groups = group_file_entries(get_run_file_entries(self.snapshot, self.flow), self.state.run_filter)
        return to_expandable_rows(groups, "No files for this filter", self.state.collapsed)

    def git_change_rows(self) -> List[Row]:
        return to_expandable_rows(build_git_change_groups(self.snapshot), "Working tree clean", self.state.collapsed)

    def git_commit_rows(self) -> List[Row]:
        git = get_git_changes(self.snapshot)
        return build_git_commit_rows(self.commits, git.root_path, git.available)

    def _active_panel(self) -> Tuple[Optional[str], List[Row]]:
        if self.state.view == "runs":
            return "run-files", self.file_rows()
        if self.state.view == "git":
            if self.state.git_focus == "commits":
                return "git-commits", self.git_commit_rows()
            return "git-changes", self.git_change_rows()
        return None, []

    def _selection_index(self, panel: str, rows: List[Row]) -> int:
        index = clamp_index(self.state.selected(panel), len(rows))
        if rows and not rows[index].selectable:
            index = first_selectable_index(rows)
        return index

    def _select(self, panel: str, rows: List[Row], index: int) -> None:
        self.state.select(panel, index)
        if rows:
            self._selected_keys[panel] = rows[clamp_index(index, len(rows))].key

    def _restore_selection(self) -> None:
        panels = (
            ("run-files", self.file_rows),
            ("git-changes", self.git_change_rows),
            ("git-commits", self.git_commit_rows),
        )
        for panel, build_rows in panels:
            key = self._selected_keys.get(panel)
            if key is None:
                continue
            index = rows_by_key(build_rows()).get(key)
            if index is not None:
                self.state.select(panel, index)

    def selected_entry(self) -> Optional[FileEntry]:
        panel, rows = self._active_panel()
        if panel is None:
            return None
        row = get_selected_row(rows, self._selection_index(panel, rows))
        return row.entry if row is not None else None

    # Preview

    def _open_preview(self) -> None:
        entry = self.selected_entry()
        if entry is None:
            self.state.status_message = "Select a file row to preview."
            return
        self.state.preview_open = True
        self.state.preview_scroll = 0
        self._request_preview(entry)

    def _request_preview(self, entry: FileEntry) -> None:
        key = preview_cache_key(entry)
        if key == self._preview_key and (self._preview_raw is not None or self._preview_error or self._preview_loading):
            return
        self._preview_key = key
        self._preview_raw = self.preview_cache.get(key)
        self._preview_error = None
        self._preview_loading = False
        if self._preview_raw is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; preview stays in loading state")
            return
        self._tasks = [task for task in self._tasks if not task.done()]
        self._preview_loading = True
        self._tasks.append(loop.create_task(self._load_preview(entry, key)))

    async def _load_preview(self, entry: FileEntry, key: Optional[str]) -> None:
        lines, error = await load_preview_content(entry, self.preview_cache)
        if key != self._preview_key:
            return
        self._preview_raw = lines
        self._preview_error = error
        self._preview_loading = False
        self._dirty = True

    def _preview_title(self, entry: Optional[FileEntry]) -> str:
        if entry is None:
            return "Preview"
        if entry.preview_type == "git-commit":
            return f"Commit: {entry.commit_hash}"
        if entry.preview_type == "git-diff":
            return f"Diff: {entry.label}"
        return f"Preview: {entry.label}"

    # Keys

    def handle_key(self, key: str) -> None:
        """Apply one decoded key press to the UI state."""
        state = self.state
        state.status_message = None
        self._dirty = True

        if key in ("q", "ctrl-c"):
            self._running = False
            return
        if state.show_worktree_overlay:
            self._handle_worktree_key(key)
            return
        if key == "b":
            self._open_worktree_picker()
            return
        if key == "r":
            self.refresh()
            return
        if key in ("h", "?"):
            state.show_help_overlay = not state.show_help_overlay
            return
        if key == "esc":
            if state.show_help_overlay:
                state.show_help_overlay = False
            elif state.preview_open:
                state.close_preview()
            return
        if key in ("1", "2", "3", "4"):
            state.set_view(("runs", "overview", "health", "git")[int(key) - 1])
            return
        if key in ("tab", "right"):
            state.set_view(cycle_view(state.view))
            return
        if key in ("left", "shift-tab"):
            state.set_view(cycle_view_backward(state.view))
            return
        if key in ("]", "m") and len(self.available_flows) > 1:
            self.switch_flow(cycle_flow(self.flow, self.available_flows, 1))
            return
        if key == "[" and len(self.available_flows) > 1:
            self.switch_flow(cycle_flow(self.flow, self.available_flows, -1))
            return

        if state.view == "overview" and key in ("n", "x"):
            state.intent_filter = "next" if key == "n" else "completed"
            return
        if state.view == "runs" and key == "f":
            state.run_filter = cycle_run_filter(state.run_filter)
            state.close_preview()
            rows = self.file_rows()
            self._select("run-files", rows, first_selectable_index(rows))
            state.status_message = f"File filter: {state.run_filter}"
            return
        if state.view == "git" and key == "g":
            state.git_focus = "commits" if state.git_focus == "changes" else "changes"
            state.close_preview()
            return
        if key == "d" and state.preview_open:
            state.preview_full_document = not state.preview_full_document
            state.preview_scroll = min(state.preview_scroll, self._max_preview_scroll())
            state.status_message = f"Full document: {'on' if state.preview_full_document else 'off'}"
            return

        panel, rows = self._active_panel()
        if panel is None:
            return

        if key in ("up", "down", "j", "k"):
            direction = 1 if key in ("down", "j") else -1
            if state.preview_open:
                state.preview_scroll = min(self._max_preview_scroll(), max(0, state.preview_scroll + direction))
                return
            current = self._selection_index(panel, rows)
            self._select(panel, rows, move_row_selection(rows, current, direction))
            return
        if key in ("v", "space"):
            if state.preview_open:
                state.close_preview()
            else:
                self._open_preview()
            return
        if key == "enter":
            row = get_selected_row(rows, self._selection_index(panel, rows))
            if row is None:
                return
            if row.kind == "group" and row.expandable:
                if row.key in state.collapsed:
                    state.collapsed.discard(row.key)
                else:
                    state.collapsed.add(row.key)
            elif row.entry is not None:
                self._open_preview()
            return
        if key == "o":
            entry = self.selected_entry()
            if entry is None or entry.preview_type == "git-commit":
                state.status_message = "Select a file row to open."
                return
            _, message = open_file_with_default_app(entry.path)
            state.status_message = message

    def _max_preview_scroll(self) -> int:
        return max(0, preview_body_length(self._preview_raw, self.state.preview_full_document) - 1)

    # Worktrees

    def _open_worktree_picker(self) -> None:
        worktrees = get_worktree_set(self.snapshot)
        if worktrees is None or len(worktrees.items) <= 1:
            self.state.status_message = "No additional worktrees"
            return
        self.state.show_help_overlay = False
        self.state.show_worktree_overlay = True
        self.state.worktree_selection = next(
            (index for index, item in enumerate(worktrees.items) if item.is_selected), 0,
        )

    def _handle_worktree_key(self, key: str) -> None:
        state = self.state
        worktrees = get_worktree_set(self.snapshot)
        if key in ("esc", "b") or worktrees is None:
            state.show_worktree_overlay = False
            return
        if key in ("up", "down", "j", "k"):
            direction = 1 if key in ("down", "j") else -1
            state.worktree_selection = clamp_index(state.worktree_selection + direction, len(worktrees.items))
            return
        if key == "enter":
            state.show_worktree_overlay = False
            item = worktrees.items[clamp_index(state.worktree_selection, len(worktrees.items))]
            self.switch_worktree(item.id)

    def switch_worktree(self, worktree_id: str) -> None:
        """Show the worktree with ``worktree_id``, starting from a clean state."""
        if not self.parser.select_worktree(worktree_id):
            return
        logger.info(f"Switching worktree -> {worktree_id}")
        self._reset_session_state()
        self.refresh()

    def _reset_session_state(self) -> None:
        show_help = self.state.show_help
        self.state = UIState(show_help=show_help)
        self.snapshot = None
        self.error = None
        self._snapshot_hash = None
        self._error_hash = None
        self._selected_keys = {}
        self.commits = []

    def switch_flow(self, flow: str) -> None:
        """Show ``flow`` instead of the current one, starting from a clean state."""
        if flow == self.flow:
            return
        logger.debug(f"Switching flow {self.flow} -> {flow}")
        self.flow = flow
        self._reset_session_state()
        if self._watch is not None:
            self._watch.close()
            self._watch = None
            self._start_watch()
        self.refresh()

    # Frames

    def build_context(self, columns: int, rows: int) -> FrameContext:
        state = self.state
        compact_width = max(18, max(40, resolve_frame_width(columns)) - 4)

        file_rows: List[Row] = []
        change_rows: List[Row] = []
        commit_rows: List[Row] = []
        if state.view == "runs":
            file_rows = self.file_rows()
        elif state.view == "git":
            change_rows = self.git_change_rows()
            commit_rows = self.git_commit_rows()

        entry = self.selected_entry() if state.preview_open else None
        if entry is not None:
            self._request_preview(entry)
        preview_lines = build_preview_lines(
            entry, compact_width, state.preview_scroll, self._preview_raw, self._preview_error,
            full_document=state.preview_full_document,
        ) if state.preview_open else []

        git_panel = "git-commits" if state.git_focus == "commits" else "git-changes"
        git_rows = commit_rows if state.git_focus == "commits" else change_rows
        return FrameContext(
            snapshot=self.snapshot,
            error=self.error,
            flow=self.flow,
            view=state.view,
            columns=columns,
            rows=rows,
            icons=self.config.icons,
            watch_enabled=self.config.watch,
            watch_status=self.watch_status,
            last_refresh_at=self.last_refresh_at,
            available_flows=self.available_flows,
            show_help=state.show_help,
            show_help_overlay=state.show_help_overlay,
            show_worktree_overlay=state.show_worktree_overlay,
            worktree_selection=state.worktree_selection,
            preview_open=state.preview_open,
            preview_lines=preview_lines,
            preview_title=self._preview_title(entry),
            file_rows=file_rows,
            file_selection=self._selection_index("run-files", file_rows),
            git_change_rows=change_rows,
            git_commit_rows=commit_rows,
            git_focus=state.git_focus,
            git_selection=self._selection_index(git_panel, git_rows),
            intent_filter=state.intent_filter,
            run_filter=state.run_filter,
            status_message=state.status_message,
        )

    def render(self) -> RenderableType:
        frame = build_frame(self.build_context(self.terminal.width, self.terminal.height))
        self._dirty = False
        return self.renderer.render(frame)

    # Watching

    def _handle_watch_refresh(self) -> None:
        self.refresh()

    def _handle_watch_error(self, error) -> None:
        self.watch_status = "reconnecting"
        self._publish_error(to_dashboard_error(error, "WATCH_ERROR"))

    def _start_watch(self) -> None:
        if not self.config.watch:
            return
        roots = self.parser.root_paths(self.flow)
        if not roots:
            logger.debug(f"No watch roots for {self.flow}")
            return
        self._watch = WatchRuntime(
            roots,
            on_refresh=self._handle_watch_refresh,
            on_error=self._handle_watch_error,
            debounce_ms=self.config.debounce_ms,
            flow=self.flow,
            observer_factory=self.observer_factory,
        )
        self._watch.start()

    def _sync_watch_roots(self) -> None:
        """Restart the watch when the set of worktree roots changed."""
        if self._watch is None:
            return
        roots = {Path(root) for root in self.parser.root_paths(self.flow)}
        if not roots or roots == set(self._watch.root_paths):
            return
        logger.info(f"Watch roots changed for {self.flow}: {len(roots)} root(s)")
        self._watch.close()
        self._watch = None
        self._start_watch()

    async def _poll(self) -> None:
        interval = self.config.fallback_poll_ms / 1000
        while self._running:
            await asyncio.sleep(interval)
            self.refresh()

    # Lifecycle

    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the interactive loop until the user quits or ``stop`` is called."""
        self._running = True
        self.refresh()
        self._start_watch()
        loop = asyncio.get_running_loop()
        self._tasks.append(loop.create_task(self._poll()))

        last_size = (self.terminal.width, self.terminal.height)
        with self.terminal.raw_mode():
            with Live(self.render(), console=self.terminal.console, screen=True, auto_refresh=False) as live:
                while self._running:
                    for key in self.terminal.read_keys(0):
                        self.handle_key(key)
                        if not self._running:
                            break
                    size = (self.terminal.width, self.terminal.height)
                    if self._dirty or size != last_size:
                        last_size = size
                        live.update(self.render(), refresh=True)
                    await asyncio.sleep(KEY_POLL_SECONDS)
        await self.stop()

    async def stop(self) -> None:
        """Stop watching and cancel background tasks; safe to call twice."""
        self._running = False
        if self._watch is not None:
            self._watch.close()
            self._watch = None
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
