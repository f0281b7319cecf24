"""Frame layout: which panels fit the terminal and how many rows each gets.

``build_frame`` is pure. It takes a ``FrameContext`` describing the snapshot,
the UI state and the terminal size, and returns a ``Frame`` of already
truncated lines that a renderer only has to paint.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional, Sequence

from ..approval import detect_approval_gate
from ..config import ASCII_ICONS, IconSet
from ..models import ApprovalGate, DashboardError
from . import builders
from .files import Row, build_row_lines
from .git_panels import build_git_status_lines
from .overlays import build_help_overlay_lines, build_quick_help_text
from .text import Line, fit_lines, truncate
from .worktree_panels import (
    OTHER_WORKTREE_TITLES,
    build_other_worktree_lines,
    build_worktree_lines,
    build_worktree_overlay_lines,
    get_selected_worktree_label,
    has_multiple_worktrees,
)

MIN_WIDTH = 40
MAX_WIDTH = 180
DEFAULT_WIDTH = 120

PANEL_MIN_ROWS = 4
ULTRA_COMPACT_ROWS = 14
ERROR_PANEL_MIN_ROWS = 18

VIEWS = ("runs", "overview", "health", "git")


@dataclass
class PanelSpec:
    """A panel candidate before allocation; ``max_lines`` is set by the allocator."""

    key: str
    title: str
    lines: List[Line]
    border_color: str = "white"
    max_lines: int = 0


@dataclass
class Frame:
    header: str
    tabs: List[Line]
    flow_bar: List[Line]
    gate: Optional[Line]
    inline_error: Optional[Line]
    error_panel: Optional[PanelSpec]
    panels: List[PanelSpec]
    help_line: Optional[str]
    status_line: Optional[str]
    width: int
    overlay: Optional[PanelSpec] = None


@dataclass
class FrameContext:
    """Everything needed to lay out one frame."""

    snapshot: Any
    error: Optional[DashboardError]
    flow: str
    view: str = "runs"
    columns: int = DEFAULT_WIDTH
    rows: int = 40
    icons: IconSet = ASCII_ICONS
    watch_enabled: bool = True
    watch_status: str = "watching"
    last_refresh_at: Optional[str] = None
    available_flows: Sequence[str] = field(default_factory=list)
    show_help: bool = True
    show_help_overlay: bool = False
    show_worktree_overlay: bool = False
    worktree_selection: int = 0
    preview_open: bool = False
    preview_lines: List[Line] = field(default_factory=list)
    preview_title: str = "Preview"
    file_rows: List[Row] = field(default_factory=list)
    file_selection: int = 0
    git_change_rows: List[Row] = field(default_factory=list)
    git_commit_rows: List[Row] = field(default_factory=list)
    git_focus: str = "changes"
    git_selection: int = 0
    intent_filter: str = "next"
    run_filter: str = "all"
    status_message: Optional[str] = None


def normalize_width(width: Any) -> int:
    if width is None or isinstance(width, bool) or not isinstance(width, (int, float)) or not math.isfinite(width):
        return DEFAULT_WIDTH
    return max(MIN_WIDTH, min(math.floor(width), MAX_WIDTH))


def resolve_frame_width(columns: Any) -> int:
    if columns is None or isinstance(columns, bool) or not isinstance(columns, (int, float)) or not math.isfinite(columns):
        safe = DEFAULT_WIDTH
    else:
        safe = max(1, math.floor(columns))
    return safe - 1 if safe > 24 else safe


def allocate_single_column_panels(candidates: Sequence[Optional[PanelSpec]], rows_budget: int) -> List[PanelSpec]:
    """Decide which panels fit a single column and how many lines each shows.

    Each admitted panel costs four rows (border, title, one line) plus one
    row of margin after the first. The first candidate is always admitted.
    Leftover rows are handed out one at a time, round-robin.
    """
    filtered = [panel for panel in candidates if panel is not None]
    if not filtered:
        return []

    selected: List[PanelSpec] = []
    remaining = max(PANEL_MIN_ROWS, rows_budget)
    for panel in filtered:
        minimum = PANEL_MIN_ROWS + (1 if selected else 0)
        if remaining >= minimum or not selected:
            selected.append(replace(panel, max_lines=1))
            remaining -= minimum

    index = 0
    while remaining > 0:
        selected[index % len(selected)].max_lines += 1
        remaining -= 1
        index += 1
    return selected


def build_tabs(view: str, icons: IconSet) -> List[Line]:
    tabs = [
        ("runs", f" 1 {icons.runs} RUNS "),
        ("overview", f" 2 {icons.overview} OVERVIEW "),
        ("health", f" 3 {icons.health} HEALTH "),
        ("git", f" 4 {icons.git} GIT "),
    ]
    return [
        Line(text=label, color="black on cyan" if tab == view else "dim", bold=tab == view)
        for tab, label in tabs
    ]


def build_flow_bar(active_flow: str, flows: Sequence[str]) -> List[Line]:
    if len(flows) <= 1:
        return []
    return [
        Line(text=f" {flow.upper()} ", color="black on green" if flow == active_flow else "dim", bold=flow == active_flow)
        for flow in flows
    ]


def _gate_line(gate: Optional[ApprovalGate], width: int) -> Optional[Line]:
    if gate is None:
        return None
    return Line(text=truncate(f"{gate.title}: {gate.message}", width), color="black on yellow", bold=True)


def _runs_candidates(ctx: FrameContext, width: int) -> List[Optional[PanelSpec]]:
    titles = builders.get_panel_titles(ctx.flow, ctx.snapshot)
    files_title = titles["files"] if ctx.run_filter == "all" else f"{titles['files']} ({ctx.run_filter})"
    show_active = ctx.run_filter in ("all", "active")
    show_completed = ctx.run_filter in ("all", "completed")
    worktree_panels: List[Optional[PanelSpec]] = []
    if has_multiple_worktrees(ctx.snapshot):
        worktree_panels = [
            PanelSpec("worktrees", "Worktrees", build_worktree_lines(ctx.snapshot, ctx.flow, width), "cyan"),
            PanelSpec(
                "other-worktrees",
                OTHER_WORKTREE_TITLES.get(ctx.flow, OTHER_WORKTREE_TITLES["fire"]),
                build_other_worktree_lines(ctx.snapshot, ctx.flow, width),
                "cyan",
            ) if show_active else None,
        ]
    return [
        PanelSpec("current-run", titles["current"], builders.build_current_run_lines(ctx.snapshot, width, ctx.flow), "green")
        if show_active else None,
        PanelSpec("run-files", files_title, build_row_lines(ctx.file_rows, ctx.file_selection, ctx.icons, width), "yellow"),
        PanelSpec("preview", ctx.preview_title, ctx.preview_lines, "magenta") if ctx.preview_open else None,
        PanelSpec("pending", titles["pending"], builders.build_pending_lines(ctx.snapshot, width, ctx.flow), "yellow")
        if show_active else None,
        PanelSpec("completed", titles["completed"], builders.build_completed_lines(ctx.snapshot, width, ctx.flow), "blue")
        if show_completed else None,
    ] + worktree_panels


def _overview_candidates(ctx: FrameContext, width: int) -> List[Optional[PanelSpec]]:
    return [
        PanelSpec("project", "Project + Workspace", builders.build_overview_project_lines(ctx.snapshot, width, ctx.flow), "green"),
        PanelSpec(
            "intent-status",
            "Intent Status",
            builders.build_overview_intent_lines(ctx.snapshot, width, ctx.flow, ctx.intent_filter),
            "yellow",
        ),
        PanelSpec("standards", "Standards", builders.build_overview_standards_lines(ctx.snapshot, width, ctx.flow), "blue"),
    ]


def _health_candidates(ctx: FrameContext, width: int, show_error_panel: bool) -> List[Optional[PanelSpec]]:
    candidates: List[Optional[PanelSpec]] = [
        PanelSpec("stats", "Stats", builders.build_stats_lines(ctx.snapshot, width, ctx.flow), "magenta"),
        PanelSpec("warnings", "Warnings", builders.build_warnings_lines(ctx.snapshot, width), "red"),
    ]
    if ctx.error is not None and show_error_panel:
        candidates.append(PanelSpec("error-details", "Error Details", builders.build_error_lines(ctx.error, width), "red"))
    return candidates


def _git_candidates(ctx: FrameContext, width: int) -> List[Optional[PanelSpec]]:
    change_selection = ctx.git_selection if ctx.git_focus == "changes" else -1
    commit_selection = ctx.git_selection if ctx.git_focus == "commits" else -1
    return [
        PanelSpec("git-status", "Git Status", [replace(line, text=truncate(line.text, width)) for line in build_git_status_lines(ctx.snapshot)], "green"),
        PanelSpec(
            "git-changes",
            builders.get_panel_titles(ctx.flow, ctx.snapshot)["git"],
            build_row_lines(ctx.git_change_rows, change_selection, ctx.icons, width, focused=ctx.git_focus == "changes"),
            "yellow",
        ),
        PanelSpec(
            "git-commits",
            "Recent Commits",
            build_row_lines(ctx.git_commit_rows, commit_selection, ctx.icons, width, focused=ctx.git_focus == "commits"),
            "blue",
        ),
        PanelSpec("git-diff", ctx.preview_title, ctx.preview_lines, "magenta") if ctx.preview_open else None,
    ]


def build_frame(ctx: FrameContext) -> Frame:
    """Lay out one frame for the given context."""
    columns = ctx.columns if ctx.columns and ctx.columns > 0 else DEFAULT_WIDTH
    rows = ctx.rows if ctx.rows and ctx.rows > 0 else 40
    full_width = max(MIN_WIDTH, resolve_frame_width(columns))
    compact_width = max(18, full_width - 4)

    show_help_line = ctx.show_help and rows >= ULTRA_COMPACT_ROWS
    show_error_panel = ctx.error is not None and rows >= ERROR_PANEL_MIN_ROWS
    show_error_inline = ctx.error is not None and not show_error_panel
    gate = detect_approval_gate(ctx.snapshot)

    reserved = 2 + (1 if show_help_line else 0) + (5 if show_error_panel else 0) + (1 if show_error_inline else 0)
    reserved += 1 if gate is not None else 0
    reserved += 1 if ctx.status_message else 0
    budget = max(PANEL_MIN_ROWS, rows - reserved)

    if ctx.view == "overview":
        candidates = _overview_candidates(ctx, compact_width)
    elif ctx.view == "health":
        candidates = _health_candidates(ctx, compact_width, show_error_panel)
    elif ctx.view == "git":
        candidates = _git_candidates(ctx, compact_width)
    else:
        candidates = _runs_candidates(ctx, compact_width)

    if rows <= ULTRA_COMPACT_ROWS:
        if ctx.preview_open:
            keep = [panel for panel in candidates if panel is not None and panel.key in ("current-run", "preview", "git-diff")]
            candidates = keep or [panel for panel in candidates if panel is not None][:1]
        else:
            candidates = [panel for panel in candidates if panel is not None][:1]

    panels = allocate_single_column_panels(candidates, budget)
    for panel in panels:
        panel.lines = fit_lines(panel.lines, panel.max_lines, compact_width)

    error_lines = builders.build_error_lines(ctx.error, compact_width)
    error_panel = None
    if show_error_panel:
        error_panel = PanelSpec("errors", "Errors", fit_lines(error_lines, 2, compact_width), "red", max_lines=2)
    inline_error = None
    if show_error_inline:
        first = error_lines[0].text if error_lines else "Error"
        inline_error = Line(text=truncate(first, full_width), color="red")

    overlay = None
    if ctx.show_worktree_overlay:
        max_lines = max(1, rows - 4)
        overlay_lines = build_worktree_overlay_lines(ctx.snapshot, ctx.worktree_selection, compact_width)
        overlay = PanelSpec("worktree-picker", "Switch Worktree", fit_lines(overlay_lines, max_lines, compact_width), "cyan", max_lines=max_lines)
    elif ctx.show_help_overlay:
        overlay_lines = build_help_overlay_lines(
            ctx.view, ctx.flow, ctx.preview_open, len(ctx.available_flows), ctx.run_filter,
            has_multiple_worktrees(ctx.snapshot),
        )
        max_lines = max(1, rows - 4)
        overlay = PanelSpec("help", "Shortcuts", fit_lines(overlay_lines, max_lines, compact_width), "cyan", max_lines=max_lines)

    help_line = None
    if show_help_line:
        help_line = truncate(
            build_quick_help_text(
                ctx.view, ctx.flow, ctx.preview_open, len(ctx.available_flows), has_multiple_worktrees(ctx.snapshot),
            ),
            full_width,
        )

    return Frame(
        header=builders.build_header_line(
            ctx.snapshot, ctx.flow, ctx.watch_enabled, ctx.watch_status, ctx.last_refresh_at, ctx.view, full_width,
            worktree_label=get_selected_worktree_label(ctx.snapshot),
        ),
        tabs=build_tabs(ctx.view, ctx.icons),
        flow_bar=build_flow_bar(ctx.flow, ctx.available_flows),
        gate=_gate_line(gate, full_width),
        inline_error=inline_error,
        error_panel=error_panel,
        panels=panels,
        help_line=help_line,
        status_line=truncate(ctx.status_message, full_width) if ctx.status_message else None,
        width=full_width,
        overlay=overlay,
    )
