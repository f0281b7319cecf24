"""Mutable UI state of the interactive dashboard."""

from dataclasses import dataclass, field
from typing import Dict, Optional, Set

from .layout import VIEWS

RUN_FILTERS = ("all", "active", "completed")
INTENT_FILTERS = ("next", "completed")


@dataclass
class UIState:
    """Everything the key handler changes between frames.

    Attributes:
        view: Active tab, one of ``runs``, ``overview``, ``health`` or ``git``.
        run_filter: Which file scopes the runs view shows.
        intent_filter: Which intents the overview lists.
        show_help: Show the one-line shortcut strip.
        show_help_overlay: Show the full shortcuts panel.
        preview_open: Show the preview panel for the selected entry.
        preview_scroll: Body lines skipped in the preview.
        preview_full_document: Lift the preview line cap.
        show_worktree_overlay: Show the worktree picker.
        worktree_selection: Highlighted row in the worktree picker.
        selection: Selected row index per panel key.
        git_focus: Which git panel receives navigation keys.
        collapsed: Group keys the user has collapsed.
        status_message: One-shot message shown under the panels.
    """

    view: str = "runs"
    run_filter: str = "all"
    intent_filter: str = "next"
    show_help: bool = True
    show_help_overlay: bool = False
    preview_open: bool = False
    preview_scroll: int = 0
    preview_full_document: bool = False
    show_worktree_overlay: bool = False
    worktree_selection: int = 0
    selection: Dict[str, int] = field(default_factory=dict)
    git_focus: str = "changes"
    collapsed: Set[str] = field(default_factory=set)
    status_message: Optional[str] = None

    def selected(self, key: str) -> int:
        return self.selection.get(key, 0)

    def select(self, key: str, index: int) -> None:
        self.selection[key] = max(0, index)

    def set_view(self, view: str) -> None:
        if view in VIEWS and view != self.view:
            self.view = view
            self.close_preview()

    def close_preview(self) -> None:
        self.preview_open = False
        self.preview_scroll = 0
        self.preview_full_document = False


def cycle_view(current: str) -> str:
    index = VIEWS.index(current) if current in VIEWS else -1
    return VIEWS[(index + 1) % len(VIEWS)]


def cycle_view_backward(current: str) -> str:
    index = VIEWS.index(current) if current in VIEWS else 0
    return VIEWS[(index - 1) % len(VIEWS)]


def cycle_run_filter(current: str) -> str:
    """Cycle all, active, completed, then back to all."""
    index = RUN_FILTERS.index(current) if current in RUN_FILTERS else -1
    return RUN_FILTERS[(index + 1) % len(RUN_FILTERS)]


def cycle_flow(current: str, flows, step: int = 1) -> str:
    flows = list(flows)
    if not flows:
        return current
    index = flows.index(current) if current in flows else 0
    return flows[(index + step) % len(flows)]
