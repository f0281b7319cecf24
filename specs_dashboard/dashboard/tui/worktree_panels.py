"""Worktree list, other worktrees' active work and the worktree picker overlay."""

import os
from typing import List, Optional

from ...utils import clamp_index
from ..models import WorktreeItem, WorktreeSet
from .text import Line, truncate

ACTIVE_LABELS = {"fire": "active runs", "aidlc": "active bolts", "simple": "active specs"}
OTHER_WORKTREE_TITLES = {
    "fire": "Other Worktrees: Active Runs",
    "aidlc": "Other Worktrees: Active Bolts",
    "simple": "Other Worktrees: Active Specs",
}


def get_worktree_set(snapshot) -> Optional[WorktreeSet]:
    worktrees = getattr(snapshot, "worktrees", None)
    if worktrees is None or not worktrees.items:
        return None
    return worktrees


def has_multiple_worktrees(snapshot) -> bool:
    worktrees = get_worktree_set(snapshot)
    return worktrees is not None and len(worktrees.items) > 1


def get_selected_worktree(snapshot) -> Optional[WorktreeItem]:
    worktrees = get_worktree_set(snapshot)
    return worktrees.selected if worktrees is not None else None


def get_worktree_display_name(item: Optional[WorktreeItem]) -> str:
    if item is None:
        return "unknown"
    for value in (item.display_branch, item.branch, item.name):
        if value and value.strip():
            return value
    return os.path.basename(item.path) or "unknown"


def get_selected_worktree_label(snapshot) -> Optional[str]:
    """Header label of the shown worktree; None unless there are several."""
    if not has_multiple_worktrees(snapshot):
        return None
    selected = get_selected_worktree(snapshot)
    return get_worktree_display_name(selected) if selected is not None else None


def _status_label(item: WorktreeItem, active_label: str) -> str:
    if item.status == "error":
        return " error"
    return f" {item.active_count} {active_label}"


def build_worktree_lines(snapshot, flow: str, width: int) -> List[Line]:
    worktrees = get_worktree_set(snapshot)
    if worktrees is None:
        return [Line(text=truncate("No git worktrees detected", width), color="dim")]

    active_label = ACTIVE_LABELS.get(flow, "active runs")
    lines = []
    for item in worktrees.items:
        current = "[CURRENT] " if item.is_selected else ""
        main = "[MAIN] " if item.is_main_branch and not item.detached else ""
        scope = f" ({item.name})" if item.name else ""
        availability = "" if item.flow_available else " (flow unavailable)"
        if item.is_selected:
            color = "green"
        elif item.flow_available:
            color = "dim"
        else:
            color = "red"
        text = f"{current}{main}{get_worktree_display_name(item)}{scope}{availability}{_status_label(item, active_label)}"
        lines.append(Line(text=truncate(text, width), color=color, bold=item.is_selected))
    return lines


def _progress_label(flow: str, entry) -> str:
    if flow == "aidlc":
        done = sum(1 for stage in entry.stages if stage.status == "completed")
        return f"{entry.id} [{entry.type or 'bolt'}] {done}/{len(entry.stages)} stages"
    done = sum(1 for item in entry.work_items if item.status == "completed")
    return f"{entry.id} [{entry.scope or 'single'}] {done}/{len(entry.work_items)} items"


def get_other_worktree_empty_message(snapshot, flow: str) -> str:
    if not has_multiple_worktrees(snapshot):
        return "No additional worktrees"
    selected = get_selected_worktree(snapshot)
    if selected is None or not selected.is_main_branch:
        return "Switch to main worktree to view active items from other worktrees"
    return f"No {ACTIVE_LABELS.get(flow, 'active runs')} in other worktrees"


def build_other_worktree_lines(snapshot, flow: str, width: int) -> List[Line]:
    """Active runs or bolts of the non-selected worktrees.

    Listed only while the main worktree is shown; the simple flow has no
    per-worktree activity list.
    """
    worktrees = get_worktree_set(snapshot)
    selected = get_selected_worktree(snapshot)
    texts = []
    if worktrees is not None and selected is not None and selected.is_main_branch and flow != "simple":
        for item in worktrees.items:
            if item.is_selected or not item.flow_available or item.status != "ready":
                continue
            entries = item.active_bolts if flow == "aidlc" else item.active_runs
            for entry in entries:
                texts.append(f"[WT {get_worktree_display_name(item)}] {_progress_label(flow, entry)}")

    if not texts:
        return [Line(text=truncate(get_other_worktree_empty_message(snapshot, flow), width), color="dim")]
    return [Line(text=truncate(text, width), color="yellow") for text in texts]


def build_worktree_overlay_lines(snapshot, selected_index: int, width: int) -> List[Line]:
    worktrees = get_worktree_set(snapshot)
    if worktrees is None:
        return [Line(text=truncate("No worktrees available", width), color="dim")]

    index = clamp_index(selected_index, len(worktrees.items))
    lines = [Line(text=truncate("Use up/down and Enter to switch. Esc closes.", width), color="dim")]
    for position, item in enumerate(worktrees.items):
        highlighted = position == index
        marker = ">" if highlighted else " "
        current = "[CURRENT] " if item.is_selected else ""
        main = "[MAIN] " if item.is_main_branch and not item.detached else ""
        if item.status == "error":
            status = "error"
        elif item.flow_available:
            status = f"{item.active_count} active"
        else:
            status = "flow unavailable"
        folder = os.path.basename(item.path) or "unknown"
        if highlighted:
            color = "green"
        elif item.is_selected:
            color = "cyan"
        else:
            color = "dim"
        lines.append(Line(
            text=truncate(f"{marker} {current}{main}{get_worktree_display_name(item)} ({folder}) | {status}", width),
            color=color,
            bold=highlighted or item.is_selected,
            selected=highlighted,
        ))
    if worktrees.error:
        lines.append(Line(text=truncate(f"git worktree list failed: {worktrees.error}", width), color="red"))
    return lines
