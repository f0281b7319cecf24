"""Help overlay, quick-help strip and Markdown line coloring."""

import re
from typing import List, Optional, Tuple

from .text import Line

_FENCE = re.compile(r"^\s*```")
_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+")
_LIST_ITEM = re.compile(r"^\s*[-*+]\s+|^\s*\d+\.\s+")
_QUOTE = re.compile(r"^\s*>\s+")
_RULE = re.compile(r"^\s*---\s*$")


def colorize_markdown_line(line: str, in_code_block: bool) -> Tuple[Optional[str], bool, bool]:
    """Classify one Markdown line.

    Returns:
        ``(color, bold, toggles_code_block)``. A fence line toggles code mode
        for the lines that follow it.
    """
    text = line or ""
    if _FENCE.match(text):
        return "magenta", True, True
    if _HEADING.match(text):
        return "cyan", True, False
    if _LIST_ITEM.match(text):
        return "yellow", False, False
    if _QUOTE.match(text):
        return "dim", False, False
    if _RULE.match(text):
        return "yellow", False, False
    if in_code_block:
        return "green", False, False
    return None, False, False


def _item_labels(flow: str) -> Tuple[str, str]:
    flow = (flow or "").lower()
    if flow == "aidlc":
        return "bolt", "bolts"
    if flow == "simple":
        return "spec", "specs"
    return "run", "runs"


def build_quick_help_text(view: str, flow: str = "fire", preview_open: bool = False, available_flow_count: int = 1,
                          has_worktrees: bool = False) -> str:
    parts = ["q quit", "r refresh", "h/? help", "1-4 views", "tab/left/right switch views"]
    if view in ("runs", "git"):
        if preview_open:
            parts.append("up/down scroll preview")
            parts.append("d full document")
            parts.append("esc close")
        else:
            parts.append("up/down select")
            parts.append("enter expand")
            parts.append("v preview")
            parts.append("o open")
    if view == "runs":
        parts.append("f filter")
    if view == "git":
        parts.append("g changes/commits")
    if view == "overview":
        parts.append("n next | x completed")
    if available_flow_count > 1:
        parts.append("[/] switch flow")
    if has_worktrees:
        parts.append("b worktrees")
    return " | ".join(parts)


def build_help_overlay_lines(view: str = "runs", flow: str = "fire", preview_open: bool = False,
                             available_flow_count: int = 1, run_filter: str = "all",
                             has_worktrees: bool = False) -> List[Line]:
    item, items = _item_labels(flow)
    lines = [
        Line(text="Global", color="cyan", bold=True),
        Line(text="q or Ctrl+C quit"),
        Line(text="r refresh snapshot"),
        Line(text=f"1 active {items} | 2 overview | 3 health | 4 git changes"),
        Line(text="tab or right next view | left previous view"),
        Line(text="h/? toggle this shortcuts overlay"),
        Line(text="esc close overlays (help/preview)"),
        Line(),
        Line(text=f"Tab 1 Active {item.capitalize()}", color="yellow", bold=True),
        Line(text="up/down or j/k move selection"),
        Line(text="enter expand/collapse selected group"),
        Line(text="v or space preview selected file"),
        Line(text="o open selected file in system default app"),
        Line(text=f"f cycle file filter (now: {run_filter})"),
    ]
    if preview_open:
        lines.append(Line(text="preview is open: up/down scrolls it"))
    lines.append(Line(text="d toggle full document in the open preview"))
    if available_flow_count > 1:
        lines.append(Line(text="[/] (and m) switch flow"))
    if has_worktrees:
        lines.append(Line(text="b pick the git worktree to show"))
    lines.extend([
        Line(),
        Line(text="Tab 2 Overview", color="green", bold=True),
        Line(text="n next intents | x completed intents"),
        Line(),
        Line(text="Tab 3 Health", color="magenta", bold=True),
        Line(text="stats, warnings and error details"),
        Line(),
        Line(text="Tab 4 Git Changes", color="yellow", bold=True),
        Line(text="g switch focus between changed files and commits"),
        Line(text="select changed files or commits and press v to preview the diff"),
        Line(),
        Line(text=f"Current view: {(view or 'runs').upper()}", color="dim"),
    ])
    return lines
