"""Selectable file rows for the runs and git views.

Files are collected per flow into labelled groups (active item, up next,
done, intent context). Groups become rows that can be expanded or collapsed
and navigated with the keyboard; file rows can be previewed or opened with
the system's default application.
"""

import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ...utils import clamp_index, file_exists, list_markdown_files
from ..approval import get_current_bolt, get_current_run, get_current_spec
from ..config import IconSet
from .builders import effective_flow
from .text import Line, sanitize_render_line, truncate

logger = logging.getLogger(__name__)

SCOPE_LABELS = {
    "active": "ACTIVE",
    "upcoming": "UPNEXT",
    "completed": "DONE",
    "intent": "INTENT",
    "staged": "STAGED",
    "unstaged": "UNSTAGED",
    "untracked": "UNTRACKED",
    "conflicted": "CONFLICT",
}

SCOPE_GROUP_TITLES = (
    ("active", "active"),
    ("upcoming", "up next"),
    ("completed", "completed"),
    ("intent", "intent context"),
)

RUN_FILTER_SCOPES = {
    "all": ("active", "upcoming", "completed", "intent"),
    "active": ("active", "upcoming", "intent"),
    "completed": ("completed",),
}


@dataclass(frozen=True)
class FileEntry:
    """A previewable target: a file on disk, a git diff or a commit."""

    path: str
    label: str
    scope: str = "file"
    preview_type: str = "file"
    repo_root: str = ""
    relative_path: str = ""
    bucket: str = ""
    commit_hash: str = ""
    allow_missing: bool = False


@dataclass(frozen=True)
class FileGroup:
    key: str
    label: str
    files: Tuple[FileEntry, ...] = ()


@dataclass(frozen=True)
class Row:
    """One row of an interactive panel.

    ``kind`` is ``group``, ``file``, ``git-file``, ``git-commit`` or
    ``info``; only non-info rows can be selected.
    """

    kind: str
    key: str
    label: str
    selectable: bool = True
    expandable: bool = False
    expanded: bool = False
    entry: Optional[FileEntry] = None
    color: Optional[str] = None


def format_scope(scope: Optional[str]) -> str:
    return SCOPE_LABELS.get(scope or "", "FILE")


def _push(entries: List[FileEntry], seen: Set[str], entry: FileEntry) -> None:
    if entry.path in seen or not file_exists(entry.path):
        return
    seen.add(entry.path)
    entries.append(entry)


def _fire_run_files(run, scope: str) -> List[FileEntry]:
    names = ["run.md"]
    if run.has_plan:
        names.append("plan.md")
    if run.has_test_report:
        names.append("test-report.md")
    if run.has_walkthrough:
        names.append("walkthrough.md")
    return [
        FileEntry(path=str(Path(run.folder_path) / name), label=f"{run.id}/{name}", scope=scope)
        for name in names
    ]


def _aidlc_bolt_files(bolt, scope: str) -> List[FileEntry]:
    names = bolt.files or list_markdown_files(bolt.path)
    return [
        FileEntry(path=str(Path(bolt.path) / name), label=f"{bolt.id}/{name}", scope=scope)
        for name in names
    ]


def _simple_spec_files(spec, scope: str) -> List[FileEntry]:
    names = []
    if spec.has_requirements:
        names.append("requirements.md")
    if spec.has_design:
        names.append("design.md")
    if spec.has_tasks:
        names.append("tasks.md")
    return [
        FileEntry(path=str(Path(spec.path) / name), label=f"{spec.name}/{name}", scope=scope)
        for name in names
    ]


def _intent_file(snapshot, intent_id: str, name: str) -> FileEntry:
    path = Path(snapshot.root_path) / "intents" / intent_id / name
    return FileEntry(path=str(path), label=f"{intent_id}/{name}", scope="intent")


def _work_item_label(snapshot, intent_id: str, file_path: str) -> str:
    intent_path = Path(snapshot.root_path) / "intents" / intent_id
    try:
        return f"{intent_id}/{Path(file_path).relative_to(intent_path).as_posix()}"
    except ValueError:
        return f"{intent_id}/{Path(file_path).name}" if intent_id else Path(file_path).name


def get_run_file_entries(snapshot, flow: Optional[str] = None) -> List[FileEntry]:
    """Collect the existing files worth previewing for the active flow.

    Entries are de-duplicated by path and ordered active item first, then the
    queue, then completed work, then intent context.
    """
    if snapshot is None:
        return []

    flow = effective_flow(snapshot, flow)
    entries: List[FileEntry] = []
    seen: Set[str] = set()

    if flow == "aidlc":
        bolt = get_current_bolt(snapshot)
        if bolt is not None:
            for entry in _aidlc_bolt_files(bolt, "active"):
                _push(entries, seen, entry)
        for pending in snapshot.pending_bolts:
            for entry in _aidlc_bolt_files(pending, "upcoming"):
                _push(entries, seen, entry)
        for completed in snapshot.completed_bolts:
            for entry in _aidlc_bolt_files(completed, "completed"):
                _push(entries, seen, entry)
        intent_ids = []
        for candidate in list(snapshot.pending_bolts) + list(snapshot.completed_bolts):
            if candidate.intent and candidate.intent not in intent_ids:
                intent_ids.append(candidate.intent)
        for intent_id in intent_ids:
            for name in ("requirements.md", "system-context.md", "units.md"):
                _push(entries, seen, _intent_file(snapshot, intent_id, name))
        return entries

    if flow == "simple":
        spec = get_current_spec(snapshot)
        if spec is not None:
            for entry in _simple_spec_files(spec, "active"):
                _push(entries, seen, entry)
        for pending in snapshot.pending_specs:
            for entry in _simple_spec_files(pending, "upcoming"):
                _push(entries, seen, entry)
        for completed in snapshot.completed_specs:
            for entry in _simple_spec_files(completed, "completed"):
                _push(entries, seen, entry)
        return entries

    run = get_current_run(snapshot)
    if run is not None:
        for entry in _fire_run_files(run, "active"):
            _push(entries, seen, entry)
    for item in snapshot.pending_items:
        _push(entries, seen, FileEntry(
            path=item.file_path,
            label=_work_item_label(snapshot, item.intent_id, item.file_path),
            scope="upcoming",
        ))
        if item.intent_id:
            _push(entries, seen, _intent_file(snapshot, item.intent_id, "brief.md"))
    for completed in snapshot.completed_runs:
        for entry in _fire_run_files(completed, "completed"):
            _push(entries, seen, entry)
    for intent in snapshot.intents:
        if intent.status == "completed":
            _push(entries, seen, _intent_file(snapshot, intent.id, "brief.md"))
    return entries


def group_file_entries(entries: Iterable[FileEntry], run_filter: str = "all") -> List[FileGroup]:
    """Group entries by scope, keeping only scopes the run filter allows."""
    allowed = RUN_FILTER_SCOPES.get(run_filter, RUN_FILTER_SCOPES["all"])
    entries = list(entries)
    groups = []
    for scope, title in SCOPE_GROUP_TITLES:
        if scope not in allowed:
            continue
        files = tuple(entry for entry in entries if entry.scope == scope)
        if files:
            groups.append(FileGroup(key=f"files:{scope}", label=f"{title} ({len(files)})", files=files))
    return groups


def to_expandable_rows(groups: List[FileGroup], empty_label: str, collapsed: Set[str]) -> List[Row]:
    """Flatten groups into rows; groups are expanded unless in ``collapsed``."""
    if not groups:
        return [Row(kind="info", key="section:empty", label=empty_label, selectable=False)]

    rows = []
    for group in groups:
        files = [entry for entry in group.files if entry.allow_missing or file_exists(entry.path)]
        expandable = bool(files)
        expanded = expandable and group.key not in collapsed
        rows.append(Row(kind="group", key=group.key, label=group.label, expandable=expandable, expanded=expanded))
        if not expanded:
            continue
        for index, entry in enumerate(files):
            rows.append(Row(
                kind="git-file" if entry.preview_type == "git-diff" else "file",
                key=f"{group.key}:file:{entry.path}:{index}",
                label=entry.label,
                entry=entry,
            ))
    return rows


def build_row_lines(rows: List[Row], selected_index: int, icons: IconSet, width: int, focused: bool = True) -> List[Line]:
    """Render rows, marking the selected one with the cursor glyph."""
    if not rows:
        return [Line()]

    selected_index = clamp_index(selected_index, len(rows))
    highlight = "green" if focused else "cyan"
    lines = []
    for index, row in enumerate(rows):
        is_selected = row.selectable and index == selected_index
        cursor = icons.active_file if is_selected else " "
        label = sanitize_render_line(row.label)

        if row.kind == "group":
            marker = (icons.group_expanded if row.expanded else icons.group_collapsed) if row.expandable else "-"
            lines.append(Line(
                text=truncate(f"{cursor} {marker} {label}", width),
                color=highlight if is_selected else None,
                bold=is_selected,
                selected=is_selected,
            ))
        elif row.kind in ("file", "git-file", "git-commit"):
            scope = f"[{format_scope(row.entry.scope)}] " if row.entry is not None and row.kind != "git-commit" else ""
            lines.append(Line(
                text=truncate(f"{cursor}   {icons.run_file} {scope}{label}", width),
                color=highlight if is_selected else "dim",
                bold=is_selected,
                selected=is_selected,
            ))
        else:
            prefix = f"{cursor} " if is_selected else "  "
            lines.append(Line(
                text=truncate(f"{prefix}{label}", width),
                color=highlight if is_selected else (row.color or "dim"),
                bold=is_selected,
                selected=is_selected,
            ))
    return lines


def get_selected_row(rows: List[Row], selected_index: int) -> Optional[Row]:
    if not rows:
        return None
    return rows[clamp_index(selected_index, len(rows))]


def first_selectable_index(rows: List[Row]) -> int:
    for index, row in enumerate(rows):
        if row.selectable:
            return index
    return 0


def move_row_selection(rows: List[Row], current_index: int, direction: int) -> int:
    """Move to the next selectable row in ``direction``, staying put at the ends."""
    if not rows:
        return 0
    current = clamp_index(current_index, len(rows))
    step = 1 if direction >= 0 else -1
    candidate = current + step
    while 0 <= candidate < len(rows):
        if rows[candidate].selectable:
            return candidate
        candidate += step
    return current


def open_file_with_default_app(file_path: Optional[str]) -> Tuple[bool, str]:
    """Open ``file_path`` with the platform's default application.

    Returns:
        ``(ok, message)`` suitable for the status line.
    """
    if not file_path or not str(file_path).strip():
        return False, "No file selected to open."
    if not file_exists(file_path):
        return False, f"File not found: {file_path}"

    if sys.platform == "darwin":
        command = ["open", file_path]
    elif sys.platform == "win32":
        command = ["cmd", "/c", "start", "", file_path]
    else:
        command = ["xdg-open", file_path]

    try:
        result = subprocess.run(command, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=False)
    except OSError as error:
        logger.debug(f"Unable to open {file_path}: {error}")
        return False, f"Unable to open file: {error}"
    if result.returncode != 0:
        return False, f"Open command failed with exit code {result.returncode}."
    return True, f"Opened {file_path}"


def collapsed_key_toggle(collapsed: Set[str], key: str) -> Set[str]:
    updated = set(collapsed)
    if key in updated:
        updated.remove(key)
    else:
        updated.add(key)
    return updated


def rows_by_key(rows: List[Row]) -> Dict[str, int]:
    return {row.key: index for index, row in enumerate(rows)}
