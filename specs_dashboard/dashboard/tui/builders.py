"""Per-flow panel line builders.

Every builder takes a snapshot (or None) and a column width and returns a
list of ``Line`` values. The flow-independent entry points at the bottom
dispatch on the snapshot's flow, falling back to the flow the caller passes.
"""

from typing import Any, Dict, List, Optional

from ...utils import format_time
from ..approval import (
    get_current_bolt,
    get_current_fire_work_item,
    get_current_phase_label,
    get_current_run,
    get_current_spec,
    is_aidlc_bolt_awaiting_approval,
    is_fire_run_awaiting_approval,
)
from ..models import DashboardError
from .text import Line, truncate

FIRE_PHASES = ("plan", "execute", "test", "review")
FIRE_STANDARDS = ("constitution", "tech-stack", "coding-standards", "testing-standards", "system-architecture")


def effective_flow(snapshot: Any, flow: Optional[str] = None) -> str:
    snapshot_flow = getattr(snapshot, "flow", None)
    return (snapshot_flow or flow or "fire").lower()


def _lines(texts: List[str], width: int) -> List[Line]:
    return [Line(text=truncate(text, width)) for text in texts]


def _initialized(snapshot: Any) -> bool:
    return snapshot is not None and bool(getattr(snapshot, "initialized", False))


# Header and errors


def build_short_stats(snapshot: Any, flow: str) -> str:
    flow = effective_flow(snapshot, flow)
    if not _initialized(snapshot):
        if flow == "aidlc":
            return "init: waiting for memory-bank scan"
        if flow == "simple":
            return "init: waiting for specs scan"
        return "init: waiting for state.yaml"

    stats = snapshot.stats
    if flow == "aidlc":
        return (
            f"bolts {stats.active_bolts_count}/{stats.completed_bolts} | "
            f"intents {stats.completed_intents}/{stats.total_intents} | "
            f"stories {stats.completed_stories}/{stats.total_stories}"
        )
    if flow == "simple":
        return (
            f"specs {stats.completed_specs}/{stats.total_specs} | "
            f"tasks {stats.completed_tasks}/{stats.total_tasks} | "
            f"active {stats.active_specs_count}"
        )
    return (
        f"runs {stats.active_runs_count}/{stats.completed_runs} | "
        f"intents {stats.completed_intents}/{stats.total_intents} | "
        f"work {stats.completed_work_items}/{stats.total_work_items}"
    )


def build_header_line(snapshot: Any, flow: str, watch_enabled: bool, watch_status: str,
                      last_refresh_at: Optional[str], view: str, width: int,
                      worktree_label: Optional[str] = None) -> str:
    project_name = snapshot.project.name if snapshot is not None else "Unnamed project"
    watch = watch_status if watch_enabled else "off"
    worktree = f" | wt:{worktree_label}" if worktree_label else ""
    line = (
        f"{flow.upper()} | {project_name} | {build_short_stats(snapshot, flow)} | "
        f"watch:{watch}{worktree} | {view} | {format_time(last_refresh_at)}"
    )
    return truncate(line, width)


def build_error_lines(error: Optional[DashboardError], width: int) -> List[Line]:
    if error is None:
        return []
    texts = [f"[{error.code or 'ERROR'}] {error.message or 'Unknown error'}"]
    if error.details:
        texts.append(f"details: {error.details}")
    if error.path:
        texts.append(f"path: {error.path}")
    if error.hint:
        texts.append(f"hint: {error.hint}")
    return [Line(text=truncate(text, width), color="red") for text in texts]


def build_warnings_lines(snapshot: Any, width: int) -> List[Line]:
    warnings = list(getattr(snapshot, "warnings", []) or [])
    if not warnings:
        return [Line(text=truncate("No warnings", width), color="dim")]
    return [Line(text=truncate(warning, width), color="yellow") for warning in warnings]


# FIRE


def build_phase_track(current_phase: str) -> str:
    current = FIRE_PHASES.index(current_phase) if current_phase in FIRE_PHASES else 0
    return " - ".join(
        f"[{label}]" if index == current else f" {label} "
        for index, label in enumerate("PETR")
    )


def build_fire_current_run_lines(snapshot, width: int) -> List[Line]:
    run = get_current_run(snapshot)
    if run is None:
        return _lines(["No active run"], width)

    completed = sum(1 for item in run.work_items if item.status == "completed")
    item = get_current_fire_work_item(run)
    item_id = item.id if item else (run.current_item or "n/a")
    mode = (item.mode if item else "confirm").upper()
    status = item.status if item else "pending"
    phase = get_current_phase_label(run, item)
    approval = " [APPROVAL]" if is_fire_run_awaiting_approval(run, item) else ""

    return _lines([
        f"{run.id}  [{run.scope}]  {completed}/{len(run.work_items)} items done{approval}",
        f"work item: {item_id}",
        f"mode: {mode}  |  status: {status}",
        f"phase: {build_phase_track(phase)}",
    ], width)


def build_fire_pending_lines(snapshot, width: int) -> List[Line]:
    pending = snapshot.pending_items if snapshot is not None else []
    if not pending:
        return _lines(["No pending work items"], width)
    texts = []
    for item in pending:
        deps = f" deps:{','.join(item.dependencies)}" if item.dependencies else ""
        texts.append(f"{item.id} ({item.mode}/{item.complexity}) in {item.intent_title}{deps}")
    return _lines(texts, width)


def build_fire_completed_lines(snapshot, width: int) -> List[Line]:
    runs = snapshot.completed_runs if snapshot is not None else []
    if not runs:
        return _lines(["No completed runs yet"], width)
    texts = []
    for run in runs:
        done = sum(1 for item in run.work_items if item.status == "completed")
        texts.append(f"{run.id} [{run.scope}] {done}/{len(run.work_items)} done at {run.completed_at or 'unknown'}")
    return _lines(texts, width)


def build_fire_stats_lines(snapshot, width: int) -> List[Line]:
    stats = snapshot.stats
    return _lines([
        f"intents: {stats.completed_intents}/{stats.total_intents} done | "
        f"in_progress: {stats.in_progress_intents} | blocked: {stats.blocked_intents}",
        f"work items: {stats.completed_work_items}/{stats.total_work_items} done | "
        f"in_progress: {stats.in_progress_work_items} | pending: {stats.pending_work_items} | "
        f"blocked: {stats.blocked_work_items}",
        f"runs: {stats.active_runs_count} active | {stats.completed_runs} completed | {stats.total_runs} total",
    ], width)


def build_fire_overview_project_lines(snapshot, width: int) -> List[Line]:
    if not _initialized(snapshot):
        return _lines([
            "FIRE folder detected, but state.yaml is missing.",
            "Initialize project context and this view will populate.",
        ], width)

    project = snapshot.project
    workspace = snapshot.workspace
    return _lines([
        f"project: {project.name or 'unknown'} | fire_version: {project.version or snapshot.version or '0.0.0'}",
        f"workspace: {workspace.type} / {workspace.structure}",
        f"autonomy: {workspace.autonomy_bias} | run scope pref: {workspace.run_scope_preference}",
    ], width)


def build_fire_overview_standards_lines(snapshot, width: int) -> List[Line]:
    present = {standard.type for standard in (snapshot.standards if snapshot is not None else [])}
    return _lines([
        f"{'[x]' if name in present else '[ ]'} {name}.md" for name in FIRE_STANDARDS
    ], width)


# AIDLC


def build_aidlc_stage_track(bolt) -> str:
    if not bolt.stages:
        return "n/a"
    parts = []
    for stage in bolt.stages:
        label = (stage.name or "?")[:1].upper()
        if stage.status == "completed":
            parts.append(f"[{label}]")
        elif stage.status == "in_progress":
            parts.append(f"<{label}>")
        else:
            parts.append(f" {label} ")
    return "-".join(parts)


def build_aidlc_current_run_lines(snapshot, width: int) -> List[Line]:
    bolt = get_current_bolt(snapshot)
    if bolt is None:
        return _lines(["No active bolt"], width)

    completed = sum(1 for stage in bolt.stages if stage.status == "completed")
    location = f"{bolt.intent or 'unknown-intent'} / {bolt.unit or 'unknown-unit'}"
    approval = " [APPROVAL]" if is_aidlc_bolt_awaiting_approval(bolt) else ""
    return _lines([
        f"{bolt.id}  [{bolt.type}]  {completed}/{len(bolt.stages)} stages done{approval}",
        f"scope: {location}",
        f"stage: {bolt.current_stage or 'n/a'}  |  status: {bolt.status}",
        f"phase: {build_aidlc_stage_track(bolt)}",
    ], width)


def build_aidlc_pending_lines(snapshot, width: int) -> List[Line]:
    bolts = snapshot.pending_bolts if snapshot is not None else []
    if not bolts:
        return _lines(["No queued bolts"], width)
    texts = []
    for bolt in bolts:
        deps = f" blocked_by:{','.join(bolt.blocked_by)}" if bolt.blocked_by else ""
        texts.append(f"{bolt.id} ({bolt.status}) in {bolt.intent or 'unknown'}/{bolt.unit or 'unknown'}{deps}")
    return _lines(texts, width)


def build_aidlc_completed_lines(snapshot, width: int) -> List[Line]:
    bolts = snapshot.completed_bolts if snapshot is not None else []
    if not bolts:
        return _lines(["No completed bolts yet"], width)
    return _lines([f"{bolt.id} [{bolt.type}] done at {bolt.completed_at or 'unknown'}" for bolt in bolts], width)


def build_aidlc_stats_lines(snapshot, width: int) -> List[Line]:
    stats = snapshot.stats
    return _lines([
        f"intents: {stats.completed_intents}/{stats.total_intents} done | "
        f"in_progress: {stats.in_progress_intents} | blocked: {stats.blocked_intents}",
        f"stories: {stats.completed_stories}/{stats.total_stories} done | "
        f"in_progress: {stats.in_progress_stories} | pending: {stats.pending_stories} | "
        f"blocked: {stats.blocked_stories}",
        f"bolts: {stats.active_bolts_count} active | {stats.queued_bolts} queued | "
        f"{stats.blocked_bolts} blocked | {stats.completed_bolts} done",
    ], width)


def build_aidlc_overview_project_lines(snapshot, width: int) -> List[Line]:
    if snapshot is None:
        return _lines(["No memory-bank snapshot yet."], width)
    project = snapshot.project
    stats = snapshot.stats
    return _lines([
        f"project: {project.name or 'unknown'} | project_type: {project.project_type or 'unknown'}",
        f"memory-bank: intents {stats.total_intents} | units {stats.total_units} | stories {stats.total_stories}",
        f"progress: {stats.progress_percent}% stories complete | standards: {len(snapshot.standards)}",
    ], width)


def build_aidlc_overview_standards_lines(snapshot, width: int) -> List[Line]:
    standards = snapshot.standards if snapshot is not None else []
    if not standards:
        return _lines(["No standards found under memory-bank/standards"], width)
    return _lines([f"[x] {standard.name or standard.type or 'unknown'}.md" for standard in standards], width)


# Simple


def build_simple_phase_track(spec) -> str:
    if spec.state == "completed":
        return "[R] - [D] - [T]"
    current = {"requirements_pending": 0, "design_pending": 1}.get(spec.state, 2)
    return " - ".join(
        f"[{label}]" if index == current else f" {label} "
        for index, label in enumerate("RDT")
    )


def build_simple_current_run_lines(snapshot, width: int) -> List[Line]:
    spec = get_current_spec(snapshot)
    if spec is None:
        return _lines(["No active spec"], width)

    files = "/".join([
        "req" if spec.has_requirements else "-",
        "design" if spec.has_design else "-",
        "tasks" if spec.has_tasks else "-",
    ])
    return _lines([
        f"{spec.name}  [{spec.state}]  {spec.tasks_completed}/{spec.tasks_total} tasks done",
        f"phase: {spec.phase}",
        f"files: {files}",
        f"track: {build_simple_phase_track(spec)}",
    ], width)


def build_simple_pending_lines(snapshot, width: int) -> List[Line]:
    specs = snapshot.pending_specs if snapshot is not None else []
    if not specs:
        return _lines(["No pending specs"], width)
    return _lines([
        f"{spec.name} ({spec.state}) {spec.tasks_completed}/{spec.tasks_total} tasks" for spec in specs
    ], width)


def build_simple_completed_lines(snapshot, width: int) -> List[Line]:
    specs = snapshot.completed_specs if snapshot is not None else []
    if not specs:
        return _lines(["No completed specs yet"], width)
    return _lines([
        f"{spec.name} done at {spec.updated_at or 'unknown'} ({spec.tasks_completed}/{spec.tasks_total})"
        for spec in specs
    ], width)


def build_simple_stats_lines(snapshot, width: int) -> List[Line]:
    stats = snapshot.stats
    return _lines([
        f"specs: {stats.completed_specs}/{stats.total_specs} complete | "
        f"in_progress: {stats.in_progress_specs} | pending: {stats.pending_specs}",
        f"pipeline: ready {stats.ready_specs} | design_pending {stats.design_pending_specs} | "
        f"tasks_pending {stats.tasks_pending_specs}",
        f"tasks: {stats.completed_tasks}/{stats.total_tasks} complete | "
        f"pending: {stats.pending_tasks} | optional: {stats.optional_tasks}",
    ], width)


def build_simple_overview_project_lines(snapshot, width: int) -> List[Line]:
    if snapshot is None:
        return _lines(["No specs snapshot yet."], width)
    stats = snapshot.stats
    return _lines([
        f"project: {snapshot.project.name or 'unknown'} | simple flow",
        f"specs: {stats.total_specs} total | active: {stats.active_specs_count} | completed: {stats.completed_specs}",
        f"tasks: {stats.completed_tasks}/{stats.total_tasks} complete ({stats.progress_percent}%)",
    ], width)


def build_simple_overview_standards_lines(snapshot, width: int) -> List[Line]:
    specs = snapshot.specs if snapshot is not None else []
    if not specs:
        return _lines(["No spec artifacts found"], width)
    total = len(specs)
    return _lines([
        f"[x] requirements.md coverage {sum(1 for spec in specs if spec.has_requirements)}/{total}",
        f"[x] design.md coverage {sum(1 for spec in specs if spec.has_design)}/{total}",
        f"[x] tasks.md coverage {sum(1 for spec in specs if spec.has_tasks)}/{total}",
    ], width)


# Flow dispatch

_CURRENT = {
    "fire": build_fire_current_run_lines,
    "aidlc": build_aidlc_current_run_lines,
    "simple": build_simple_current_run_lines,
}
_PENDING = {
    "fire": build_fire_pending_lines,
    "aidlc": build_aidlc_pending_lines,
    "simple": build_simple_pending_lines,
}
_COMPLETED = {
    "fire": build_fire_completed_lines,
    "aidlc": build_aidlc_completed_lines,
    "simple": build_simple_completed_lines,
}
_STATS = {
    "fire": build_fire_stats_lines,
    "aidlc": build_aidlc_stats_lines,
    "simple": build_simple_stats_lines,
}
_OVERVIEW_PROJECT = {
    "fire": build_fire_overview_project_lines,
    "aidlc": build_aidlc_overview_project_lines,
    "simple": build_simple_overview_project_lines,
}
_OVERVIEW_STANDARDS = {
    "fire": build_fire_overview_standards_lines,
    "aidlc": build_aidlc_overview_standards_lines,
    "simple": build_simple_overview_standards_lines,
}

UNINITIALIZED_STATS = {
    "fire": "Waiting for .specs-fire/state.yaml initialization.",
    "aidlc": "Waiting for memory-bank initialization.",
    "simple": "Waiting for specs/ initialization.",
}


def build_current_run_lines(snapshot, width: int, flow: Optional[str] = None) -> List[Line]:
    return _CURRENT[effective_flow(snapshot, flow)](snapshot, width)


def build_pending_lines(snapshot, width: int, flow: Optional[str] = None) -> List[Line]:
    return _PENDING[effective_flow(snapshot, flow)](snapshot, width)


def build_completed_lines(snapshot, width: int, flow: Optional[str] = None) -> List[Line]:
    return _COMPLETED[effective_flow(snapshot, flow)](snapshot, width)


def build_stats_lines(snapshot, width: int, flow: Optional[str] = None) -> List[Line]:
    flow = effective_flow(snapshot, flow)
    if not _initialized(snapshot):
        return _lines([UNINITIALIZED_STATS[flow]], width)
    return _STATS[flow](snapshot, width)


def build_overview_project_lines(snapshot, width: int, flow: Optional[str] = None) -> List[Line]:
    return _OVERVIEW_PROJECT[effective_flow(snapshot, flow)](snapshot, width)


def build_overview_standards_lines(snapshot, width: int, flow: Optional[str] = None) -> List[Line]:
    return _OVERVIEW_STANDARDS[effective_flow(snapshot, flow)](snapshot, width)


def list_overview_intent_entries(snapshot, flow: Optional[str] = None) -> List[Dict[str, str]]:
    """Return ``{id, status, line}`` records for the intent status panel."""
    if snapshot is None:
        return []
    flow = effective_flow(snapshot, flow)
    if flow == "aidlc":
        return [{
            "id": intent.id,
            "status": intent.status,
            "line": (
                f"{intent.id}: {intent.status} ({intent.completed_stories}/{intent.story_count} stories, "
                f"{intent.completed_units}/{intent.unit_count} units)"
            ),
        } for intent in snapshot.intents]
    if flow == "simple":
        return [{
            "id": spec.name,
            "status": spec.state,
            "line": f"{spec.name}: {spec.state} ({spec.tasks_completed}/{spec.tasks_total} tasks)",
        } for spec in snapshot.specs]

    entries = []
    for intent in snapshot.intents:
        done = sum(1 for item in intent.work_items if item.status == "completed")
        entries.append({
            "id": intent.id,
            "status": intent.status,
            "line": f"{intent.id}: {intent.status} ({done}/{len(intent.work_items)} work items)",
        })
    return entries


def build_overview_intent_lines(snapshot, width: int, flow: Optional[str] = None, intent_filter: str = "next") -> List[Line]:
    """Build the intent status panel with its next/completed filter header."""
    show_completed = intent_filter == "completed"
    next_label = " next " if show_completed else "[NEXT]"
    completed_label = "[COMPLETED]" if show_completed else " completed "

    lines = [Line(text=truncate(f"filter {next_label} | {completed_label}  (n/x)", width), color="cyan", bold=True)]
    entries = [
        entry for entry in list_overview_intent_entries(snapshot, flow)
        if (entry["status"] == "completed") == show_completed
    ]
    if not entries:
        message = "No completed intents yet" if show_completed else "No upcoming intents"
        lines.append(Line(text=truncate(message, width), color="dim"))
        return lines

    lines.extend(Line(text=truncate(entry["line"], width)) for entry in entries)
    return lines


def get_panel_titles(flow: Optional[str], snapshot: Any = None) -> Dict[str, str]:
    flow = effective_flow(snapshot, flow)
    if flow == "aidlc":
        return {
            "current": "Current Bolt",
            "files": "Bolt Files",
            "pending": "Queued Bolts",
            "completed": "Recent Completed Bolts",
            "git": "Git Changes",
        }
    if flow == "simple":
        return {
            "current": "Current Spec",
            "files": "Spec Files",
            "pending": "Pending Specs",
            "completed": "Recent Completed Specs",
            "git": "Git Changes",
        }
    return {
        "current": "Current Run",
        "files": "Run Files",
        "pending": "Pending Queue",
        "completed": "Recent Completed Runs",
        "git": "Git Changes",
    }
