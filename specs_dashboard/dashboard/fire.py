"""FIRE flow parser.

A FIRE workspace keeps an authoritative ``.specs-fire/state.yaml`` next to
per-entity Markdown files::

    .specs-fire/
        state.yaml
        intents/<intent>/brief.md
        intents/<intent>/work-items/<item>.md
        runs/run-NNN/run.md, plan.md, walkthrough.md, test-report.md
        standards/<type>.md

Each entity is reconciled from three sources. Ids are the union of what the
filesystem, the state file and the run logs declare; fields prefer
state.yaml, then run-log front-matter, then filesystem defaults.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..exceptions import StateParseError
from ..utils import (
    directory_exists,
    file_exists,
    list_markdown_files,
    list_subdirectories,
    normalize_timestamp,
    now_iso,
    read_text_safe,
    timestamp_value,
)
from .frontmatter import first_string, read_frontmatter, string_or_none
from .models import (
    DashboardError,
    FireIntent,
    FireRun,
    FireSnapshot,
    FireStats,
    ParseResult,
    PendingItem,
    ProjectInfo,
    RunWorkItem,
    Standard,
    WorkItem,
    WorkspaceSettings,
    derive_aggregate_status,
)

logger = logging.getLogger(__name__)

FIRE_DIR = ".specs-fire"

STANDARD_TYPES = (
    "constitution",
    "tech-stack",
    "coding-standards",
    "testing-standards",
    "system-architecture",
)

STATUS_MAP = {
    "pending": "pending",
    "todo": "pending",
    "in_progress": "in_progress",
    "inprogress": "in_progress",
    "active": "in_progress",
    "completed": "completed",
    "complete": "completed",
    "done": "completed",
    "blocked": "blocked",
}

MODES = ("autopilot", "confirm", "validate")
SCOPES = ("single", "batch", "wide")
COMPLEXITIES = ("low", "medium", "high")

CURRENT_ITEM_KEYS = ("current_item", "currentItem", "work_item", "workItem")
PHASE_KEYS = ("current_phase", "currentPhase")
CHECKPOINT_STATE_KEYS = ("checkpoint_state", "checkpointState", "approval_state", "approvalState")
CURRENT_CHECKPOINT_KEYS = ("current_checkpoint", "currentCheckpoint", "checkpoint")

UNINITIALIZED_WARNING = "FIRE folder exists but state.yaml has not been created yet."


def _enum_value(value: Any, allowed) -> Optional[str]:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized if normalized in allowed else None


def normalize_status(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    token = "_".join(value.strip().lower().replace("-", " ").split())
    return STATUS_MAP.get(token)


def normalize_mode(value: Any) -> Optional[str]:
    return _enum_value(value, MODES)


def normalize_scope(value: Any) -> Optional[str]:
    return _enum_value(value, SCOPES)


def normalize_complexity(value: Any) -> Optional[str]:
    return _enum_value(value, COMPLEXITIES)


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def parse_dependencies(raw: Any) -> List[str]:
    """Accept a list of ids or a single id string."""
    if isinstance(raw, list):
        return [item for item in raw if isinstance(item, str) and item.strip()]
    if isinstance(raw, str) and raw.strip():
        return [raw.strip()]
    return []


def normalize_run_work_item(raw: Any, fallback_intent_id: str = "") -> RunWorkItem:
    """Normalize a run work-item entry given as an id string or a mapping."""
    if isinstance(raw, str):
        return RunWorkItem(id=raw, intent_id=fallback_intent_id)
    if not isinstance(raw, dict):
        return RunWorkItem(id="", intent_id=fallback_intent_id)

    intent_id = first_string(raw, ("intent", "intentId")) or fallback_intent_id
    return RunWorkItem(
        id=raw.get("id") if isinstance(raw.get("id"), str) else "",
        intent_id=intent_id,
        mode=normalize_mode(raw.get("mode")) or "confirm",
        status=normalize_status(raw.get("status")) or "pending",
        current_phase=first_string(raw, PHASE_KEYS),
        checkpoint_state=first_string(raw, CHECKPOINT_STATE_KEYS),
        current_checkpoint=first_string(raw, CURRENT_CHECKPOINT_KEYS),
    )


def _run_work_items(raw_items: List[Any], fallback_intent_id: str = "") -> List[RunWorkItem]:
    items = [normalize_run_work_item(item, fallback_intent_id) for item in raw_items]
    return [item for item in items if item.id]


def normalize_state(raw_state: Any) -> Dict[str, Any]:
    """Normalize a decoded state.yaml into predictable keys and defaults.

    Args:
        raw_state: The decoded YAML document.

    Returns:
        Dict with ``project`` and ``workspace`` (dicts or None), ``intents``
        and ``runs`` (``{"active": [...], "completed": [...]}``).
    """
    raw = raw_state if isinstance(raw_state, dict) else {}

    project = None
    raw_project = raw.get("project")
    if isinstance(raw_project, dict):
        project = {
            "name": string_or_none(raw_project.get("name")) or "Unknown",
            "description": string_or_none(raw_project.get("description")) or "",
            "created": normalize_timestamp(raw_project.get("created")),
            "fire_version": first_string(raw_project, ("fire_version", "fireVersion")) or "0.0.0",
        }

    workspace = None
    raw_workspace = raw.get("workspace")
    if isinstance(raw_workspace, dict):
        workspace = {
            "type": string_or_none(raw_workspace.get("type")) or "greenfield",
            "structure": string_or_none(raw_workspace.get("structure")) or "monolith",
            "autonomy_bias": first_string(raw_workspace, ("autonomy_bias", "autonomyBias")) or "balanced",
            "run_scope_preference": (
                normalize_scope(raw_workspace.get("run_scope_preference"))
                or normalize_scope(raw_workspace.get("runScopePreference"))
                or "single"
            ),
            "scanned_at": (
                normalize_timestamp(raw_workspace.get("scanned_at"))
                or normalize_timestamp(raw_workspace.get("scannedAt"))
            ),
            "parts": _as_list(raw_workspace.get("parts")),
        }

    intents = []
    for intent in _as_list(raw.get("intents")):
        if not isinstance(intent, dict):
            continue
        work_items = []
        for item in _as_list(intent.get("work_items")) + _as_list(intent.get("workItems")):
            if not isinstance(item, dict):
                continue
            work_items.append({
                "id": item.get("id") if isinstance(item.get("id"), str) else "",
                "status": normalize_status(item.get("status")) or "pending",
                "mode": normalize_mode(item.get("mode")),
            })
        intents.append({
            "id": intent.get("id") if isinstance(intent.get("id"), str) else "",
            "title": string_or_none(intent.get("title")) or "",
            "status": normalize_status(intent.get("status")),
            "work_items": work_items,
        })

    raw_runs = raw.get("runs") if isinstance(raw.get("runs"), dict) else {}

    active = []
    for run in _as_list(raw_runs.get("active")):
        if not isinstance(run, dict):
            continue
        active.append({
            "id": run.get("id") if isinstance(run.get("id"), str) else "",
            "scope": normalize_scope(run.get("scope")) or "single",
            "work_items": _run_work_items(_as_list(run.get("work_items")) + _as_list(run.get("workItems"))),
            "current_item": first_string(run, ("current_item", "currentItem")) or "",
            "checkpoint_state": first_string(run, CHECKPOINT_STATE_KEYS),
            "current_checkpoint": first_string(run, CURRENT_CHECKPOINT_KEYS),
            "started": normalize_timestamp(run.get("started")) or "",
        })

    completed = []
    for run in _as_list(raw_runs.get("completed")):
        if not isinstance(run, dict):
            continue
        fallback_intent = string_or_none(run.get("intent")) or ""
        completed.append({
            "id": run.get("id") if isinstance(run.get("id"), str) else "",
            "work_items": _run_work_items(
                _as_list(run.get("work_items")) + _as_list(run.get("workItems")),
                fallback_intent,
            ),
            "completed": normalize_timestamp(run.get("completed")) or "",
        })

    return {
        "project": project,
        "workspace": workspace,
        "intents": intents,
        "runs": {"active": active, "completed": completed},
    }


def derive_intent_status(state_status: Any, work_items: List[WorkItem]) -> str:
    """Use the state-declared status when valid, else derive from work items."""
    declared = normalize_status(state_status)
    if declared:
        return declared
    return derive_aggregate_status([item.status for item in work_items])


def parse_run_log(run_log_path: Path) -> Dict[str, Any]:
    """Read the front-matter of a run's ``run.md`` file.

    When the log carries no ``work_items`` list but names a current item, a
    single work item is synthesized from the top-level mode, status, phase
    and checkpoint keys.
    """
    content = read_text_safe(run_log_path)
    if not content:
        return {
            "scope": None,
            "work_items": [],
            "current_item": None,
            "started_at": None,
            "completed_at": None,
            "checkpoint_state": None,
            "current_checkpoint": None,
        }

    frontmatter = read_frontmatter(run_log_path)
    current_item = first_string(frontmatter, CURRENT_ITEM_KEYS)
    checkpoint_state = first_string(frontmatter, CHECKPOINT_STATE_KEYS)
    current_checkpoint = first_string(frontmatter, CURRENT_CHECKPOINT_KEYS)

    raw_items = _as_list(frontmatter.get("work_items")) or _as_list(frontmatter.get("workItems"))
    if not raw_items and current_item:
        raw_items = [{
            "id": current_item,
            "mode": first_string(frontmatter, ("mode",)),
            "status": first_string(frontmatter, ("status",)),
            "current_phase": first_string(frontmatter, PHASE_KEYS),
            "checkpoint_state": checkpoint_state,
            "current_checkpoint": current_checkpoint,
        }]

    return {
        "scope": normalize_scope(frontmatter.get("scope")),
        "work_items": _run_work_items(raw_items),
        "current_item": current_item,
        "started_at": normalize_timestamp(frontmatter.get("started")),
        "completed_at": normalize_timestamp(frontmatter.get("completed")),
        "checkpoint_state": checkpoint_state,
        "current_checkpoint": current_checkpoint,
    }


def merge_run_work_items(primary: List[RunWorkItem], fallback: List[RunWorkItem]) -> List[RunWorkItem]:
    """Overlay primary run work items on fallback ones by id.

    Primary fields win, except that a missing checkpoint state, checkpoint
    or phase is filled from the fallback item. Fallback-only items are
    appended after the primary ones.
    """
    if not primary:
        return list(fallback)
    if not fallback:
        return list(primary)

    fallback_by_id = {item.id: item for item in fallback}
    merged = []
    for item in primary:
        other = fallback_by_id.get(item.id)
        if other is None:
            merged.append(item)
            continue
        merged.append(item.model_copy(update={
            "intent_id": item.intent_id or other.intent_id,
            "checkpoint_state": item.checkpoint_state or other.checkpoint_state,
            "current_checkpoint": item.current_checkpoint or other.current_checkpoint,
            "current_phase": item.current_phase or other.current_phase,
        }))

    known = {item.id for item in merged}
    merged.extend(item for item in fallback if item.id not in known)
    return merged


def scan_work_items(
    intent_path: Path,
    intent_id: str,
    state_items: List[Dict[str, Any]],
    warnings: List[str],
) -> List[WorkItem]:
    work_items_path = intent_path / "work-items"
    file_ids = [name[:-3] for name in list_markdown_files(work_items_path)]
    state_map = {item["id"]: item for item in state_items if item.get("id")}
    ids = sorted(set(file_ids) | set(state_map))

    work_items = []
    for item_id in ids:
        state_item = state_map.get(item_id)
        file_path = work_items_path / f"{item_id}.md"

        frontmatter: Dict[str, Any] = {}
        if file_exists(file_path):
            frontmatter = read_frontmatter(file_path)
        elif state_item is not None:
            warnings.append(
                f"Work item {intent_id}/{item_id} exists in state.yaml but markdown file is missing."
            )

        state_item = state_item or {}
        raw_dependencies = frontmatter.get("depends_on")
        if raw_dependencies is None:
            raw_dependencies = frontmatter.get("dependencies")

        work_items.append(WorkItem(
            id=item_id,
            intent_id=intent_id,
            title=string_or_none(frontmatter.get("title")) or item_id,
            status=normalize_status(state_item.get("status") or frontmatter.get("status")) or "pending",
            mode=normalize_mode(state_item.get("mode") or frontmatter.get("mode")) or "confirm",
            complexity=normalize_complexity(frontmatter.get("complexity")) or "medium",
            file_path=str(file_path),
            description=string_or_none(frontmatter.get("description")) or "",
            dependencies=parse_dependencies(raw_dependencies),
            created_at=normalize_timestamp(frontmatter.get("created")),
            completed_at=normalize_timestamp(frontmatter.get("completed_at")),
        ))
    return work_items


def scan_intents(root_path: Path, state: Dict[str, Any], warnings: List[str]) -> List[FireIntent]:
    intents_path = root_path / "intents"
    state_map = {intent["id"]: intent for intent in state["intents"] if intent["id"]}
    ids = sorted(set(list_subdirectories(intents_path)) | set(state_map))

    intents = []
    for intent_id in ids:
        state_intent = state_map.get(intent_id)
        intent_path = intents_path / intent_id
        brief_path = intent_path / "brief.md"

        frontmatter: Dict[str, Any] = {}
        if file_exists(brief_path):
            frontmatter = read_frontmatter(brief_path)
        elif state_intent is not None:
            warnings.append(f"Intent {intent_id} exists in state.yaml but brief.md is missing.")

        state_intent = state_intent or {}
        work_items = scan_work_items(intent_path, intent_id, state_intent.get("work_items", []), warnings)

        intents.append(FireIntent(
            id=intent_id,
            title=string_or_none(frontmatter.get("title")) or state_intent.get("title") or intent_id,
            status=derive_intent_status(state_intent.get("status"), work_items),
            file_path=str(brief_path),
            description=string_or_none(frontmatter.get("description")) or "",
            work_items=work_items,
        ))
    return intents


def scan_runs(root_path: Path, state: Dict[str, Any]) -> List[FireRun]:
    runs_path = root_path / "runs"
    run_dirs = [name for name in list_subdirectories(runs_path) if name.startswith("run-")]
    active_map = {run["id"]: run for run in state["runs"]["active"] if run["id"]}
    completed_map = {run["id"]: run for run in state["runs"]["completed"] if run["id"]}
    ids = sorted(set(run_dirs) | set(active_map) | set(completed_map))

    runs = []
    for run_id in ids:
        folder_path = runs_path / run_id
        run_log = parse_run_log(folder_path / "run.md")
        active = active_map.get(run_id) or {}
        completed = completed_map.get(run_id) or {}

        state_items = active.get("work_items") or completed.get("work_items") or []
        work_items = merge_run_work_items(state_items or run_log["work_items"], run_log["work_items"])

        completed_at = completed.get("completed") or run_log["completed_at"] or None
        if completed_at == "null":
            completed_at = None

        runs.append(FireRun(
            id=run_id,
            scope=active.get("scope") or run_log["scope"] or "single",
            work_items=work_items,
            current_item=active.get("current_item") or run_log["current_item"] or None,
            checkpoint_state=active.get("checkpoint_state") or run_log["checkpoint_state"],
            current_checkpoint=active.get("current_checkpoint") or run_log["current_checkpoint"],
            folder_path=str(folder_path),
            started_at=active.get("started") or run_log["started_at"] or "",
            completed_at=completed_at,
            has_plan=file_exists(folder_path / "plan.md"),
            has_walkthrough=file_exists(folder_path / "walkthrough.md"),
            has_test_report=file_exists(folder_path / "test-report.md"),
        ))
    return runs


def scan_standards(root_path: Path) -> List[Standard]:
    standards_path = root_path / "standards"
    return [
        Standard(name=standard_type, type=standard_type, file_path=str(standards_path / f"{standard_type}.md"))
        for standard_type in STANDARD_TYPES
        if file_exists(standards_path / f"{standard_type}.md")
    ]


def build_active_runs(runs: List[FireRun], state: Dict[str, Any]) -> List[FireRun]:
    """Return active runs in the order state.yaml lists them."""
    by_id = {run.id: run for run in runs}
    return [by_id[active["id"]] for active in state["runs"]["active"] if active["id"] in by_id]


def build_completed_runs(runs: List[FireRun]) -> List[FireRun]:
    """Return runs with a completion time, newest first, then by id descending."""
    completed = [run for run in runs if run.completed_at is not None]
    return sorted(
        completed,
        key=lambda run: (timestamp_value(run.completed_at), run.id),
        reverse=True,
    )


def build_pending_items(intents: List[FireIntent]) -> List[PendingItem]:
    """Collect pending work items, fewest dependencies first."""
    pending = [
        PendingItem(
            id=item.id,
            intent_id=intent.id,
            intent_title=intent.title,
            title=item.title,
            mode=item.mode,
            complexity=item.complexity,
            dependencies=item.dependencies,
            file_path=item.file_path,
        )
        for intent in intents
        for item in intent.work_items
        if item.status == "pending"
    ]
    return sorted(pending, key=lambda item: (len(item.dependencies), item.id))


def _count(values: List[str], status: str) -> int:
    return sum(1 for value in values if value == status)


def calculate_stats(intents: List[FireIntent], runs: List[FireRun], active_runs: List[FireRun]) -> FireStats:
    intent_statuses = [intent.status for intent in intents]
    item_statuses = [item.status for intent in intents for item in intent.work_items]
    return FireStats(
        total_intents=len(intent_statuses),
        completed_intents=_count(intent_statuses, "completed"),
        in_progress_intents=_count(intent_statuses, "in_progress"),
        pending_intents=_count(intent_statuses, "pending"),
        blocked_intents=_count(intent_statuses, "blocked"),
        unknown_intents=_count(intent_statuses, "unknown"),
        total_work_items=len(item_statuses),
        completed_work_items=_count(item_statuses, "completed"),
        in_progress_work_items=_count(item_statuses, "in_progress"),
        pending_work_items=_count(item_statuses, "pending"),
        blocked_work_items=_count(item_statuses, "blocked"),
        unknown_work_items=_count(item_statuses, "unknown"),
        total_runs=len(runs),
        completed_runs=sum(1 for run in runs if run.completed_at is not None),
        active_runs_count=len(active_runs),
    )


def load_state_file(state_path: Path) -> Dict[str, Any]:
    """Read and decode state.yaml.

    Raises:
        StateParseError: If the file is unreadable, invalid YAML, or does not
            decode to a mapping.
    """
    content = read_text_safe(state_path)
    if content is None:
        raise StateParseError("Unable to read state.yaml", path=str(state_path))
    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as error:
        raise StateParseError(str(error), path=str(state_path)) from error
    if not isinstance(parsed, dict):
        raise StateParseError("state.yaml is empty or invalid.", path=str(state_path))
    return parsed


def parse_fire_dashboard(workspace_path) -> ParseResult:
    """Parse a FIRE workspace into a snapshot.

    Args:
        workspace_path: Directory containing ``.specs-fire``.

    Returns:
        ParseResult with a FireSnapshot, or a FIRE_NOT_FOUND or
        STATE_PARSE_ERROR error.
    """
    workspace = Path(workspace_path)
    root_path = workspace / FIRE_DIR

    if not directory_exists(root_path):
        return ParseResult.failure(DashboardError(
            code="FIRE_NOT_FOUND",
            message=f"No FIRE workspace found at {root_path}",
            hint="Install FIRE flow or run this command from a FIRE project root.",
        ))

    state_path = root_path / "state.yaml"
    if not file_exists(state_path):
        return ParseResult.success(FireSnapshot(
            initialized=False,
            workspace_path=str(workspace),
            root_path=str(root_path),
            version="0.0.0",
            project=ProjectInfo(name=workspace.resolve().name or "Unknown"),
            standards=scan_standards(root_path),
            warnings=[UNINITIALIZED_WARNING],
            generated_at=now_iso(),
        ))

    try:
        raw_state = load_state_file(state_path)
    except StateParseError as error:
        logger.warning(f"Failed to parse {state_path}: {error}")
        return ParseResult.failure(DashboardError(
            code=error.code,
            message=f"Failed to parse {state_path}",
            details=str(error),
            path=str(state_path),
        ))

    warnings: List[str] = []
    state = normalize_state(raw_state)
    intents = scan_intents(root_path, state, warnings)
    runs = scan_runs(root_path, state)
    active_runs = build_active_runs(runs, state)

    project_state = state["project"]
    project = ProjectInfo(
        name=project_state["name"],
        description=project_state["description"],
        created=project_state["created"],
        version=project_state["fire_version"],
    ) if project_state else ProjectInfo(name=workspace.resolve().name or "Unknown")

    return ParseResult.success(FireSnapshot(
        initialized=True,
        workspace_path=str(workspace),
        root_path=str(root_path),
        version=project_state["fire_version"] if project_state else "0.0.0",
        project=project,
        workspace=WorkspaceSettings(**state["workspace"]) if state["workspace"] else WorkspaceSettings(),
        intents=intents,
        runs=runs,
        active_runs=active_runs,
        completed_runs=build_completed_runs(runs),
        pending_items=build_pending_items(intents),
        standards=scan_standards(root_path),
        stats=calculate_stats(intents, runs, active_runs),
        warnings=warnings,
        generated_at=now_iso(),
    ))
