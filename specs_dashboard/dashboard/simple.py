"""Simple flow parser.

Each directory under ``specs/`` is one spec holding up to three documents:
``requirements.md``, ``design.md`` and ``tasks.md``. A spec's state follows
the documents that exist and the checklist progress in ``tasks.md``.
"""

import json
import logging
import re
from pathlib import Path
from typing import List, Optional

from ..utils import directory_exists, file_exists, file_mtime, list_subdirectories, mtime_to_iso, now_iso, read_text_safe, timestamp_value
from .models import (
    ChecklistTask,
    DashboardError,
    ParseResult,
    ProjectInfo,
    SimpleSnapshot,
    SimpleStats,
    Spec,
    progress_percent,
)

logger = logging.getLogger(__name__)

SIMPLE_DIR = "specs"
SIMPLE_VERSION = "1.0.0"

CHECKLIST_PATTERN = re.compile(r"^\s*[-*]\s*\[( |x|X)\](\*)?\s+(.+)$")

STATE_PRIORITY = {
    "in_progress": 0,
    "ready": 1,
    "tasks_pending": 2,
    "design_pending": 3,
    "requirements_pending": 4,
    "completed": 5,
}


def parse_task_checklist(content: Optional[str]) -> List[ChecklistTask]:
    """Parse GitHub-style checkbox lines.

    ``- [x] text`` is done, ``- [ ]* text`` is optional. Lines that do not
    match are ignored.
    """
    tasks = []
    for index, line in enumerate((content or "").splitlines(), start=1):
        match = CHECKLIST_PATTERN.match(line)
        if not match:
            continue
        tasks.append(ChecklistTask(
            line=index,
            done=match.group(1).lower() == "x",
            optional=match.group(2) == "*",
            text=match.group(3).strip(),
        ))
    return tasks


def derive_spec_state(has_requirements: bool, has_design: bool, has_tasks: bool, total: int, completed: int) -> str:
    if not has_requirements:
        return "requirements_pending"
    if not has_design:
        return "design_pending"
    if not has_tasks or total == 0:
        return "tasks_pending"
    if completed >= total:
        return "completed"
    if completed > 0:
        return "in_progress"
    return "ready"


def phase_for_state(state: str) -> str:
    if state == "requirements_pending":
        return "requirements"
    if state == "design_pending":
        return "design"
    return "tasks"


def parse_spec(specs_path: Path, name: str, warnings: List[str]) -> Spec:
    spec_path = specs_path / name
    requirements_path = spec_path / "requirements.md"
    design_path = spec_path / "design.md"
    tasks_path = spec_path / "tasks.md"

    has_requirements = file_exists(requirements_path)
    has_design = file_exists(design_path)
    has_tasks = file_exists(tasks_path)

    if not has_requirements:
        warnings.append(f"Spec {name} is missing requirements.md.")

    tasks = parse_task_checklist(read_text_safe(tasks_path)) if has_tasks else []
    total = len(tasks)
    completed = sum(1 for task in tasks if task.done)
    state = derive_spec_state(has_requirements, has_design, has_tasks, total, completed)

    mtimes = [mtime for mtime in (file_mtime(path) for path in (requirements_path, design_path, tasks_path)) if mtime]

    return Spec(
        name=name,
        path=str(spec_path),
        state=state,
        phase=phase_for_state(state),
        has_requirements=has_requirements,
        has_design=has_design,
        has_tasks=has_tasks,
        requirements_path=str(requirements_path),
        design_path=str(design_path),
        tasks_path=str(tasks_path),
        tasks=tasks,
        tasks_total=total,
        tasks_completed=completed,
        tasks_pending=max(total - completed, 0),
        optional_tasks=sum(1 for task in tasks if task.optional),
        updated_at=mtime_to_iso(max(mtimes)) if mtimes else None,
    )


def build_project_metadata(workspace_path: Path) -> ProjectInfo:
    """Read the display name from ``package.json`` when there is one."""
    fallback = workspace_path.resolve().name
    content = read_text_safe(workspace_path / "package.json")
    if content is None:
        return ProjectInfo(name=fallback)
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as error:
        logger.debug(f"Ignoring invalid package.json: {error}")
        return ProjectInfo(name=fallback)
    if not isinstance(parsed, dict):
        return ProjectInfo(name=fallback)

    name = parsed.get("name")
    description = parsed.get("description")
    return ProjectInfo(
        name=name if isinstance(name, str) else fallback,
        description=description if isinstance(description, str) else "",
    )


def build_stats(specs: List[Spec]) -> SimpleStats:
    def count(state: str) -> int:
        return sum(1 for spec in specs if spec.state == state)

    total_tasks = sum(spec.tasks_total for spec in specs)
    completed_tasks = sum(spec.tasks_completed for spec in specs)
    return SimpleStats(
        total_specs=len(specs),
        completed_specs=count("completed"),
        in_progress_specs=count("in_progress"),
        ready_specs=count("ready"),
        pending_specs=len(specs) - count("completed"),
        design_pending_specs=count("design_pending"),
        tasks_pending_specs=count("tasks_pending"),
        requirements_pending_specs=count("requirements_pending"),
        total_tasks=total_tasks,
        completed_tasks=completed_tasks,
        pending_tasks=max(total_tasks - completed_tasks, 0),
        optional_tasks=sum(spec.optional_tasks for spec in specs),
        active_specs_count=count("in_progress") + count("ready"),
        progress_percent=progress_percent(completed_tasks, total_tasks),
    )


def parse_simple_dashboard(workspace_path) -> ParseResult:
    """Parse a Simple flow workspace into a snapshot.

    Args:
        workspace_path: Directory containing ``specs``.

    Returns:
        ParseResult with a SimpleSnapshot, or a SIMPLE_NOT_FOUND error.
    """
    workspace = Path(workspace_path)
    root_path = workspace / SIMPLE_DIR

    if not directory_exists(root_path):
        return ParseResult.failure(DashboardError(
            code="SIMPLE_NOT_FOUND",
            message=f"No Simple flow workspace found at {root_path}",
            hint="Run this command from a workspace containing specs/ or choose --flow fire/aidlc.",
        ))

    warnings: List[str] = []
    specs = [parse_spec(root_path, name, warnings) for name in list_subdirectories(root_path)]
    # Stable sorts applied from the least significant key.
    specs.sort(key=lambda spec: spec.name)
    specs.sort(key=lambda spec: timestamp_value(spec.updated_at), reverse=True)
    specs.sort(key=lambda spec: STATE_PRIORITY.get(spec.state, 6))

    if not specs:
        warnings.append("No specs found under specs/.")

    active = [spec for spec in specs if spec.state != "completed"]
    completed = sorted(
        (spec for spec in specs if spec.state == "completed"),
        key=lambda spec: (timestamp_value(spec.updated_at), spec.name),
        reverse=True,
    )

    return ParseResult.success(SimpleSnapshot(
        initialized=True,
        workspace_path=str(workspace),
        root_path=str(root_path),
        version=SIMPLE_VERSION,
        project=build_project_metadata(workspace),
        specs=specs,
        active_specs=active,
        completed_specs=completed,
        pending_specs=active,
        stats=build_stats(specs),
        warnings=warnings,
        generated_at=now_iso(),
    ))
