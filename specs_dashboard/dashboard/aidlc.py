"""AIDLC flow parser.

Layout under ``memory-bank/``::

    project.yaml
    intents/NNN-name/requirements.md
    intents/NNN-name/units/<unit>/unit-brief.md
    intents/NNN-name/units/<unit>/stories/NNN-title.md
    bolts/<bolt>/bolt.md (+ stage artifacts)
    standards/*.md

Container status comes from the container's own front-matter when it holds
a recognized value; otherwise it is derived from the children.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..utils import (
    directory_exists,
    list_markdown_files,
    list_subdirectories,
    now_iso,
    read_text_safe,
    timestamp_value,
    to_iso_timestamp,
)
from .approval import compute_bolt_dependency_state
from .frontmatter import first_string, load_yaml_file, parse_frontmatter, read_frontmatter
from .models import (
    AidlcIntent,
    AidlcSnapshot,
    AidlcStats,
    Bolt,
    BoltStage,
    DashboardError,
    ParseResult,
    ProjectInfo,
    Standard,
    Story,
    Unit,
    derive_aggregate_status,
    progress_percent,
)

logger = logging.getLogger(__name__)

AIDLC_DIR = "memory-bank"
AIDLC_VERSION = "1.0.0"
DEFAULT_BOLT_TYPE = "simple-construction-bolt"

DEFAULT_BOLT_STAGE_MAP = {
    "simple-construction-bolt": ("plan", "implement", "test"),
    "ddd-construction-bolt": ("model", "design", "adr", "implement", "test"),
    "spike-bolt": ("explore", "document"),
}

COMPLETED_TOKENS = ("complete", "completed", "done", "finished", "closed", "resolved")
BLOCKED_TOKENS = ("blocked",)
IN_PROGRESS_TOKENS = ("in-progress", "inprogress", "active", "started", "wip", "working", "ready", "construction")
PENDING_TOKENS = ("draft", "pending", "planned", "todo", "new", "queued")

INTENT_FOLDER_PATTERN = re.compile(r"^(\d{3})-(.+)$")
STORY_FILE_PATTERN = re.compile(r"^(\d{3})-(.+)\.md$")
_STATUS_SEPARATORS = re.compile(r"[\s_]+")


def normalize_status(raw: Any) -> str:
    """Map a free-form AIDLC status onto the fixed set; unknown otherwise."""
    if not isinstance(raw, str):
        return "unknown"
    token = _STATUS_SEPARATORS.sub("-", raw.strip().lower())
    if token in COMPLETED_TOKENS:
        return "completed"
    if token in BLOCKED_TOKENS:
        return "blocked"
    if token in IN_PROGRESS_TOKENS:
        return "in_progress"
    if token in PENDING_TOKENS:
        return "pending"
    return "unknown"


def count_by_status(statuses: List[str]) -> Dict[str, int]:
    counts = {"completed": 0, "in_progress": 0, "pending": 0, "blocked": 0, "unknown": 0}
    for status in statuses:
        counts[status if status in counts else "unknown"] += 1
    return counts


def parse_story(story_path: Path, unit_id: str, intent_id: str) -> Story:
    match = STORY_FILE_PATTERN.match(story_path.name)
    if match:
        story_id, default_title = match.group(1), match.group(2)
    else:
        story_id = default_title = story_path.stem

    frontmatter = read_frontmatter(story_path)
    title = frontmatter.get("title")
    priority = frontmatter.get("priority")
    return Story(
        id=story_id,
        title=title if isinstance(title, str) else default_title,
        status=normalize_status(frontmatter.get("status")),
        priority=str(priority) if priority is not None else None,
        file_path=str(story_path),
        intent_id=intent_id,
        unit_id=unit_id,
    )


def parse_unit(unit_path: Path, intent_id: str) -> Unit:
    unit_id = unit_path.name
    brief_path = unit_path / "unit-brief.md"
    stories_path = unit_path / "stories"

    stories = sorted(
        (parse_story(stories_path / name, unit_id, intent_id) for name in list_markdown_files(stories_path)),
        key=lambda story: story.id,
    )
    statuses = [story.status for story in stories]
    declared = normalize_status(read_frontmatter(brief_path).get("status"))
    counts = count_by_status(statuses)

    return Unit(
        id=unit_id,
        name=unit_id,
        status=declared if declared != "unknown" else derive_aggregate_status(statuses),
        path=str(unit_path),
        file_path=str(brief_path),
        intent_id=intent_id,
        stories=stories,
        story_count=len(stories),
        completed_stories=counts["completed"],
        in_progress_stories=counts["in_progress"],
        pending_stories=counts["pending"],
        blocked_stories=counts["blocked"],
        unknown_stories=counts["unknown"],
    )


def parse_intent(intent_path: Path, warnings: List[str]) -> Optional[AidlcIntent]:
    folder = intent_path.name
    match = INTENT_FOLDER_PATTERN.match(folder)
    if not match:
        warnings.append(f"Intent folder {folder} does not match expected format NNN-name.")
        return None

    number, name = match.group(1), match.group(2)
    requirements_path = intent_path / "requirements.md"
    units_path = intent_path / "units"

    units = sorted(
        (parse_unit(units_path / unit, folder) for unit in list_subdirectories(units_path)),
        key=lambda unit: unit.id,
    )
    declared = normalize_status(read_frontmatter(requirements_path).get("status"))
    story_statuses = [story.status for unit in units for story in unit.stories]

    return AidlcIntent(
        id=folder,
        number=number,
        name=name,
        title=f"{number}-{name}",
        status=declared if declared != "unknown" else derive_aggregate_status([unit.status for unit in units]),
        path=str(intent_path),
        file_path=str(requirements_path),
        units=units,
        unit_count=len(units),
        completed_units=sum(1 for unit in units if unit.status == "completed"),
        story_count=len(story_statuses),
        completed_stories=count_by_status(story_statuses)["completed"],
    )


def extract_stage_names(raw: Any) -> List[str]:
    """Read ``stages_completed`` entries given as names or ``{name: ...}`` maps."""
    if not isinstance(raw, list):
        return []
    names = []
    for stage in raw:
        if isinstance(stage, str):
            names.append(stage.lower())
        elif isinstance(stage, dict) and isinstance(stage.get("name"), str):
            names.append(stage["name"].lower())
    return [name for name in names if name]


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def parse_bolt(bolt_path: Path, warnings: List[str]) -> Optional[Bolt]:
    """Parse ``bolt.md`` and the stage artifacts listed beside it.

    When the front-matter status is missing or unrecognized, the status is
    derived: all stages done is completed, a current stage is in progress,
    otherwise pending.
    """
    bolt_id = bolt_path.name
    bolt_file = bolt_path / "bolt.md"
    content = read_text_safe(bolt_file)
    if not content:
        warnings.append(f"Bolt {bolt_id} is missing bolt.md.")
        return None

    frontmatter = parse_frontmatter(content)
    bolt_type = frontmatter.get("type") if isinstance(frontmatter.get("type"), str) else DEFAULT_BOLT_TYPE
    current_stage = first_string(frontmatter, ("current_stage", "currentStage"))
    current_token = current_stage.lower() if current_stage else None
    completed_names = extract_stage_names(frontmatter.get("stages_completed"))

    stage_names = DEFAULT_BOLT_STAGE_MAP.get(bolt_type, DEFAULT_BOLT_STAGE_MAP[DEFAULT_BOLT_TYPE])
    stages = []
    for order, name in enumerate(stage_names, start=1):
        if name.lower() in completed_names:
            stage_status = "completed"
        elif current_token == name.lower():
            stage_status = "in_progress"
        else:
            stage_status = "pending"
        stages.append(BoltStage(name=name, order=order, status=stage_status))

    status = normalize_status(frontmatter.get("status"))
    if status == "unknown":
        if stages and all(stage.status == "completed" for stage in stages):
            status = "completed"
        elif current_token:
            status = "in_progress"
        else:
            status = "pending"

    return Bolt(
        id=bolt_id,
        intent=frontmatter.get("intent") if isinstance(frontmatter.get("intent"), str) else None,
        unit=frontmatter.get("unit") if isinstance(frontmatter.get("unit"), str) else None,
        type=bolt_type,
        status=status,
        current_stage=current_stage,
        stages=stages,
        stages_completed=completed_names,
        stories=_string_list(frontmatter.get("stories")),
        path=str(bolt_path),
        file_path=str(bolt_file),
        files=list_markdown_files(bolt_path),
        requires_bolts=_string_list(frontmatter.get("requires_bolts")),
        enables_bolts=_string_list(frontmatter.get("enables_bolts")),
        created_at=to_iso_timestamp(frontmatter.get("created")),
        started_at=to_iso_timestamp(frontmatter.get("started")),
        completed_at=to_iso_timestamp(frontmatter.get("completed")),
    )


def order_active_bolts(bolts: List[Bolt]) -> List[Bolt]:
    active = [bolt for bolt in bolts if bolt.status == "in_progress"]
    return sorted(active, key=lambda bolt: (-timestamp_value(bolt.started_at), bolt.id))


def order_pending_bolts(bolts: List[Bolt]) -> List[Bolt]:
    """Unblocked bolts first, then those unblocking the most work."""
    pending = [bolt for bolt in bolts if bolt.status in ("pending", "blocked") or bolt.is_blocked]
    return sorted(pending, key=lambda bolt: (bolt.is_blocked, -bolt.unblocks_count, bolt.id))


def order_completed_bolts(bolts: List[Bolt]) -> List[Bolt]:
    completed = [bolt for bolt in bolts if bolt.status == "completed"]
    return sorted(completed, key=lambda bolt: (timestamp_value(bolt.completed_at), bolt.id), reverse=True)


def build_project_metadata(workspace_path: Path, root_path: Path) -> ProjectInfo:
    config = load_yaml_file(root_path / "project.yaml") or {}
    name = config.get("name")
    description = config.get("description")
    return ProjectInfo(
        name=name if isinstance(name, str) and name.strip() else workspace_path.resolve().name,
        description=description if isinstance(description, str) else "",
        project_type=first_string(config, ("project_type", "projectType")),
    )


def build_stats(intents: List[AidlcIntent], bolts: List[Bolt]) -> AidlcStats:
    units = [unit for intent in intents for unit in intent.units]
    stories = [story for unit in units for story in unit.stories]
    intent_counts = count_by_status([intent.status for intent in intents])
    unit_counts = count_by_status([unit.status for unit in units])
    story_counts = count_by_status([story.status for story in stories])

    return AidlcStats(
        total_intents=len(intents),
        completed_intents=intent_counts["completed"],
        in_progress_intents=intent_counts["in_progress"],
        pending_intents=intent_counts["pending"],
        blocked_intents=intent_counts["blocked"],
        unknown_intents=intent_counts["unknown"],
        total_units=len(units),
        completed_units=unit_counts["completed"],
        in_progress_units=unit_counts["in_progress"],
        pending_units=unit_counts["pending"],
        blocked_units=unit_counts["blocked"],
        unknown_units=unit_counts["unknown"],
        total_stories=len(stories),
        completed_stories=story_counts["completed"],
        in_progress_stories=story_counts["in_progress"],
        pending_stories=story_counts["pending"],
        blocked_stories=story_counts["blocked"],
        unknown_stories=story_counts["unknown"],
        total_bolts=len(bolts),
        active_bolts_count=sum(1 for bolt in bolts if bolt.status == "in_progress"),
        queued_bolts=sum(1 for bolt in bolts if bolt.status == "pending" and not bolt.is_blocked),
        blocked_bolts=sum(1 for bolt in bolts if bolt.status == "blocked" or bolt.is_blocked),
        completed_bolts=sum(1 for bolt in bolts if bolt.status == "completed"),
        progress_percent=progress_percent(story_counts["completed"], len(stories)),
    )


def parse_aidlc_dashboard(workspace_path) -> ParseResult:
    """Parse an AIDLC workspace into a snapshot.

    Args:
        workspace_path: Directory containing ``memory-bank``.

    Returns:
        ParseResult with an AidlcSnapshot, or an AIDLC_NOT_FOUND error.
    """
    workspace = Path(workspace_path)
    root_path = workspace / AIDLC_DIR

    if not directory_exists(root_path):
        return ParseResult.failure(DashboardError(
            code="AIDLC_NOT_FOUND",
            message=f"No AI-DLC workspace found at {root_path}",
            hint="Run this command from a workspace containing memory-bank/ or choose --flow fire/simple.",
        ))

    warnings: List[str] = []
    intents_path = root_path / "intents"
    bolts_path = root_path / "bolts"
    standards_path = root_path / "standards"

    intent_folders = list_subdirectories(intents_path)
    intents = [
        intent for intent in (parse_intent(intents_path / folder, warnings) for folder in intent_folders)
        if intent is not None
    ]
    if not intent_folders:
        warnings.append("No intents found under memory-bank/intents.")

    parsed = [parse_bolt(bolts_path / folder, warnings) for folder in list_subdirectories(bolts_path)]
    bolts = compute_bolt_dependency_state([bolt for bolt in parsed if bolt is not None], warnings)

    standards = [
        Standard(name=name[:-3], type=name[:-3], file_path=str(standards_path / name))
        for name in list_markdown_files(standards_path)
    ]

    return ParseResult.success(AidlcSnapshot(
        initialized=True,
        workspace_path=str(workspace),
        root_path=str(root_path),
        version=AIDLC_VERSION,
        project=build_project_metadata(workspace, root_path),
        intents=intents,
        bolts=bolts,
        active_bolts=order_active_bolts(bolts),
        pending_bolts=order_pending_bolts(bolts),
        completed_bolts=order_completed_bolts(bolts),
        standards=standards,
        stats=build_stats(intents, bolts),
        warnings=warnings,
        generated_at=now_iso(),
    ))
