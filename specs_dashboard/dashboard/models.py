"""Snapshot data models shared by the parsers, builders and orchestrator.

All models are frozen pydantic models: a snapshot is built wholesale inside a
single parse call and never mutated afterwards. Derived values (such as bolt
blocking) are applied with ``model_copy(update=...)`` to produce new models.
"""

import hashlib
import json
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Status = Literal["pending", "in_progress", "completed", "blocked", "unknown"]
Flow = Literal["fire", "aidlc", "simple"]


class DashboardModel(BaseModel):
    """Base for every immutable snapshot model."""

    model_config = ConfigDict(frozen=True)


class ProjectInfo(DashboardModel):
    name: str = "Unknown"
    description: str = ""
    created: Optional[str] = None
    version: Optional[str] = None
    project_type: Optional[str] = None


class Standard(DashboardModel):
    name: str
    type: str
    file_path: str
    scope: str = "root"


class DashboardError(DashboardModel):
    """Uniform error value shown in the error banner."""

    code: str = "DASHBOARD_ERROR"
    message: str = "Unknown dashboard error."
    details: Optional[str] = None
    path: Optional[str] = None
    hint: Optional[str] = None


class ApprovalGate(DashboardModel):
    flow: str
    title: str = "Approval Needed"
    message: str
    checkpoint: Optional[str] = None
    source: Optional[str] = None


# Git


class GitChange(DashboardModel):
    """One file entry in a git status bucket."""

    key: str
    bucket: str
    code: str
    path: str
    relative_path: str
    label: str
    repo_root: str = ""


class GitCounts(DashboardModel):
    total: int = 0
    staged: int = 0
    unstaged: int = 0
    untracked: int = 0
    conflicted: int = 0


class GitChangeSet(DashboardModel):
    available: bool = False
    root_path: Optional[str] = None
    branch: str = "(not a git repo)"
    upstream: Optional[str] = None
    ahead: int = 0
    behind: int = 0
    detached: bool = False
    clean: bool = True
    counts: GitCounts = Field(default_factory=GitCounts)
    staged: List[GitChange] = Field(default_factory=list)
    unstaged: List[GitChange] = Field(default_factory=list)
    untracked: List[GitChange] = Field(default_factory=list)
    conflicted: List[GitChange] = Field(default_factory=list)
    error: Optional[str] = None


# FIRE


class WorkItem(DashboardModel):
    id: str
    intent_id: str
    title: str
    status: Status = "pending"
    mode: str = "confirm"
    complexity: str = "medium"
    file_path: str
    description: str = ""
    dependencies: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


class FireIntent(DashboardModel):
    id: str
    title: str
    status: Status = "pending"
    file_path: str
    description: str = ""
    work_items: List[WorkItem] = Field(default_factory=list)


class RunWorkItem(DashboardModel):
    id: str
    intent_id: str = ""
    mode: str = "confirm"
    status: Status = "pending"
    current_phase: Optional[str] = None
    checkpoint_state: Optional[str] = None
    current_checkpoint: Optional[str] = None


class FireRun(DashboardModel):
    id: str
    scope: str = "single"
    work_items: List[RunWorkItem] = Field(default_factory=list)
    current_item: Optional[str] = None
    checkpoint_state: Optional[str] = None
    current_checkpoint: Optional[str] = None
    folder_path: str
    started_at: str = ""
    completed_at: Optional[str] = None
    has_plan: bool = False
    has_walkthrough: bool = False
    has_test_report: bool = False


class PendingItem(DashboardModel):
    id: str
    intent_id: str
    intent_title: str
    title: str
    mode: str
    complexity: str
    dependencies: List[str] = Field(default_factory=list)
    file_path: str


class WorkspaceSettings(DashboardModel):
    type: str = "greenfield"
    structure: str = "monolith"
    autonomy_bias: str = "balanced"
    run_scope_preference: str = "single"
    scanned_at: Optional[str] = None
    parts: List[Any] = Field(default_factory=list)


class FireStats(DashboardModel):
    total_intents: int = 0
    completed_intents: int = 0
    in_progress_intents: int = 0
    pending_intents: int = 0
    blocked_intents: int = 0
    unknown_intents: int = 0
    total_work_items: int = 0
    completed_work_items: int = 0
    in_progress_work_items: int = 0
    pending_work_items: int = 0
    blocked_work_items: int = 0
    unknown_work_items: int = 0
    total_runs: int = 0
    completed_runs: int = 0
    active_runs_count: int = 0


# AIDLC


class Story(DashboardModel):
    id: str
    title: str
    status: Status = "pending"
    priority: Optional[str] = None
    file_path: str
    intent_id: str
    unit_id: str


class Unit(DashboardModel):
    id: str
    name: str
    status: Status = "pending"
    path: str
    file_path: Optional[str] = None
    intent_id: str
    stories: List[Story] = Field(default_factory=list)
    story_count: int = 0
    completed_stories: int = 0
    in_progress_stories: int = 0
    pending_stories: int = 0
    blocked_stories: int = 0
    unknown_stories: int = 0


class AidlcIntent(DashboardModel):
    id: str
    number: str
    name: str
    title: str
    status: Status = "pending"
    path: str
    file_path: Optional[str] = None
    units: List[Unit] = Field(default_factory=list)
    story_count: int = 0
    completed_stories: int = 0
    unit_count: int = 0
    completed_units: int = 0


class BoltStage(DashboardModel):
    name: str
    order: int
    status: Status = "pending"


class Bolt(DashboardModel):
    id: str
    intent: Optional[str] = None
    unit: Optional[str] = None
    type: str = "simple-construction-bolt"
    status: Status = "pending"
    current_stage: Optional[str] = None
    stages: List[BoltStage] = Field(default_factory=list)
    stages_completed: List[str] = Field(default_factory=list)
    stories: List[str] = Field(default_factory=list)
    path: str
    file_path: str
    files: List[str] = Field(default_factory=list)
    requires_bolts: List[str] = Field(default_factory=list)
    enables_bolts: List[str] = Field(default_factory=list)
    is_blocked: bool = False
    blocked_by: List[str] = Field(default_factory=list)
    unblocks_count: int = 0
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class AidlcStats(DashboardModel):
    total_intents: int = 0
    completed_intents: int = 0
    in_progress_intents: int = 0
    pending_intents: int = 0
    blocked_intents: int = 0
    unknown_intents: int = 0
    total_units: int = 0
    completed_units: int = 0
    in_progress_units: int = 0
    pending_units: int = 0
    blocked_units: int = 0
    unknown_units: int = 0
    total_stories: int = 0
    completed_stories: int = 0
    in_progress_stories: int = 0
    pending_stories: int = 0
    blocked_stories: int = 0
    unknown_stories: int = 0
    total_bolts: int = 0
    active_bolts_count: int = 0
    queued_bolts: int = 0
    blocked_bolts: int = 0
    completed_bolts: int = 0
    progress_percent: int = 0


# Simple

SpecState = Literal[
    "requirements_pending",
    "design_pending",
    "tasks_pending",
    "ready",
    "in_progress",
    "completed",
]


class ChecklistTask(DashboardModel):
    line: int
    done: bool
    optional: bool
    text: str


class Spec(DashboardModel):
    name: str
    path: str
    state: SpecState
    phase: str
    has_requirements: bool = False
    has_design: bool = False
    has_tasks: bool = False
    requirements_path: str
    design_path: str
    tasks_path: str
    tasks: List[ChecklistTask] = Field(default_factory=list)
    tasks_total: int = 0
    tasks_completed: int = 0
    tasks_pending: int = 0
    optional_tasks: int = 0
    updated_at: Optional[str] = None

    @property
    def status(self) -> str:
        if self.state in ("completed", "in_progress"):
            return self.state
        return "pending"


class SimpleStats(DashboardModel):
    total_specs: int = 0
    completed_specs: int = 0
    in_progress_specs: int = 0
    ready_specs: int = 0
    pending_specs: int = 0
    design_pending_specs: int = 0
    tasks_pending_specs: int = 0
    requirements_pending_specs: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    pending_tasks: int = 0
    optional_tasks: int = 0
    active_specs_count: int = 0
    progress_percent: int = 0


# Worktrees


class WorktreeItem(DashboardModel):
    """One git worktree with the flow activity found in it."""

    id: str
    path: str
    workspace_path: str
    name: str
    branch: str = ""
    display_branch: str = "[unknown]"
    detached: bool = False
    is_main_branch: bool = False
    is_current_path: bool = False
    is_selected: bool = False
    flow_available: bool = False
    status: Literal["ready", "unavailable", "error"] = "unavailable"
    active_count: int = 0
    active_runs: List[FireRun] = Field(default_factory=list)
    active_bolts: List[Bolt] = Field(default_factory=list)
    active_specs: List[Spec] = Field(default_factory=list)
    error: Optional[DashboardError] = None


class WorktreeSet(DashboardModel):
    """Every worktree of the workspace's repository for one flow."""

    flow: str
    source: str = "fallback"
    is_git_repo: bool = False
    selected_worktree_id: Optional[str] = None
    error: Optional[str] = None
    items: List[WorktreeItem] = Field(default_factory=list)

    @property
    def selected(self) -> Optional[WorktreeItem]:
        return next((item for item in self.items if item.is_selected), None)


# Snapshots


class Snapshot(DashboardModel):
    """Fields common to every flow snapshot."""

    flow: Flow
    initialized: bool = True
    workspace_path: str
    root_path: str
    version: str = "0.0.0"
    project: ProjectInfo = Field(default_factory=ProjectInfo)
    standards: List[Standard] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    git_changes: Optional[GitChangeSet] = None
    worktrees: Optional[WorktreeSet] = None
    generated_at: str = ""


class FireSnapshot(Snapshot):
    flow: Literal["fire"] = "fire"
    workspace: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    intents: List[FireIntent] = Field(default_factory=list)
    runs: List[FireRun] = Field(default_factory=list)
    active_runs: List[FireRun] = Field(default_factory=list)
    completed_runs: List[FireRun] = Field(default_factory=list)
    pending_items: List[PendingItem] = Field(default_factory=list)
    stats: FireStats = Field(default_factory=FireStats)


class AidlcSnapshot(Snapshot):
    flow: Literal["aidlc"] = "aidlc"
    intents: List[AidlcIntent] = Field(default_factory=list)
    bolts: List[Bolt] = Field(default_factory=list)
    active_bolts: List[Bolt] = Field(default_factory=list)
    pending_bolts: List[Bolt] = Field(default_factory=list)
    completed_bolts: List[Bolt] = Field(default_factory=list)
    stats: AidlcStats = Field(default_factory=AidlcStats)


class SimpleSnapshot(Snapshot):
    flow: Literal["simple"] = "simple"
    specs: List[Spec] = Field(default_factory=list)
    active_specs: List[Spec] = Field(default_factory=list)
    completed_specs: List[Spec] = Field(default_factory=list)
    pending_specs: List[Spec] = Field(default_factory=list)
    stats: SimpleStats = Field(default_factory=SimpleStats)


AnySnapshot = Union[FireSnapshot, AidlcSnapshot, SimpleSnapshot]


@dataclass
class ParseResult:
    """Outcome of one parse: a snapshot on success, an error otherwise."""

    ok: bool
    snapshot: Optional[AnySnapshot] = None
    error: Optional[DashboardError] = None

    @classmethod
    def success(cls, snapshot: AnySnapshot) -> "ParseResult":
        return cls(ok=True, snapshot=snapshot)

    @classmethod
    def failure(cls, error: DashboardError) -> "ParseResult":
        return cls(ok=False, error=error)


def derive_aggregate_status(statuses: List[str]) -> str:
    """Derive a container status from its children's statuses.

    Unknown child statuses are ignored. Precedence: no known children is
    pending, then any in_progress, then all completed, then any blocked,
    otherwise pending.
    """
    known = [status for status in statuses if status in ("pending", "in_progress", "completed", "blocked")]
    if not known:
        return "pending"
    if "in_progress" in known:
        return "in_progress"
    if all(status == "completed" for status in known):
        return "completed"
    if "blocked" in known:
        return "blocked"
    return "pending"


def progress_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return int(math.floor(completed / total * 100 + 0.5))


def to_dashboard_error(error: Any, default_code: str = "DASHBOARD_ERROR") -> DashboardError:
    """Coerce any error-ish value into a ``DashboardError``.

    Args:
        error: None, a string, a mapping, an exception or a DashboardError.
        default_code: Code used when the input does not carry its own.

    Returns:
        A DashboardError; unknown inputs are stringified into the message.
    """
    if isinstance(error, DashboardError):
        return error
    if not error:
        return DashboardError(code=default_code, message="Unknown dashboard error.")
    if isinstance(error, str):
        return DashboardError(code=default_code, message=error)
    if isinstance(error, dict):
        return DashboardError(
            code=error.get("code") or default_code,
            message=error.get("message") or "Unknown dashboard error.",
            details=_optional_text(error.get("details")),
            path=_optional_text(error.get("path")),
            hint=_optional_text(error.get("hint")),
        )
    if isinstance(error, BaseException):
        return DashboardError(
            code=getattr(error, "code", None) or default_code,
            message=str(error) or "Unknown dashboard error.",
            details=_optional_text(getattr(error, "details", None)),
            path=_optional_text(getattr(error, "path", None)),
            hint=_optional_text(getattr(error, "hint", None)),
        )
    return DashboardError(code=default_code, message=str(error))


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def snapshot_hash(value: Union[Snapshot, DashboardError, None]) -> str:
    """Structural hash of a snapshot or error that ignores ``generated_at``.

    Two parses of an unchanged workspace hash equal even though their
    generation timestamps differ.
    """
    if value is None:
        return "null"
    if isinstance(value, Snapshot):
        payload: Dict[str, Any] = value.model_dump(mode="json", exclude={"generated_at"})
    else:
        payload = value.model_dump(mode="json")
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()
