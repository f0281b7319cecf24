"""Bolt dependency state, current-item selectors and approval gates.

Approval gates are recomputed from a snapshot every time they are needed and
never stored. A gate is only raised on explicit evidence: a FIRE run needs a
checkpoint state from the awaiting set, and an AIDLC bolt needs the stage's
signal artifact on disk. Missing metadata always means "not gated".
"""

import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..utils import file_exists, normalize_token, read_text_safe, timestamp_value
from .frontmatter import extract_frontmatter_block
from .models import (
    AidlcSnapshot,
    ApprovalGate,
    Bolt,
    FireRun,
    FireSnapshot,
    RunWorkItem,
    SimpleSnapshot,
    Snapshot,
    Spec,
)

FIRE_AWAITING_STATES = frozenset({
    "awaiting_approval",
    "waiting",
    "pending_approval",
    "approval_needed",
    "approval_required",
    "checkpoint_pending",
})

FIRE_APPROVED_STATES = frozenset({
    "approved",
    "confirmed",
    "accepted",
    "resumed",
    "done",
    "completed",
    "cleared",
    "none",
    "not_required",
    "skipped",
})

AIDLC_SIGNAL_FILES: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "simple-construction-bolt": {
        "plan": ("implementation-plan.md",),
        "implement": ("implementation-walkthrough.md",),
        "test": ("test-walkthrough.md",),
    },
    "ddd-construction-bolt": {
        "model": ("ddd-01-domain-model.md",),
        "design": ("ddd-02-technical-design.md",),
        "implement": ("implementation-walkthrough.md",),
        "test": ("ddd-03-test-report.md",),
    },
    "spike-bolt": {
        "explore": ("spike-exploration.md",),
        "document": ("spike-report.md",),
    },
}

ADR_FILE_PATTERN = re.compile(r"^adr-[\w-]+\.md$")


# Bolt dependencies


def compute_bolt_dependency_state(bolts: List[Bolt], warnings: List[str]) -> List[Bolt]:
    """Resolve ``requires_bolts`` edges into blocking state.

    The first pass records every required bolt that is missing or not yet
    completed in ``blocked_by`` and promotes a blocked pending bolt to
    ``blocked``. The second pass counts, for each bolt, the unfinished bolts
    that require it, using the statuses produced by the first pass.

    Args:
        bolts: Parsed bolts.
        warnings: Warning list that receives one entry per missing bolt.

    Returns:
        New Bolt models with ``is_blocked``, ``blocked_by`` and
        ``unblocks_count`` set.
    """
    by_id = {bolt.id: bolt for bolt in bolts}

    blocked: List[Bolt] = []
    for bolt in bolts:
        blocked_by = []
        for required_id in bolt.requires_bolts:
            required = by_id.get(required_id)
            if required is None:
                blocked_by.append(required_id)
                warnings.append(f"Bolt {bolt.id} depends on missing bolt {required_id}.")
            elif required.status != "completed":
                blocked_by.append(required_id)

        is_blocked = bool(blocked_by)
        status = "blocked" if bolt.status == "pending" and is_blocked else bolt.status
        blocked.append(bolt.model_copy(update={
            "blocked_by": blocked_by,
            "is_blocked": is_blocked,
            "status": status,
        }))

    resolved = []
    for bolt in blocked:
        unblocks = sum(
            1 for candidate in blocked
            if candidate.id != bolt.id
            and bolt.id in candidate.requires_bolts
            and candidate.status != "completed"
        )
        resolved.append(bolt.model_copy(update={"unblocks_count": unblocks}))
    return resolved


# Current item selectors


def _newest_started_first(items):
    return sorted(items, key=lambda item: (-timestamp_value(item.started_at), item.id))


def get_current_run(snapshot: Optional[FireSnapshot]) -> Optional[FireRun]:
    if snapshot is None or not getattr(snapshot, "active_runs", None):
        return None
    return _newest_started_first(snapshot.active_runs)[0]


def get_current_fire_work_item(run: Optional[FireRun]) -> Optional[RunWorkItem]:
    """Pick the run's named current item, else the first in progress, else the first."""
    if run is None or not run.work_items:
        return None
    for item in run.work_items:
        if item.id == run.current_item:
            return item
    for item in run.work_items:
        if normalize_token(item.status) == "in_progress":
            return item
    return run.work_items[0]


def get_current_bolt(snapshot: Optional[AidlcSnapshot]) -> Optional[Bolt]:
    if snapshot is None or not getattr(snapshot, "active_bolts", None):
        return None
    return _newest_started_first(snapshot.active_bolts)[0]


def get_current_spec(snapshot: Optional[SimpleSnapshot]) -> Optional[Spec]:
    if snapshot is None or not getattr(snapshot, "active_specs", None):
        return None
    return snapshot.active_specs[0]


# FIRE gate


def extract_frontmatter_value(block: Optional[str], key: str) -> Optional[str]:
    """Read a scalar ``key: value`` line from a raw front-matter block.

    Surrounding quotes are stripped. Returns None when the key is absent.
    """
    if not isinstance(block, str) or not key:
        return None
    match = re.search(rf"^{re.escape(key)}\s*:\s*(.+)$", block, re.MULTILINE | re.IGNORECASE)
    if not match:
        return None
    raw = match.group(1).strip()
    return re.sub(r"[\"']$", "", re.sub(r"^[\"']", "", raw)).strip()


def parse_plan_checkpoint_metadata(run: Optional[FireRun]) -> Dict[str, Optional[str]]:
    """Read checkpoint hints from the run's ``plan.md`` front-matter."""
    empty = {"has_plan": False, "checkpoint_state": None, "checkpoint": None}
    if run is None or not run.folder_path.strip():
        return empty

    plan_path = Path(run.folder_path) / "plan.md"
    if not file_exists(plan_path):
        return empty

    block = extract_frontmatter_block(read_text_safe(plan_path))
    if not block:
        return {"has_plan": True, "checkpoint_state": None, "checkpoint": None}

    state = normalize_token(
        extract_frontmatter_value(block, "checkpoint_state")
        or extract_frontmatter_value(block, "checkpointState")
        or extract_frontmatter_value(block, "approval_state")
        or extract_frontmatter_value(block, "approvalState")
        or ""
    ) or None
    checkpoint = (
        extract_frontmatter_value(block, "current_checkpoint")
        or extract_frontmatter_value(block, "currentCheckpoint")
        or extract_frontmatter_value(block, "checkpoint")
        or None
    )
    return {"has_plan": True, "checkpoint_state": state, "checkpoint": checkpoint}


def resolve_fire_approval_state(run: FireRun, item: Optional[RunWorkItem]) -> Dict[str, Optional[str]]:
    """Resolve the checkpoint state by priority: item, then run, then plan.md.

    Returns:
        Dict with ``state`` (normalized token or None), ``checkpoint`` and
        ``source`` (``item-state``, ``run-state``, ``plan-frontmatter`` or
        None).
    """
    item_state = normalize_token(item.checkpoint_state if item else None)
    run_state = normalize_token(run.checkpoint_state)
    plan = parse_plan_checkpoint_metadata(run)

    if item_state:
        source = "item-state"
    elif run_state:
        source = "run-state"
    elif plan["checkpoint_state"]:
        source = "plan-frontmatter"
    else:
        source = None

    checkpoint = (
        (item.current_checkpoint if item else None)
        or run.current_checkpoint
        or plan["checkpoint"]
        or None
    )
    return {
        "state": item_state or run_state or plan["checkpoint_state"] or None,
        "checkpoint": checkpoint,
        "source": source,
    }


def get_current_phase_label(run: Optional[FireRun], item: Optional[RunWorkItem]) -> str:
    """Explicit item phase, else inferred from the run's artifacts."""
    if item is not None and item.current_phase:
        return item.current_phase.lower()
    if run is not None and run.has_test_report:
        return "review"
    if run is not None and run.has_plan:
        return "execute"
    return "plan"


def get_fire_run_approval_gate(run: FireRun, item: Optional[RunWorkItem]) -> Optional[ApprovalGate]:
    """Return a gate when the run's current item waits at a checkpoint.

    The item must be a confirm or validate item, in progress, in the plan
    phase, and carry an explicit checkpoint state from the awaiting set.
    A null ``approved_at`` or any other implicit signal is not enough.
    """
    if item is None:
        return None
    if normalize_token(item.mode) not in ("confirm", "validate"):
        return None
    if normalize_token(item.status) != "in_progress":
        return None
    if normalize_token(get_current_phase_label(run, item)) != "plan":
        return None

    resolved = resolve_fire_approval_state(run, item)
    state = resolved["state"]
    if not state or state in FIRE_APPROVED_STATES or state not in FIRE_AWAITING_STATES:
        return None

    item_id = item.id or run.current_item or "unknown-item"
    checkpoint = re.sub(r"[_\s]+", "-", resolved["checkpoint"] or "plan")
    return ApprovalGate(
        flow="fire",
        message=f"{run.id}: {item_id} ({(item.mode or 'confirm').upper()}) is waiting at {checkpoint} checkpoint",
        checkpoint=checkpoint,
        source=resolved["source"],
    )


def is_fire_run_awaiting_approval(run: Optional[FireRun], item: Optional[RunWorkItem] = None) -> bool:
    """True when ``run`` is gated; ``item`` defaults to the run's current item."""
    if run is None:
        return False
    item = item or get_current_fire_work_item(run)
    return get_fire_run_approval_gate(run, item) is not None


def detect_fire_approval_gate(snapshot: FireSnapshot) -> Optional[ApprovalGate]:
    run = get_current_run(snapshot)
    if run is None:
        return None
    item = get_current_fire_work_item(run)
    if item is None:
        return None
    return get_fire_run_approval_gate(run, item)


# AIDLC gate


def _stage_token(value: Optional[str]) -> str:
    return normalize_token(value).replace("_", "-")


def get_aidlc_checkpoint_signal_files(bolt_type: Optional[str], stage: Optional[str]) -> Tuple[str, ...]:
    return AIDLC_SIGNAL_FILES.get(_stage_token(bolt_type), {}).get(_stage_token(stage), ())


def has_aidlc_checkpoint_signal(bolt: Bolt, stage: Optional[str]) -> bool:
    names = {name.lower() for name in bolt.files}
    if any(expected in names for expected in get_aidlc_checkpoint_signal_files(bolt.type, stage)):
        return True
    if _stage_token(stage) == "adr":
        return any(ADR_FILE_PATTERN.match(name) for name in names)
    return False


def is_aidlc_bolt_awaiting_approval(bolt: Optional[Bolt]) -> bool:
    """A bolt waits when its current stage is unfinished and its signal file exists."""
    if bolt is None or normalize_token(bolt.status) != "in_progress":
        return False

    current = _stage_token(bolt.current_stage)
    if not current:
        return False

    for stage in bolt.stages:
        if _stage_token(stage.name) == current and stage.status == "completed":
            return False
    return has_aidlc_checkpoint_signal(bolt, current)


def detect_aidlc_approval_gate(snapshot: AidlcSnapshot) -> Optional[ApprovalGate]:
    bolt = get_current_bolt(snapshot)
    if not is_aidlc_bolt_awaiting_approval(bolt):
        return None
    return ApprovalGate(
        flow="aidlc",
        message=f"{bolt.id}: {bolt.current_stage or 'current'} stage is waiting for confirmation",
        checkpoint=bolt.current_stage,
        source="stage-signal",
    )


def detect_approval_gate(snapshot: Optional[Snapshot]) -> Optional[ApprovalGate]:
    """Dispatch gate detection on the snapshot's flow; Simple never gates."""
    if snapshot is None or not snapshot.initialized:
        return None
    if isinstance(snapshot, FireSnapshot):
        return detect_fire_approval_gate(snapshot)
    if isinstance(snapshot, AidlcSnapshot):
        return detect_aidlc_approval_gate(snapshot)
    return None
