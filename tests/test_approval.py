from conftest import FIRE_STATE, write

from specs_dashboard.dashboard.aidlc import parse_aidlc_dashboard
from specs_dashboard.dashboard.approval import (
    detect_approval_gate,
    extract_frontmatter_value,
    get_current_bolt,
    get_current_fire_work_item,
    get_current_run,
    is_aidlc_bolt_awaiting_approval,
    is_fire_run_awaiting_approval,
)
from specs_dashboard.dashboard.fire import parse_fire_dashboard
from specs_dashboard.dashboard.simple import parse_simple_dashboard
from specs_dashboard.dashboard.tui.builders import build_current_run_lines


def _with_run_checkpoint(state: str) -> str:
    return FIRE_STATE.replace(
        "      current_item: logout\n",
        f"      current_item: logout\n      checkpoint_state: {state}\n",
    )


def test_fire_run_without_explicit_checkpoint_is_not_gated(fire_workspace):
    write(fire_workspace / ".specs-fire" / "runs" / "run-002" / "run.md", """
        ---
        current_item: logout
        approved_at: null
        ---
    """)
    snapshot = parse_fire_dashboard(fire_workspace).snapshot

    run = get_current_run(snapshot)
    assert run.id == "run-002"
    assert get_current_fire_work_item(run).id == "logout"
    assert detect_approval_gate(snapshot) is None


def test_fire_run_awaiting_approval_raises_gate(fire_workspace):
    write(fire_workspace / ".specs-fire" / "state.yaml", _with_run_checkpoint("awaiting_approval"))

    gate = detect_approval_gate(parse_fire_dashboard(fire_workspace).snapshot)

    assert gate is not None
    assert gate.flow == "fire"
    assert gate.source == "run-state"
    assert gate.checkpoint == "plan"
    assert gate.message == "run-002: logout (CONFIRM) is waiting at plan checkpoint"


def test_fire_approved_checkpoint_clears_gate(fire_workspace):
    write(fire_workspace / ".specs-fire" / "state.yaml", _with_run_checkpoint("approved"))

    assert detect_approval_gate(parse_fire_dashboard(fire_workspace).snapshot) is None


def test_fire_gate_needs_plan_phase(fire_workspace):
    write(fire_workspace / ".specs-fire" / "state.yaml", _with_run_checkpoint("awaiting_approval"))
    write(fire_workspace / ".specs-fire" / "runs" / "run-002" / "plan.md", "# Plan\n")

    assert detect_approval_gate(parse_fire_dashboard(fire_workspace).snapshot) is None


def test_aidlc_gate_requires_stage_signal_file(aidlc_workspace):
    snapshot = parse_aidlc_dashboard(aidlc_workspace).snapshot
    assert get_current_bolt(snapshot).id == "bolt-ledger-2"
    assert detect_approval_gate(snapshot) is None

    write(aidlc_workspace / "memory-bank" / "bolts" / "bolt-ledger-2" / "implementation-plan.md", "# Plan\n")
    gate = detect_approval_gate(parse_aidlc_dashboard(aidlc_workspace).snapshot)

    assert gate is not None
    assert gate.flow == "aidlc"
    assert gate.checkpoint == "plan"
    assert gate.source == "stage-signal"
    assert "bolt-ledger-2" in gate.message


def test_simple_flow_never_gates(simple_workspace):
    assert detect_approval_gate(parse_simple_dashboard(simple_workspace).snapshot) is None


def test_no_snapshot_no_gate():
    assert detect_approval_gate(None) is None


def test_extract_frontmatter_value_strips_quotes():
    block = "title: Plan\ncheckpoint_state: 'awaiting_approval'\n"

    assert extract_frontmatter_value(block, "checkpoint_state") == "awaiting_approval"
    assert extract_frontmatter_value(block, "missing") is None
    assert extract_frontmatter_value(None, "title") is None


def test_current_run_label_marks_gated_run(fire_workspace):
    snapshot = parse_fire_dashboard(fire_workspace).snapshot
    assert not is_fire_run_awaiting_approval(get_current_run(snapshot))
    assert not build_current_run_lines(snapshot, 120)[0].text.endswith("[APPROVAL]")

    write(fire_workspace / ".specs-fire" / "state.yaml", _with_run_checkpoint("awaiting_approval"))
    snapshot = parse_fire_dashboard(fire_workspace).snapshot

    assert is_fire_run_awaiting_approval(get_current_run(snapshot))
    assert build_current_run_lines(snapshot, 120)[0].text.endswith("items done [APPROVAL]")


def test_current_bolt_label_marks_gated_bolt(aidlc_workspace):
    snapshot = parse_aidlc_dashboard(aidlc_workspace).snapshot
    assert not build_current_run_lines(snapshot, 120)[0].text.endswith("[APPROVAL]")

    write(aidlc_workspace / "memory-bank" / "bolts" / "bolt-ledger-2" / "implementation-plan.md", "# Plan\n")
    snapshot = parse_aidlc_dashboard(aidlc_workspace).snapshot

    assert is_aidlc_bolt_awaiting_approval(get_current_bolt(snapshot))
    assert build_current_run_lines(snapshot, 120)[0].text.endswith("stages done [APPROVAL]")
