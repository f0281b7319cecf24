import pytest

from specs_dashboard.dashboard.detect import detect_available_flows, detect_flow
from specs_dashboard.exceptions import InvalidFlowError


def test_available_flows_follow_priority_order(tmp_path):
    (tmp_path / "specs").mkdir()
    (tmp_path / ".specs-fire").mkdir()

    assert detect_available_flows(tmp_path) == ["fire", "simple"]

    detection = detect_flow(tmp_path)
    assert detection.flow == "fire"
    assert detection.source == "auto"
    assert detection.warning is None


def test_explicit_flow_wins_and_warns_when_marker_missing(tmp_path):
    (tmp_path / ".specs-fire").mkdir()

    detection = detect_flow(tmp_path, "AIDLC")

    assert detection.flow == "aidlc"
    assert detection.source == "flag"
    assert "memory-bank" in detection.warning
    assert detection.available_flows == ["fire"]


def test_invalid_flow_raises(tmp_path):
    with pytest.raises(InvalidFlowError) as excinfo:
        detect_flow(tmp_path, "kanban")

    assert excinfo.value.code == "INVALID_FLOW"
    assert "kanban" in excinfo.value.message


def test_empty_workspace_detects_nothing(tmp_path):
    detection = detect_flow(tmp_path)

    assert detection.flow is None
    assert not detection.detected


def test_marker_must_be_a_directory(tmp_path):
    (tmp_path / "specs").write_text("not a folder", encoding="utf-8")

    assert detect_available_flows(tmp_path) == []
