from conftest import write

from specs_dashboard.dashboard.fire import normalize_state, parse_dependencies, parse_fire_dashboard


def test_fire_snapshot_reconciles_state_files_and_run_logs(fire_workspace):
    result = parse_fire_dashboard(fire_workspace)

    assert result.ok
    snapshot = result.snapshot
    assert snapshot.initialized
    assert snapshot.project.name == "demo-app"
    assert snapshot.version == "0.3.0"
    assert snapshot.workspace.type == "brownfield"
    assert snapshot.workspace.autonomy_bias == "autonomous"

    stats = snapshot.stats
    assert stats.total_intents == 1
    assert stats.in_progress_intents == 1
    assert stats.total_work_items == 3
    assert stats.completed_work_items == 1
    assert stats.in_progress_work_items == 1
    assert stats.pending_work_items == 1
    assert stats.total_runs == 2
    assert stats.completed_runs == 1
    assert stats.active_runs_count == 1

    assert [run.id for run in snapshot.active_runs] == ["run-002"]
    assert [run.id for run in snapshot.completed_runs] == ["run-001"]
    assert [item.id for item in snapshot.pending_items] == ["sessions"]
    assert [standard.type for standard in snapshot.standards] == ["tech-stack"]


def test_missing_work_item_markdown_becomes_warning(fire_workspace):
    snapshot = parse_fire_dashboard(fire_workspace).snapshot

    assert any("auth/sessions" in warning for warning in snapshot.warnings)


def test_completed_run_items_fall_back_to_run_intent(fire_workspace):
    snapshot = parse_fire_dashboard(fire_workspace).snapshot
    run = snapshot.completed_runs[0]

    assert [(item.id, item.intent_id) for item in run.work_items] == [("login", "auth")]


def test_invalid_state_yaml_is_a_state_parse_error(tmp_path):
    write(tmp_path / ".specs-fire" / "state.yaml", "project: [unclosed\n")

    result = parse_fire_dashboard(tmp_path)

    assert not result.ok
    assert result.error.code == "STATE_PARSE_ERROR"
    assert result.error.path.endswith("state.yaml")
    assert result.error.details


def test_non_mapping_state_yaml_is_a_state_parse_error(tmp_path):
    write(tmp_path / ".specs-fire" / "state.yaml", "- just\n- a list\n")

    result = parse_fire_dashboard(tmp_path)

    assert result.error.code == "STATE_PARSE_ERROR"


def test_missing_state_yaml_gives_uninitialized_snapshot(tmp_path):
    (tmp_path / ".specs-fire").mkdir()

    result = parse_fire_dashboard(tmp_path)

    assert result.ok
    assert not result.snapshot.initialized
    assert result.snapshot.warnings
    assert result.snapshot.stats.total_intents == 0


def test_missing_fire_folder_is_not_found(tmp_path):
    result = parse_fire_dashboard(tmp_path)

    assert result.error.code == "FIRE_NOT_FOUND"
    assert result.error.hint


def test_normalize_state_accepts_camel_case_and_drops_bad_entries():
    state = normalize_state({
        "intents": [
            "not-a-mapping",
            {"id": "x", "workItems": [{"id": "a", "status": "Done", "mode": "VALIDATE"}]},
        ],
        "runs": {"active": [{"id": "run-009", "currentItem": "a", "scope": "huge"}]},
    })

    assert [intent["id"] for intent in state["intents"]] == ["x"]
    assert state["intents"][0]["work_items"] == [{"id": "a", "status": "completed", "mode": "validate"}]
    active = state["runs"]["active"][0]
    assert active["current_item"] == "a"
    assert active["scope"] == "single"
    assert state["project"] is None


def test_parse_dependencies_accepts_string_or_list():
    assert parse_dependencies("login") == ["login"]
    assert parse_dependencies(["a", "", 3, "b"]) == ["a", "b"]
    assert parse_dependencies(None) == []


def test_state_fixture_is_stable_between_parses(fire_workspace):
    from specs_dashboard.dashboard.models import snapshot_hash

    first = parse_fire_dashboard(fire_workspace).snapshot
    second = parse_fire_dashboard(fire_workspace).snapshot

    assert snapshot_hash(first) == snapshot_hash(second)
