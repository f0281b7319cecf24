from rich.console import Console

from specs_dashboard.dashboard.fire import parse_fire_dashboard
from specs_dashboard.dashboard.models import DashboardError
from specs_dashboard.dashboard.tui import (
    FrameContext,
    PanelSpec,
    RichRenderer,
    allocate_single_column_panels,
    build_frame,
    render_text,
)
from specs_dashboard.dashboard.tui.layout import normalize_width, resolve_frame_width
from specs_dashboard.dashboard.tui.text import display_width


def _panels(count):
    return [PanelSpec(f"p{index}", f"Panel {index}", []) for index in range(count)]


def test_allocation_shares_leftover_rows():
    panels = allocate_single_column_panels(_panels(3), 20)

    assert [panel.max_lines for panel in panels] == [3, 3, 3]


def test_allocation_always_admits_first_panel():
    panels = allocate_single_column_panels(_panels(3), 6)
    assert [panel.key for panel in panels] == ["p0"]
    assert panels[0].max_lines == 3

    assert allocate_single_column_panels(_panels(2), 0)[0].max_lines == 1
    assert allocate_single_column_panels([None, None], 30) == []


def test_allocation_skips_missing_candidates():
    candidates = [None, *_panels(2)]

    assert [panel.key for panel in allocate_single_column_panels(candidates, 30)] == ["p0", "p1"]


def test_widths_are_clamped():
    assert normalize_width(10) == 40
    assert normalize_width(500) == 180
    assert normalize_width(float("nan")) == 120
    assert resolve_frame_width(100) == 99
    assert resolve_frame_width(20) == 20


def test_runs_view_frame(fire_workspace):
    snapshot = parse_fire_dashboard(fire_workspace).snapshot
    frame = build_frame(FrameContext(snapshot=snapshot, error=None, flow="fire", columns=100, rows=40))

    assert [panel.title for panel in frame.panels] == [
        "Current Run", "Run Files", "Pending Queue", "Recent Completed Runs",
    ]
    assert frame.header.startswith("FIRE | demo-app")
    assert frame.help_line is not None
    for panel in frame.panels:
        assert len(panel.lines) <= panel.max_lines
        assert all(display_width(line.text) <= frame.width for line in panel.lines)


def test_completed_filter_hides_active_panels(fire_workspace):
    snapshot = parse_fire_dashboard(fire_workspace).snapshot
    frame = build_frame(FrameContext(snapshot=snapshot, error=None, flow="fire", rows=40, run_filter="completed"))

    assert [panel.key for panel in frame.panels] == ["run-files", "completed"]
    assert frame.panels[0].title == "Run Files (completed)"


def test_ultra_compact_keeps_one_panel_without_help(fire_workspace):
    snapshot = parse_fire_dashboard(fire_workspace).snapshot
    frame = build_frame(FrameContext(snapshot=snapshot, error=None, flow="fire", rows=12))

    assert [panel.key for panel in frame.panels] == ["current-run"]
    assert frame.help_line is None


def test_errors_show_as_panel_or_inline():
    error = DashboardError(code="PARSE_ERROR", message="bad yaml", path="/w/state.yaml")

    tall = build_frame(FrameContext(snapshot=None, error=error, flow="fire", rows=30))
    assert tall.error_panel is not None
    assert tall.error_panel.lines[0].text == "[PARSE_ERROR] bad yaml"
    assert tall.inline_error is None

    short = build_frame(FrameContext(snapshot=None, error=error, flow="fire", rows=16))
    assert short.error_panel is None
    assert short.inline_error.text == "[PARSE_ERROR] bad yaml"


def test_flow_bar_only_with_several_flows():
    single = build_frame(FrameContext(snapshot=None, error=None, flow="fire", available_flows=["fire"]))
    multi = build_frame(FrameContext(snapshot=None, error=None, flow="simple", available_flows=["fire", "simple"]))

    assert single.flow_bar == []
    assert [line.text.strip() for line in multi.flow_bar] == ["FIRE", "SIMPLE"]
    assert multi.flow_bar[1].bold


def test_help_overlay_replaces_panels():
    frame = build_frame(FrameContext(snapshot=None, error=None, flow="fire", show_help_overlay=True))

    assert frame.overlay is not None
    assert frame.overlay.title == "Shortcuts"


def test_render_text_and_rich_output(fire_workspace):
    snapshot = parse_fire_dashboard(fire_workspace).snapshot
    frame = build_frame(FrameContext(snapshot=snapshot, error=None, flow="fire", columns=90, rows=40, view="health"))

    text = render_text(frame)
    assert "== Stats ==" in text
    assert "== Warnings ==" in text

    console = Console(record=True, width=100, color_system=None)
    console.print(RichRenderer().render(frame))
    exported = console.export_text()
    assert "Stats" in exported
    assert "demo-app" in exported
