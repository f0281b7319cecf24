import math

import pytest

from specs_dashboard.dashboard.tui.text import Line, display_width, fit_lines, sanitize_render_line, truncate
from specs_dashboard.utils import clamp_index, format_time, normalize_timestamp


@pytest.mark.parametrize("width", [0, 1, 2, 3, 4, 5, 8, 13])
def test_truncate_never_exceeds_width(width):
    for text in ("hello world", "日本語のテキスト", "\x1b[31mred text\x1b[0m", "emoji 🚀🚀🚀"):
        result = truncate(text, width)
        assert display_width(result) <= width
        assert truncate(result, width) == result


def test_truncate_edges():
    assert truncate("abcdef", 4) == "a..."
    assert truncate("abcdef", 3) == "abc"
    assert truncate("abc", 10) == "abc"
    assert truncate("abc", None) == "abc"
    assert truncate("abc", math.inf) == "abc"
    assert truncate(None, 5) == ""


def test_wide_characters_are_not_split():
    assert truncate("日本語", 5) == "日..."
    assert display_width("日本語") == 6


def test_fit_lines_centers_selected_row():
    lines = [Line(text=f"row {index}", selected=index == 8) for index in range(10)]

    window = fit_lines(lines, 3, 20)

    assert [line.text for line in window] == ["row 7", "row 8", "row 9"]


def test_fit_lines_without_selection_reports_hidden_rows():
    window = fit_lines([f"row {index}" for index in range(6)], 3, 20)

    assert [line.text for line in window] == ["row 0", "row 1", "... +4 more"]
    assert window[-1].color == "dim"


def test_sanitize_render_line_strips_escapes():
    assert sanitize_render_line("\x1b]0;title\x07plain\x1b[2Jtext\r\x00") == "plaintext"
    assert sanitize_render_line("tab\tkept") == "tab\tkept"


def test_clamp_index():
    assert clamp_index(5, 3) == 2
    assert clamp_index(-1, 3) == 0
    assert clamp_index(1, 0) == 0
    assert clamp_index(float("nan"), 3) == 0


def test_timestamps():
    assert normalize_timestamp(None) is None
    assert format_time(None) == "n/a"
    assert format_time("not a time") == "not a time"
