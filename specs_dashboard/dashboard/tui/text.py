"""Width-aware text primitives for the line-model pipeline.

Every panel is a list of ``Line`` values; this module measures, truncates and
windows those lines. Widths are terminal cell widths as computed by Rich, so
East Asian wide characters and emoji count as two columns, and embedded ANSI
escape sequences count as zero.
"""

import math
import re
from dataclasses import dataclass, replace
from typing import Any, Iterable, List, Optional

from rich.cells import cell_len, get_character_cell_size

ANSI_PATTERN = re.compile(
    r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b\[[0-?]*[ -/]*[@-~]"
)

_OSC_PATTERN = re.compile(r"\x1b\][^\x07]*(?:\x07|\x1b\\)")
_CSI_PATTERN = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
_C1_PATTERN = re.compile(r"\x1b[@-Z\\-_]")
_CONTROL_PATTERN = re.compile(r"[\x00-\x08\x0b-\x1a\x1c-\x1f\x7f]")

ELLIPSIS = "..."


@dataclass(frozen=True)
class Line:
    """A single styled row of panel content.

    Attributes:
        text: Plain text to display.
        color: Rich color name, or None for the terminal default.
        bold: Render in bold.
        selected: Marks the row the scroll window centers on.
    """

    text: str = ""
    color: Optional[str] = None
    bold: bool = False
    selected: bool = False


def to_line(value: Any) -> Line:
    """Coerce a string or ``Line`` into a ``Line``."""
    if isinstance(value, Line):
        return value
    return Line(text="" if value is None else str(value))


def strip_ansi(text: str) -> str:
    return ANSI_PATTERN.sub("", text)


def display_width(value: Any) -> int:
    """Return the terminal cell width of ``value`` ignoring ANSI sequences."""
    return cell_len(strip_ansi("" if value is None else str(value)))


def slice_cells(text: str, width: int) -> str:
    """Return the longest prefix of ``text`` whose display width fits ``width``.

    ANSI sequences are copied through intact and never split. A wide
    character that would straddle the boundary is dropped.
    """
    if width <= 0:
        return ""

    pieces: List[str] = []
    used = 0
    position = 0
    for match in ANSI_PATTERN.finditer(text):
        segment = text[position:match.start()]
        for char in segment:
            size = get_character_cell_size(char)
            if used + size > width:
                return "".join(pieces)
            pieces.append(char)
            used += size
        pieces.append(match.group(0))
        position = match.end()

    for char in text[position:]:
        size = get_character_cell_size(char)
        if used + size > width:
            break
        pieces.append(char)
        used += size
    return "".join(pieces)


def truncate(value: Any, width: Any) -> str:
    """Truncate ``value`` so its display width never exceeds ``width``.

    Args:
        value: Text (or anything convertible to text).
        width: Column budget. ``None`` or a non-finite number disables
            truncation.

    Returns:
        The text unchanged when it fits, an empty string for a budget of 0,
        a bare slice for budgets up to 3, otherwise a slice suffixed with
        ``...``.
    """
    text = "" if value is None else str(value)
    if width is None or isinstance(width, bool) or not isinstance(width, (int, float)):
        return text
    if not math.isfinite(width):
        return text

    safe_width = max(0, math.floor(width))
    if safe_width == 0:
        return ""
    if display_width(text) <= safe_width:
        return text
    if safe_width <= len(ELLIPSIS):
        return slice_cells(text, safe_width)
    return slice_cells(text, safe_width - len(ELLIPSIS)) + ELLIPSIS


def fit_lines(lines: Iterable[Any], max_lines: int, width: Any) -> List[Line]:
    """Truncate and window a list of lines into ``max_lines`` rows.

    When the list overflows and a line is selected, the window is centered on
    it and clamped to the list bounds. Without a selection the head of the
    list is kept and a dim ``... +N more`` row is appended.
    """
    safe = [replace(to_line(line), text=truncate(to_line(line).text, width)) for line in lines]
    if len(safe) <= max_lines:
        return safe

    selected_index = next((index for index, line in enumerate(safe) if line.selected), -1)
    if selected_index >= 0:
        window = max(1, max_lines)
        start = max(0, selected_index - window // 2)
        start = min(start, max(0, len(safe) - window))
        return safe[start:start + window]

    visible = safe[:max(1, max_lines - 1)]
    hidden = len(safe) - len(visible)
    visible.append(Line(text=truncate(f"... +{hidden} more", width), color="dim"))
    return visible


def sanitize_render_line(value: Any) -> str:
    """Strip escape sequences and control characters from file content.

    OSC, CSI and 7-bit C1 sequences are removed whole, then any stray ESC,
    carriage returns and C0 controls other than tab and newline.
    """
    text = "" if value is None else str(value)
    text = _OSC_PATTERN.sub("", text)
    text = _CSI_PATTERN.sub("", text)
    text = _C1_PATTERN.sub("", text)
    text = text.replace("\x1b", "").replace("\r", "")
    return _CONTROL_PATTERN.sub("", text)
