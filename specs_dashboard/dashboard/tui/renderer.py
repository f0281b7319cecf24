"""Paint a laid-out ``Frame`` with Rich renderables, or as plain text."""

from typing import List

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.text import Text

from .layout import Frame, PanelSpec
from .text import Line


def line_style(line: Line) -> str:
    parts = []
    if line.color:
        parts.append(line.color)
    if line.bold:
        parts.append("bold")
    if line.selected and not line.color:
        parts.append("reverse")
    return " ".join(parts)


def line_to_text(line: Line) -> Text:
    return Text(line.text, style=line_style(line), no_wrap=True, overflow="crop")


def _joined(lines: List[Line], separator: str = "") -> Text:
    text = Text(no_wrap=True, overflow="crop")
    for index, line in enumerate(lines):
        if index and separator:
            text.append(separator)
        text.append(line.text, style=line_style(line))
    return text


class RichRenderer:
    """Turn frames into a single Rich renderable for ``Live``."""

    def render_panel(self, panel: PanelSpec, width: int) -> Panel:
        body = Text("\n", no_wrap=True).join(line_to_text(line) for line in panel.lines)
        return Panel(
            body,
            title=Text(panel.title, style="bold"),
            title_align="left",
            border_style=panel.border_color,
            width=width,
            height=panel.max_lines + 2,
        )

    def render(self, frame: Frame) -> RenderableType:
        parts: List[RenderableType] = [Text(frame.header, style="bold cyan", no_wrap=True, overflow="crop")]
        if frame.flow_bar:
            parts.append(_joined(frame.flow_bar, " "))
        parts.append(_joined(frame.tabs, " "))
        if frame.gate is not None:
            parts.append(line_to_text(frame.gate))
        if frame.inline_error is not None:
            parts.append(line_to_text(frame.inline_error))
        if frame.error_panel is not None:
            parts.append(self.render_panel(frame.error_panel, frame.width))

        if frame.overlay is not None:
            parts.append(self.render_panel(frame.overlay, frame.width))
        else:
            parts.extend(self.render_panel(panel, frame.width) for panel in frame.panels)

        if frame.status_line:
            parts.append(Text(frame.status_line, style="yellow", no_wrap=True, overflow="crop"))
        if frame.help_line:
            parts.append(Text(frame.help_line, style="dim", no_wrap=True, overflow="crop"))
        return Group(*parts)


def _plain_panel(panel: PanelSpec) -> List[str]:
    out = [f"== {panel.title} =="]
    out.extend(line.text for line in panel.lines)
    return out


def render_text(frame: Frame) -> str:
    """Render ``frame`` without styling, one panel after another."""
    out = [frame.header]
    if frame.flow_bar:
        out.append(" ".join(line.text for line in frame.flow_bar))
    out.append(" ".join(line.text for line in frame.tabs))
    if frame.gate is not None:
        out.append(frame.gate.text)
    if frame.inline_error is not None:
        out.append(frame.inline_error.text)
    if frame.error_panel is not None:
        out.extend(_plain_panel(frame.error_panel))
    for panel in frame.panels:
        out.extend(_plain_panel(panel))
    if frame.status_line:
        out.append(frame.status_line)
    if frame.help_line:
        out.append(frame.help_line)
    return "\n".join(out)
