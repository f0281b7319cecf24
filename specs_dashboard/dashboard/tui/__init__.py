"""Line-model view layer of the dashboard."""

from .layout import Frame, FrameContext, PanelSpec, allocate_single_column_panels, build_frame
from .renderer import RichRenderer, render_text
from .state import UIState

__all__ = [
    "Frame",
    "FrameContext",
    "PanelSpec",
    "RichRenderer",
    "UIState",
    "allocate_single_column_panels",
    "build_frame",
    "render_text",
]
