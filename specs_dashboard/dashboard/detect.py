"""Flow detection from workspace marker directories."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from ..exceptions import InvalidFlowError
from ..utils import directory_exists

SUPPORTED_FLOWS = ("fire", "aidlc", "simple")

FLOW_MARKERS = {
    "fire": ".specs-fire",
    "aidlc": "memory-bank",
    "simple": "specs",
}


@dataclass
class FlowDetection:
    """Result of inspecting a workspace for flow markers."""

    flow: Optional[str]
    source: Optional[str]
    marker_path: Optional[Path]
    detected: bool
    available_flows: List[str] = field(default_factory=list)
    warning: Optional[str] = None


def get_flow_marker_path(workspace_path: Union[str, Path], flow: str) -> Path:
    return Path(workspace_path) / FLOW_MARKERS[flow]


def detect_available_flows(workspace_path: Union[str, Path]) -> List[str]:
    """List flows whose marker directory exists, in priority order."""
    return [
        flow for flow in SUPPORTED_FLOWS
        if directory_exists(get_flow_marker_path(workspace_path, flow))
    ]


def detect_flow(workspace_path: Union[str, Path], explicit_flow: Optional[str] = None) -> FlowDetection:
    """Decide which flow a workspace uses.

    An explicit flow always wins, with a warning attached when its marker
    directory is absent. Otherwise the first existing marker in the order
    fire, aidlc, simple is chosen.

    Args:
        workspace_path: Workspace root directory.
        explicit_flow: Flow requested on the command line, if any.

    Returns:
        FlowDetection describing the chosen flow; ``flow`` is None when
        nothing was found.

    Raises:
        InvalidFlowError: If ``explicit_flow`` is not a supported flow name.
    """
    available = detect_available_flows(workspace_path)

    if explicit_flow:
        flow = explicit_flow.strip().lower()
        if flow not in SUPPORTED_FLOWS:
            raise InvalidFlowError(
                f'Invalid flow "{explicit_flow}". Valid options: {", ".join(SUPPORTED_FLOWS)}'
            )

        marker_path = get_flow_marker_path(workspace_path, flow)
        warning = None
        if not directory_exists(marker_path):
            warning = f'Flow "{flow}" was selected explicitly but {FLOW_MARKERS[flow]} was not found.'

        return FlowDetection(
            flow=flow,
            source="flag",
            marker_path=marker_path,
            detected=True,
            available_flows=available,
            warning=warning,
        )

    if available:
        flow = available[0]
        return FlowDetection(
            flow=flow,
            source="auto",
            marker_path=get_flow_marker_path(workspace_path, flow),
            detected=True,
            available_flows=available,
        )

    return FlowDetection(
        flow=None,
        source=None,
        marker_path=None,
        detected=False,
        available_flows=available,
    )
