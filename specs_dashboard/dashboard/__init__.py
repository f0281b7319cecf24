"""Dashboard module for spec-driven workflow monitoring.

This module turns a FIRE, AIDLC or Simple workspace into snapshots and shows
them in a Rich terminal interface that refreshes on file changes.
"""

from .detect import FlowDetection, detect_available_flows, detect_flow
from .models import DashboardError, ParseResult, snapshot_hash, to_dashboard_error
from .parser import WorkspaceParser
from .terminal import TerminalDashboard
from .watcher import DebouncedTrigger, WatchRuntime

__all__ = [
    'DashboardError',
    'DebouncedTrigger',
    'FlowDetection',
    'ParseResult',
    'TerminalDashboard',
    'WatchRuntime',
    'WorkspaceParser',
    'detect_available_flows',
    'detect_flow',
    'snapshot_hash',
    'to_dashboard_error',
]
