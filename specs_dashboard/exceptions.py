"""Exception classes for dashboard operations.

This module defines the exception hierarchy used throughout the specs_dashboard
package. Every exception carries a stable ``code`` so it can be converted into
the uniform dashboard error shape shown in the terminal.
"""

from typing import Optional


class SpecsDashboardError(Exception):
    """Base exception for all dashboard operations.

    This is the base class for all exceptions raised by the specs_dashboard
    package. Subclasses override ``code``; the optional ``details``, ``path``
    and ``hint`` attributes flow into the error panel unchanged.
    """

    code = "DASHBOARD_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        path: Optional[str] = None,
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.path = path
        self.hint = hint


class InvalidFlowError(SpecsDashboardError):
    """Raised when a flow name outside fire, aidlc and simple is requested.

    The flow detector raises this for an explicit ``--flow`` value that does
    not name a supported flow. It is the only hard failure of detection.
    """

    code = "INVALID_FLOW"


class NoFlowDetectedError(SpecsDashboardError):
    """Raised when the workspace holds none of the flow marker directories."""

    code = "NO_FLOW_DETECTED"


class StateParseError(SpecsDashboardError):
    """Raised when a FIRE state.yaml file cannot be read or parsed.

    This exception is raised when the state file is unreadable, is not valid
    YAML, or does not decode to a mapping. The FIRE parser converts it into a
    failed parse result rather than letting it escape.
    """

    code = "STATE_PARSE_ERROR"


class WatchError(SpecsDashboardError):
    """Raised when a file system observer cannot be scheduled or started.

    The watch runtime wraps watchdog and OS failures in this exception and
    hands it to its error callback; it never propagates to the caller.
    """

    code = "WATCH_ERROR"
