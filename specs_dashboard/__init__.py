"""Specs Dashboard - live terminal dashboard for spec-driven workflows.

Watches a workspace that follows one of the FIRE (.specs-fire/), AIDLC
(memory-bank/) or Simple (specs/) conventions, parses its on-disk state into
a normalized snapshot and renders it as an interactive Rich terminal view.
"""

import logging

__version__ = "0.4.0"
__author__ = "specsmd contributors"
__license__ = "MIT"

logging.getLogger(__name__).addHandler(logging.NullHandler())

# Package exports
from specs_dashboard.exceptions import (
    SpecsDashboardError,
    InvalidFlowError,
    NoFlowDetectedError,
    StateParseError,
    WatchError,
)

__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "SpecsDashboardError",
    "InvalidFlowError",
    "NoFlowDetectedError",
    "StateParseError",
    "WatchError",
]
