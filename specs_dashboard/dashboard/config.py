"""Dashboard configuration resolved once at startup.

The CLI builds a ``DashboardConfig`` from its options and the process
environment, then passes it down. Rendering code only ever sees the resolved
``IconSet``; it never reads environment variables itself.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

ICON_SET_ENV = "SPECS_DASHBOARD_ICON_SET"
ICON_MODES = ("auto", "ascii", "nerd")

DEFAULT_REFRESH_MS = 1000
MIN_REFRESH_MS = 200
MAX_REFRESH_MS = 5000
DEFAULT_DEBOUNCE_MS = 200
FALLBACK_POLL_FLOOR_MS = 5000


@dataclass(frozen=True)
class IconSet:
    """Glyphs used for view tabs, file rows and group toggles."""

    name: str
    runs: str
    overview: str
    health: str
    git: str
    run_file: str
    active_file: str
    group_collapsed: str
    group_expanded: str


ASCII_ICONS = IconSet(
    name="ascii",
    runs="[R]",
    overview="[O]",
    health="[H]",
    git="[G]",
    run_file="*",
    active_file=">",
    group_collapsed=">",
    group_expanded="v",
)

NERD_ICONS = IconSet(
    name="nerd",
    runs="\U000f046e",
    overview="\U000f0349",
    health="\U000f04e6",
    git="\U000f02a2",
    run_file="\U000f0214",
    active_file="\U000f0734",
    group_collapsed="\U000f0415",
    group_expanded="\U000f0417",
)

ICON_SETS = {"ascii": ASCII_ICONS, "nerd": NERD_ICONS}

_UTF8_PATTERN = re.compile(r"utf-?8", re.IGNORECASE)


def resolve_icon_set(mode: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> IconSet:
    """Pick the icon set for this session.

    Args:
        mode: ``ascii``, ``nerd`` or ``auto``. Falls back to the
            ``SPECS_DASHBOARD_ICON_SET`` variable and then ``auto``.
        environ: Environment mapping to inspect; defaults to ``os.environ``.

    Returns:
        The nerd set in ``auto`` mode only for a UTF-8 locale inside a VS Code
        terminal, the ascii set otherwise.
    """
    env = os.environ if environ is None else environ
    resolved = (mode or env.get(ICON_SET_ENV) or "auto").strip().lower()

    if resolved in ICON_SETS:
        return ICON_SETS[resolved]

    locale = "".join(env.get(key, "") for key in ("LC_ALL", "LC_CTYPE", "LANG"))
    is_utf8 = bool(_UTF8_PATTERN.search(locale))
    in_vscode = "vscode" in env.get("TERM_PROGRAM", "").lower()
    return NERD_ICONS if is_utf8 and in_vscode else ASCII_ICONS


def parse_refresh_ms(raw) -> int:
    """Parse a refresh interval and clamp it to the supported range."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_REFRESH_MS
    return max(MIN_REFRESH_MS, min(MAX_REFRESH_MS, value))


@dataclass
class DashboardConfig:
    """Runtime settings for one dashboard session."""

    workspace_path: Path
    flow: Optional[str] = None
    watch: bool = True
    refresh_ms: int = DEFAULT_REFRESH_MS
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    include_git: bool = True
    worktree: Optional[str] = None
    icons: IconSet = field(default_factory=lambda: ASCII_ICONS)

    @property
    def fallback_poll_ms(self) -> int:
        return max(self.refresh_ms, FALLBACK_POLL_FLOOR_MS)
