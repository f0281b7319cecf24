"""Utility functions for file access, tokens and timestamps.

These helpers are shared by the flow parsers and the view builders. File
helpers never raise on missing or unreadable paths; they return ``None``,
``False`` or an empty list so a partially written workspace still parses.
"""

import logging
import math
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_TOKEN_SEPARATORS = re.compile(r"[\s-]+")


def read_text_safe(path: PathLike) -> Optional[str]:
    """Read a UTF-8 text file, returning None when it cannot be read."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        logger.debug(f"Unable to read {path}: {error}")
        return None


def file_exists(path: PathLike) -> bool:
    try:
        return Path(path).is_file()
    except OSError:
        return False


def directory_exists(path: PathLike) -> bool:
    try:
        return Path(path).is_dir()
    except OSError:
        return False


def list_subdirectories(path: PathLike) -> List[str]:
    """List immediate subdirectory names of ``path`` in sorted order.

    Args:
        path: Directory to list.

    Returns:
        Sorted directory names, or an empty list when ``path`` is missing.
    """
    try:
        return sorted(entry.name for entry in Path(path).iterdir() if entry.is_dir())
    except OSError:
        return []


def list_markdown_files(path: PathLike) -> List[str]:
    """List ``*.md`` file names directly inside ``path`` in sorted order."""
    try:
        return sorted(
            entry.name
            for entry in Path(path).iterdir()
            if entry.is_file() and entry.name.endswith(".md")
        )
    except OSError:
        return []


def file_mtime(path: PathLike) -> Optional[float]:
    try:
        return Path(path).stat().st_mtime
    except OSError:
        return None


def normalize_token(value: Any) -> str:
    """Lowercase and trim a string, folding whitespace and dashes to ``_``."""
    if not isinstance(value, str):
        return ""
    return _TOKEN_SEPARATORS.sub("_", value.strip().lower())


def clamp_index(value: Any, length: Any) -> int:
    """Clamp ``value`` into ``[0, length - 1]``.

    Non-numeric or non-finite input and an empty length all give 0.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0
    if isinstance(length, bool) or not isinstance(length, (int, float)) or not math.isfinite(length):
        return 0
    if length <= 0:
        return 0
    return max(0, min(int(length) - 1, math.floor(value)))


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_timestamp(value: Any) -> Optional[str]:
    """Coerce a YAML timestamp value into a string.

    PyYAML turns unquoted ISO timestamps into ``datetime`` objects; those are
    rendered back to ISO-8601. Non-empty strings are kept as they are.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, (datetime, date)):
        return to_iso_timestamp(value)
    return str(value)


def to_iso_timestamp(value: Any) -> Optional[str]:
    """Parse ``value`` and return an ISO-8601 UTC string, or None."""
    parsed = _parse_datetime(value)
    if parsed is None:
        return None
    return parsed.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def timestamp_value(value: Any) -> float:
    """Return epoch seconds for sorting; unparseable values sort as 0."""
    parsed = _parse_datetime(value)
    if parsed is None:
        return 0.0
    return parsed.timestamp()


def mtime_to_iso(mtime: Optional[float]) -> Optional[str]:
    if mtime is None:
        return None
    return to_iso_timestamp(datetime.fromtimestamp(mtime, tz=timezone.utc))


def format_time(value: Any) -> str:
    """Format a timestamp as local wall-clock time.

    Args:
        value: ISO string, datetime or anything else.

    Returns:
        ``"n/a"`` for empty input, ``HH:MM:SS`` in local time for anything
        parseable, and the raw value as a string otherwise.
    """
    if not value:
        return "n/a"
    parsed = _parse_datetime(value)
    if parsed is None:
        return str(value)
    return parsed.astimezone().strftime("%H:%M:%S")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
