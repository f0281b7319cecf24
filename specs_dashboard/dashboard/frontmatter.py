"""YAML front-matter extraction for Markdown artifacts.

Artifacts such as ``bolt.md``, ``brief.md`` and ``run.md`` start with a YAML
block between two ``---`` lines. Parse failures never abort a scan: a file
whose header is missing, malformed or not a mapping yields an empty dict.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

import yaml

from ..utils import read_text_safe

logger = logging.getLogger(__name__)

FRONTMATTER_PATTERN = re.compile(r"^---\r?\n(.*?)\r?\n---", re.DOTALL)


def extract_frontmatter_block(content: Optional[str]) -> Optional[str]:
    """Return the raw YAML text between the leading ``---`` delimiters."""
    if not content:
        return None
    match = FRONTMATTER_PATTERN.match(content)
    return match.group(1) if match else None


def parse_frontmatter(content: Optional[str]) -> Dict[str, Any]:
    """Parse the front-matter block of ``content`` into a dict.

    Args:
        content: Full Markdown text, or None.

    Returns:
        The decoded mapping, or ``{}`` when there is no block, the YAML is
        invalid, or it does not decode to a mapping.
    """
    block = extract_frontmatter_block(content)
    if block is None:
        return {}
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as error:
        logger.debug(f"Ignoring malformed front-matter: {error}")
        return {}
    return data if isinstance(data, dict) else {}


def read_frontmatter(path: Union[str, Path]) -> Dict[str, Any]:
    return parse_frontmatter(read_text_safe(path))


def load_yaml_file(path: Union[str, Path]) -> Optional[Dict[str, Any]]:
    """Load a standalone YAML mapping, returning None on any failure."""
    content = read_text_safe(path)
    if content is None:
        return None
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as error:
        logger.debug(f"Ignoring malformed YAML in {path}: {error}")
        return None
    return data if isinstance(data, dict) else None


def first_string(record: Any, keys: Iterable[str]) -> Optional[str]:
    """Return the first non-blank string value found under ``keys``."""
    if not isinstance(record, dict):
        return None
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def string_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None
