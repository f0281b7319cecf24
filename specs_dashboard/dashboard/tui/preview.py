"""File and diff previews.

Preview text is loaded asynchronously (``aiofiles`` for files, a worker
thread for git) and cached by a key that changes whenever the file does.
``build_preview_lines`` then turns the cached raw lines into numbered,
colored ``Line`` values.
"""

import asyncio
import logging
import os
import re
from collections import OrderedDict
from typing import List, Optional, Tuple

import aiofiles

from ...git import load_git_commit_preview, load_git_diff_preview
from ...utils import clamp_index
from .files import FileEntry
from .overlays import colorize_markdown_line
from .text import Line, sanitize_render_line, truncate

logger = logging.getLogger(__name__)

MAX_PREVIEW_CACHE_ENTRIES = 64
MAX_PREVIEW_LINES = 300

_LINE_SPLIT = re.compile(r"\r?\n")


class PreviewCache:
    """Least-recently-used cache of raw preview lines."""

    def __init__(self, max_entries: int = MAX_PREVIEW_CACHE_ENTRIES) -> None:
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, List[str]]" = OrderedDict()

    def get(self, key: Optional[str]) -> Optional[List[str]]:
        if key is None or key not in self._entries:
            return None
        self._entries.move_to_end(key)
        return self._entries[key]

    def set(self, key: Optional[str], lines: List[str]) -> None:
        if key is None:
            return
        self._entries[key] = lines
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def is_git_preview(entry: FileEntry) -> bool:
    return entry.preview_type in ("git-diff", "git-commit")


def file_cache_key(path: str) -> Optional[str]:
    if not path or not path.strip():
        return None
    try:
        stat = os.stat(path)
    except OSError:
        return f"file:{path}:missing"
    return f"file:{path}:{stat.st_size}:{int(stat.st_mtime * 1000)}"


def git_cache_key(entry: FileEntry) -> str:
    if entry.preview_type == "git-commit":
        return f"git-commit:{entry.repo_root}:{entry.commit_hash}"
    return f"git-diff:{entry.repo_root}:{entry.bucket}:{entry.relative_path}:{entry.path}"


def preview_cache_key(entry: FileEntry) -> Optional[str]:
    return git_cache_key(entry) if is_git_preview(entry) else file_cache_key(entry.path)


def split_lines(text: str) -> List[str]:
    return _LINE_SPLIT.split(text or "")


def load_git_preview_text(entry: FileEntry) -> str:
    if entry.preview_type == "git-commit":
        return load_git_commit_preview(entry.repo_root, entry.commit_hash)
    return load_git_diff_preview(entry.repo_root, entry.relative_path, entry.bucket, entry.path)


async def load_preview_content(entry: FileEntry, cache: PreviewCache) -> Tuple[Optional[List[str]], Optional[str]]:
    """Load raw preview lines for ``entry``, using ``cache`` when possible.

    Returns:
        ``(lines, None)`` on success or ``(None, message)`` when a file could
        not be read. Git failures come back as ``[git]`` message lines.
    """
    key = preview_cache_key(entry)
    cached = cache.get(key)
    if cached is not None:
        return cached, None

    if is_git_preview(entry):
        loop = asyncio.get_running_loop()
        text = await loop.run_in_executor(None, load_git_preview_text, entry)
    else:
        try:
            async with aiofiles.open(entry.path, mode="r", encoding="utf-8") as handle:
                text = await handle.read()
        except (OSError, UnicodeDecodeError) as error:
            logger.debug(f"Preview read failed for {entry.path}: {error}")
            return None, f"Unable to read {entry.label or entry.path}: {error}"

    lines = split_lines(text)
    cache.set(key, lines)
    return lines, None


def _diff_style(line: str) -> Tuple[Optional[str], bool]:
    if line.startswith("+++ ") or line.startswith("--- ") or line.startswith("diff --git"):
        return "cyan", True
    if line.startswith("@@"):
        return "magenta", True
    if line.startswith("+"):
        return "green", False
    if line.startswith("-"):
        return "red", False
    return None, False


def preview_body_length(raw_lines: Optional[List[str]], full_document: bool = False) -> int:
    """Number of body lines ``build_preview_lines`` produces for ``raw_lines``."""
    if not raw_lines:
        return 0
    if full_document or len(raw_lines) <= MAX_PREVIEW_LINES:
        return len(raw_lines)
    return MAX_PREVIEW_LINES + 1


def build_preview_lines(entry: Optional[FileEntry], width: int, scroll_offset: int,
                        raw_lines: Optional[List[str]], error: Optional[str] = None,
                        full_document: bool = False) -> List[Line]:
    """Format preview content as numbered, colored lines.

    Args:
        entry: The previewed target, or None when nothing is selected.
        width: Column budget.
        scroll_offset: Number of body lines to skip; clamped to the body.
        raw_lines: Loaded content, or None while loading.
        error: Read failure message, shown in place of the content.
        full_document: Show every line instead of the first
            ``MAX_PREVIEW_LINES``.
    """
    if entry is None:
        return [Line(text=truncate("No file selected", width), color="dim")]
    if error:
        return [Line(text=truncate(error, width), color="red")]
    if raw_lines is None:
        return [Line(text=truncate(f"Loading {entry.label}...", width), color="cyan")]

    git_preview = is_git_preview(entry)
    if entry.preview_type == "git-commit":
        head_text = f"commit: {entry.commit_hash or entry.path}"
    else:
        head_text = f"{'diff' if git_preview else 'file'}: {entry.path}"
    head = Line(text=truncate(head_text, width), color="cyan", bold=True)

    limit = len(raw_lines) if full_document else MAX_PREVIEW_LINES
    capped = [sanitize_render_line(line) for line in raw_lines[:limit]]
    hidden = max(0, len(raw_lines) - len(capped))

    body: List[Line] = []
    in_code_block = False
    for index, line in enumerate(capped):
        if git_preview:
            color, bold = _diff_style(line)
        else:
            color, bold, toggles = colorize_markdown_line(line, in_code_block)
            if toggles:
                in_code_block = not in_code_block
        body.append(Line(text=truncate(f"{index + 1:4d} | {line}", width), color=color, bold=bold))

    if hidden > 0:
        body.append(Line(text=truncate(f"... {hidden} additional lines hidden", width), color="dim"))

    offset = clamp_index(scroll_offset, len(body))
    return [head, Line()] + body[offset:]
