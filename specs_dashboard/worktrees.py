"""Git worktree discovery and selection.

Worktrees are listed with ``git worktree list --porcelain`` through the same
``run_git`` wrapper the change collector uses. Outside a repository, or when
git fails, the workspace itself stands in as a single ``[non-git]`` worktree
so callers never special-case a missing repository.
"""

import logging
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional, Sequence, Union

from specs_dashboard.git import run_git

logger = logging.getLogger(__name__)

MAIN_BRANCHES = ("main", "master")

_UNSAFE_ID_CHARS = re.compile(r"[^a-z0-9/_-]+")
_BLOCK_SEPARATOR = re.compile(r"\n\s*\n")


@dataclass(frozen=True)
class Worktree:
    """One checkout listed by ``git worktree list``."""

    id: str
    path: str
    name: str
    branch: str = ""
    display_branch: str = "[unknown]"
    head: str = ""
    detached: bool = False
    prunable: bool = False
    locked: bool = False
    is_main_branch: bool = False
    is_current_path: bool = False


@dataclass
class WorktreeDiscovery:
    """Outcome of ``discover_git_worktrees``.

    Attributes:
        worktrees: Sorted worktrees; never empty.
        source: ``git`` when the list came from git, ``fallback`` otherwise.
        is_git_repo: Whether the workspace sits inside a git work tree.
        error: Git's error message when listing failed.
    """

    worktrees: List[Worktree] = field(default_factory=list)
    source: str = "fallback"
    is_git_repo: bool = False
    error: Optional[str] = None


def normalize_path(value: Union[str, Path, None]) -> Optional[str]:
    if value is None or not str(value).strip():
        return None
    return str(Path(str(value).strip()).resolve())


def parse_branch_name(ref: Optional[str]) -> str:
    """Turn ``refs/heads/feature/x`` into ``feature/x``."""
    if not ref:
        return ""
    ref = ref.strip()
    if ref.startswith("refs/heads/"):
        return ref[len("refs/heads/"):]
    return ref


def build_worktree_id(path: str) -> str:
    return _UNSAFE_ID_CHARS.sub("-", path.lower())


def _line_value(lines: Sequence[str], prefix: str) -> str:
    for line in lines:
        if line.startswith(prefix):
            return line[len(prefix):].strip()
    return ""


def fallback_worktree(workspace_path: Union[str, Path, None]) -> Worktree:
    """Single stand-in worktree for a workspace outside git."""
    path = normalize_path(workspace_path) or os.getcwd()
    return Worktree(
        id=build_worktree_id(path),
        path=path,
        name=os.path.basename(path) or path,
        display_branch="[non-git]",
        is_current_path=True,
    )


def parse_worktree_porcelain(raw: Optional[str], fallback_path: Union[str, Path, None] = None) -> List[Worktree]:
    """Parse ``git worktree list --porcelain`` output.

    Args:
        raw: Porcelain text; blocks are separated by blank lines.
        fallback_path: Workspace used when nothing could be parsed.

    Returns:
        Worktrees in git's order, or a single fallback worktree.
    """
    worktrees: List[Worktree] = []
    for block in _BLOCK_SEPARATOR.split(raw or ""):
        lines = [line.strip() for line in block.splitlines() if line.strip()]
        path = normalize_path(_line_value(lines, "worktree "))
        if path is None:
            continue

        branch = parse_branch_name(_line_value(lines, "branch "))
        head = _line_value(lines, "HEAD ")
        detached = "detached" in lines
        if detached:
            display_branch = f"[detached:{head[:7] or 'unknown'}]"
        else:
            display_branch = branch or "[unknown]"

        worktrees.append(Worktree(
            id=build_worktree_id(path),
            path=path,
            name=os.path.basename(path) or path,
            branch=branch,
            display_branch=display_branch,
            head=head,
            detached=detached,
            prunable=any(line.startswith("prunable") for line in lines),
            locked=any(line.startswith("locked") for line in lines),
            is_main_branch=branch in MAIN_BRANCHES,
        ))

    if not worktrees:
        return [fallback_worktree(fallback_path)]
    return worktrees


def _contains(worktree_path: str, path: str) -> bool:
    return path == worktree_path or Path(worktree_path) in Path(path).parents


def mark_current_worktree(worktrees: Sequence[Worktree], workspace_path: Union[str, Path, None]) -> List[Worktree]:
    """Flag the worktree that holds ``workspace_path``.

    The deepest containing worktree wins so a worktree nested inside the main
    checkout is matched correctly. With no match the first worktree is marked.
    """
    current = normalize_path(workspace_path)
    containing = [wt for wt in worktrees if current is not None and _contains(wt.path, current)]
    if containing:
        chosen: Optional[str] = max(containing, key=lambda wt: len(wt.path)).id
    else:
        chosen = worktrees[0].id if worktrees else None
    return [replace(wt, is_current_path=wt.id == chosen) for wt in worktrees]


def sort_worktrees(worktrees: Sequence[Worktree]) -> List[Worktree]:
    """Current worktree first, then main branches, then by branch label."""
    return sorted(
        worktrees,
        key=lambda wt: (not wt.is_current_path, not wt.is_main_branch, wt.display_branch or wt.name),
    )


def is_git_workspace(workspace_path: Union[str, Path]) -> bool:
    if not Path(workspace_path).is_dir():
        return False
    result = run_git(["rev-parse", "--is-inside-work-tree"], workspace_path)
    return result.ok and result.stdout.strip() == "true"


def discover_git_worktrees(workspace_path: Union[str, Path]) -> WorktreeDiscovery:
    """List the worktrees of the repository containing ``workspace_path``.

    Returns:
        WorktreeDiscovery; a fallback single-worktree list when the workspace
        is not in a repository or git cannot list worktrees.
    """
    if not is_git_workspace(workspace_path):
        return WorktreeDiscovery(worktrees=[fallback_worktree(workspace_path)])

    result = run_git(["worktree", "list", "--porcelain"], workspace_path)
    if not result.ok:
        logger.warning(f"Unable to list git worktrees: {result.error}")
        return WorktreeDiscovery(
            worktrees=[fallback_worktree(workspace_path)],
            is_git_repo=True,
            error=result.error,
        )

    parsed = parse_worktree_porcelain(result.stdout, workspace_path)
    worktrees = sort_worktrees(mark_current_worktree(parsed, workspace_path))
    logger.debug(f"Discovered {len(worktrees)} worktree(s) for {workspace_path}")
    return WorktreeDiscovery(worktrees=worktrees, source="git", is_git_repo=True)


def pick_worktree(
    worktrees: Sequence[Worktree],
    selector: Optional[str] = None,
    workspace_path: Union[str, Path, None] = None,
) -> Optional[Worktree]:
    """Choose the worktree to show.

    Args:
        worktrees: Candidates.
        selector: Worktree id, path, branch or directory name, in that order
            of precedence.
        workspace_path: Preferred when the selector matches nothing.

    Returns:
        The matching worktree, else the one at ``workspace_path``, else the
        one marked current, else the first; None for an empty list.
    """
    if not worktrees:
        return None

    wanted = (selector or "").strip()
    if wanted:
        wanted_path = normalize_path(wanted)
        matchers = (
            lambda wt: wt.id == wanted,
            lambda wt: wt.path == wanted_path,
            lambda wt: wanted in (wt.branch, wt.display_branch),
            lambda wt: wt.name == wanted,
        )
        for matches in matchers:
            found = next((wt for wt in worktrees if matches(wt)), None)
            if found is not None:
                return found
        logger.debug(f"No worktree matches {wanted!r}; using the current one")

    current_path = normalize_path(workspace_path)
    if current_path is not None:
        found = next((wt for wt in worktrees if wt.path == current_path), None)
        if found is not None:
            return found

    return next((wt for wt in worktrees if wt.is_current_path), worktrees[0])
