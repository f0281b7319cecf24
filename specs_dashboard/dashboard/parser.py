"""Workspace parsing front end.

``WorkspaceParser`` is the single object the orchestrator talks to: it maps a
flow id onto the matching flow parser, picks the git worktree to show,
attaches the git change set and the worktree list to every successful
snapshot and reports the directories worth watching.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from ..git import list_git_changes
from ..utils import directory_exists
from ..worktrees import (
    Worktree,
    WorktreeDiscovery,
    discover_git_worktrees,
    fallback_worktree,
    pick_worktree,
)
from .aidlc import parse_aidlc_dashboard
from .detect import detect_available_flows, get_flow_marker_path
from .fire import parse_fire_dashboard
from .models import DashboardError, GitChangeSet, ParseResult, WorktreeItem, WorktreeSet
from .simple import parse_simple_dashboard

logger = logging.getLogger(__name__)

FLOW_PARSERS: Dict[str, Callable[[Path], ParseResult]] = {
    "fire": parse_fire_dashboard,
    "aidlc": parse_aidlc_dashboard,
    "simple": parse_simple_dashboard,
}

MAX_WORKTREE_WATCH_ROOTS = 12
WORKTREE_ACTIVITY_TTL_SECONDS = 2.0


def _activity(flow: str, snapshot) -> Dict[str, list]:
    if flow == "fire":
        return {"active_runs": list(snapshot.active_runs)}
    if flow == "aidlc":
        return {"active_bolts": list(snapshot.active_bolts)}
    return {"active_specs": list(snapshot.active_specs)}


class WorkspaceParser:
    """Parser for one workspace across every supported flow and worktree."""

    def __init__(
        self,
        workspace_path: Union[str, Path],
        include_git: bool = True,
        git_collector: Optional[Callable[[Path], GitChangeSet]] = None,
        worktree_selector: Optional[str] = None,
        worktree_discoverer: Optional[Callable[[Path], WorktreeDiscovery]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the parser with workspace path.

        Args:
            workspace_path: Directory holding the flow marker folders.
            include_git: Attach a git change set to each snapshot and list
                the repository's worktrees.
            git_collector: Replacement for ``list_git_changes``.
            worktree_selector: Worktree id, path, branch or name to show
                instead of the one holding ``workspace_path``.
            worktree_discoverer: Replacement for ``discover_git_worktrees``.
            clock: Monotonic clock for the worktree activity cache.
        """
        self.workspace_path = Path(workspace_path).resolve()
        self.include_git = include_git
        self.git_collector = git_collector or list_git_changes
        self.worktree_selector = worktree_selector
        self.worktree_discoverer = worktree_discoverer or discover_git_worktrees
        self.clock = clock
        self.selected_worktree_id: Optional[str] = None
        self.worktree_set: Optional[WorktreeSet] = None
        self._activity_cache: Dict[str, Tuple[float, WorktreeItem]] = {}

    # Worktrees

    def _discover(self) -> WorktreeDiscovery:
        if not self.include_git:
            return WorktreeDiscovery(worktrees=[fallback_worktree(self.workspace_path)])
        return self.worktree_discoverer(self.workspace_path)

    def _workspace_for(self, worktree: Worktree, current: Optional[Worktree]) -> Path:
        """Map the workspace directory into ``worktree``.

        A workspace below its worktree root keeps the same relative location
        in every other worktree.
        """
        if current is None:
            return Path(worktree.path)
        try:
            relative = self.workspace_path.relative_to(current.path)
        except ValueError:
            return Path(worktree.path) if worktree.id != current.id else self.workspace_path
        return Path(worktree.path) / relative

    def _describe(
        self,
        flow: str,
        worktree: Worktree,
        workspace: Path,
        selected: bool,
        result: Optional[ParseResult] = None,
    ) -> WorktreeItem:
        base = dict(
            id=worktree.id,
            path=worktree.path,
            workspace_path=str(workspace),
            name=worktree.name,
            branch=worktree.branch,
            display_branch=worktree.display_branch,
            detached=worktree.detached,
            is_main_branch=worktree.is_main_branch,
            is_current_path=worktree.is_current_path,
            is_selected=selected,
        )
        if flow not in detect_available_flows(workspace):
            return WorktreeItem(**base)

        if result is None:
            cache_key = f"{flow}:{worktree.id}:{workspace}"
            cached = self._activity_cache.get(cache_key)
            now = self.clock()
            if cached is not None and now - cached[0] < WORKTREE_ACTIVITY_TTL_SECONDS:
                return cached[1].model_copy(update={"is_selected": selected})
            item = self._describe(flow, worktree, workspace, selected, FLOW_PARSERS[flow](workspace))
            self._activity_cache[cache_key] = (now, item)
            return item

        if not result.ok or result.snapshot is None:
            return WorktreeItem(**base, flow_available=True, status="error", error=result.error)
        activity = _activity(flow, result.snapshot)
        active_count = sum(len(items) for items in activity.values())
        return WorktreeItem(**base, flow_available=True, status="ready", active_count=active_count, **activity)

    def select_worktree(self, worktree_id: str) -> bool:
        """Show the worktree with ``worktree_id`` from the next parse on.

        Returns:
            True when the selection changed.
        """
        if worktree_id == self.selected_worktree_id:
            return False
        self.selected_worktree_id = worktree_id
        logger.debug(f"Selected worktree {worktree_id}")
        return True

    # Parsing

    def parse(self, flow: str) -> ParseResult:
        """Parse the selected worktree for ``flow``.

        Returns:
            The flow parser's result, with ``git_changes`` and ``worktrees``
            filled in on success, or an ``UNSUPPORTED_FLOW`` failure for
            unknown ids.
        """
        parse_flow = FLOW_PARSERS.get(flow)
        if parse_flow is None:
            return ParseResult.failure(DashboardError(
                code="UNSUPPORTED_FLOW",
                message=f'Flow "{flow}" is not supported.',
            ))

        discovery = self._discover()
        current = next((wt for wt in discovery.worktrees if wt.is_current_path), None)
        selected = pick_worktree(
            discovery.worktrees,
            self.selected_worktree_id or self.worktree_selector,
            self.workspace_path,
        )
        if selected is None:
            return ParseResult.failure(DashboardError(
                code="WORKTREE_NOT_FOUND",
                message="No selectable worktree was found for dashboard parsing.",
            ))
        self.selected_worktree_id = selected.id

        workspace = self._workspace_for(selected, current)
        result = parse_flow(workspace)
        items = [
            self._describe(
                flow,
                wt,
                self._workspace_for(wt, current),
                wt.id == selected.id,
                result if wt.id == selected.id else None,
            )
            for wt in discovery.worktrees
        ]
        self.worktree_set = WorktreeSet(
            flow=flow,
            source=discovery.source,
            is_git_repo=discovery.is_git_repo,
            selected_worktree_id=selected.id,
            error=discovery.error,
            items=items,
        )

        if not result.ok or result.snapshot is None:
            error = result.error or DashboardError(
                code="PARSE_ERROR",
                message="Unable to parse the selected worktree.",
            )
            if discovery.is_git_repo and len(discovery.worktrees) > 1:
                where = f"worktree: {selected.display_branch} ({selected.path})"
                details = f"{where} | {error.details}" if error.details else where
                error = error.model_copy(update={"details": details})
            return ParseResult.failure(error)

        update = {"worktrees": self.worktree_set}
        if self.include_git:
            changes = self.git_collector(workspace)
            logger.debug(f"Attached git changes for {flow}: {changes.counts.total} files")
            update["git_changes"] = changes
        return ParseResult.success(result.snapshot.model_copy(update=update))

    def root_paths(self, flow: str) -> List[Path]:
        """Directories to watch for ``flow``.

        The selected worktree's marker directory comes first, then every other
        worktree holding the flow marker, busiest first, capped at
        ``MAX_WORKTREE_WATCH_ROOTS``.
        """
        if flow not in FLOW_PARSERS:
            return [self.workspace_path]
        fallback = [get_flow_marker_path(self.workspace_path, flow)]
        worktree_set = self.worktree_set
        if worktree_set is None or worktree_set.flow != flow:
            return fallback

        roots: List[Path] = []
        ordered = sorted(worktree_set.items, key=lambda item: (not item.is_selected, -item.active_count))
        for item in ordered:
            if not item.is_selected and not item.flow_available:
                continue
            root = get_flow_marker_path(item.workspace_path, flow)
            if root not in roots and directory_exists(root):
                roots.append(root)
        return roots[:MAX_WORKTREE_WATCH_ROOTS] or fallback
