"""File system monitoring for flow workspaces.

Watchdog observers run on their own threads; every relevant event is handed
to the asyncio loop and coalesced by a ``DebouncedTrigger`` so a burst of
writes produces a single refresh.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from ..exceptions import WatchError
from ..utils import directory_exists

logger = logging.getLogger(__name__)

WATCH_TARGETS: Dict[str, List[str]] = {
    "fire": ["state.yaml", "intents", "runs", "standards"],
    "aidlc": ["project.yaml", "intents", "bolts", "standards"],
    "simple": [],
}

IGNORED_EVENT_TYPES = ("opened", "closed", "closed_no_write")


def default_observer_factory():
    """Create the observer best suited to this platform."""
    observer_class = Observer if sys.platform == "darwin" else PollingObserver
    return observer_class()


class DebouncedTrigger:
    """Coalesce repeated triggers into one delayed callback.

    Each ``trigger`` restarts the timer; the callback runs once the timer
    expires without another trigger. Must be triggered from the event loop
    thread; watchdog threads use ``trigger_threadsafe``.
    """

    def __init__(self, callback: Callable[[], Any], delay_ms: int,
                 loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.callback = callback
        self.delay_ms = delay_ms
        self.loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None

    def _fire(self) -> None:
        self._handle = None
        self.callback()

    def trigger(self) -> None:
        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = self.loop.call_later(self.delay_ms / 1000, self._fire)

    def trigger_threadsafe(self) -> None:
        if self.loop is None or self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.trigger)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def is_pending(self) -> bool:
        return self._handle is not None


def get_watch_targets(flow: str, root_path: Union[str, Path]) -> List[Path]:
    """Return the paths under ``root_path`` whose changes matter for ``flow``.

    The Simple flow watches its whole root.
    """
    root = Path(root_path)
    names = WATCH_TARGETS.get(flow, [])
    if not names:
        return [root]
    return [root / name for name in names]


def is_relevant_path(path: Union[str, Path], targets: Iterable[Path]) -> bool:
    candidate = Path(path)
    for target in targets:
        if candidate == target or target in candidate.parents:
            return True
    return False


class WorkspaceEventHandler(FileSystemEventHandler):
    """Forward relevant events under one watch root to the debouncer."""

    def __init__(self, targets: List[Path], debounced: DebouncedTrigger):
        self.targets = targets
        self.debounced = debounced

    def on_any_event(self, event: FileSystemEvent):
        if event.event_type in IGNORED_EVENT_TYPES:
            return
        paths = [event.src_path]
        dest_path = getattr(event, "dest_path", "")
        if dest_path:
            paths.append(dest_path)
        if any(is_relevant_path(path, self.targets) for path in paths):
            logger.debug(f"[Watcher] {event.event_type}: {event.src_path}")
            self.debounced.trigger_threadsafe()


class WatchRuntime:
    """Watch one or more flow roots and request debounced refreshes.

    Failures while scheduling observers are reported through ``on_error`` as
    ``WatchError`` values; the runtime never raises them to the caller.
    """

    def __init__(
        self,
        root_paths: Iterable[Union[str, Path]],
        on_refresh: Callable[[], Any],
        on_error: Optional[Callable[[WatchError], Any]] = None,
        debounce_ms: int = 250,
        flow: str = "fire",
        observer_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        """Initialize the runtime.

        Args:
            root_paths: Flow root directories; duplicates are dropped.
            on_refresh: Called on the event loop after the debounce delay.
            on_error: Receives watch failures.
            debounce_ms: Quiet period before ``on_refresh`` runs.
            flow: Flow id selecting the watch targets.
            observer_factory: Creates watchdog observers.
        """
        unique: List[Path] = []
        for root in root_paths:
            path = Path(root)
            if path not in unique:
                unique.append(path)
        if not unique:
            raise ValueError("at least one root path is required for the watch runtime")

        self.root_paths = unique
        self.flow = flow
        self.on_error = on_error
        self.observer_factory = observer_factory or default_observer_factory
        self._debounced = DebouncedTrigger(on_refresh, debounce_ms)
        self._observers: List[Any] = []
        self._started = False

    def _report(self, error: WatchError) -> None:
        logger.warning(f"[Watcher] {error}")
        if self.on_error is not None:
            self.on_error(error)

    def start(self) -> None:
        """Start observers for every root; calling it twice is a no-op."""
        if self._started:
            return
        self._started = True

        try:
            self._debounced.loop = asyncio.get_running_loop()
        except RuntimeError:
            self._debounced.loop = None

        for root in self.root_paths:
            if not directory_exists(root):
                logger.debug(f"[Watcher] Skipping missing root: {root}")
                continue
            handler = WorkspaceEventHandler(get_watch_targets(self.flow, root), self._debounced)
            try:
                observer = self.observer_factory()
                observer.schedule(handler, str(root), recursive=True)
                observer.start()
            except (OSError, RuntimeError) as error:
                self._report(WatchError(
                    f"Unable to watch {root}: {error}",
                    path=str(root),
                    hint="Changes will still be picked up by periodic refresh.",
                ))
                continue
            logger.debug(f"[Watcher] Watching {root}")
            self._observers.append(observer)

    def close(self) -> None:
        """Cancel any pending refresh and stop all observers."""
        self._debounced.cancel()
        observers, self._observers = self._observers, []
        for observer in observers:
            try:
                observer.stop()
                observer.join()
            except RuntimeError as error:
                logger.debug(f"[Watcher] Error stopping observer: {error}")
        self._started = False

    def is_active(self) -> bool:
        return self._started

    def has_pending_refresh(self) -> bool:
        return self._debounced.is_pending()
