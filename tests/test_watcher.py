import asyncio
from pathlib import Path

import pytest
from watchdog.events import FileModifiedEvent, FileMovedEvent

from specs_dashboard.dashboard.watcher import (
    DebouncedTrigger,
    WatchRuntime,
    WorkspaceEventHandler,
    get_watch_targets,
    is_relevant_path,
)
from specs_dashboard.exceptions import WatchError


class FakeObserver:
    def __init__(self, fail=False):
        self.fail = fail
        self.scheduled = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        if self.fail:
            raise OSError("inotify limit reached")
        self.scheduled.append((handler, path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self):
        pass


class RecordingTrigger:
    def __init__(self):
        self.calls = 0

    def trigger_threadsafe(self):
        self.calls += 1


def test_debounced_trigger_coalesces_bursts():
    calls = []

    async def scenario():
        trigger = DebouncedTrigger(lambda: calls.append("refresh"), 20)
        for _ in range(5):
            trigger.trigger()
        assert trigger.is_pending()
        await asyncio.sleep(0.1)
        assert not trigger.is_pending()

    asyncio.run(scenario())
    assert calls == ["refresh"]


def test_debounced_trigger_cancel():
    calls = []

    async def scenario():
        trigger = DebouncedTrigger(lambda: calls.append("refresh"), 20)
        trigger.trigger()
        trigger.cancel()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert calls == []


def test_watch_targets_per_flow(tmp_path):
    assert get_watch_targets("fire", tmp_path) == [
        tmp_path / "state.yaml", tmp_path / "intents", tmp_path / "runs", tmp_path / "standards",
    ]
    assert get_watch_targets("simple", tmp_path) == [tmp_path]


def test_relevant_paths(tmp_path):
    targets = get_watch_targets("fire", tmp_path)

    assert is_relevant_path(tmp_path / "state.yaml", targets)
    assert is_relevant_path(tmp_path / "runs" / "run-001" / "run.md", targets)
    assert not is_relevant_path(tmp_path / "notes.txt", targets)


def test_handler_forwards_relevant_events(tmp_path):
    trigger = RecordingTrigger()
    handler = WorkspaceEventHandler(get_watch_targets("fire", tmp_path), trigger)

    handler.on_any_event(FileModifiedEvent(str(tmp_path / "state.yaml")))
    handler.on_any_event(FileModifiedEvent(str(tmp_path / "scratch.txt")))
    handler.on_any_event(FileMovedEvent(str(tmp_path / "tmp.yaml"), str(tmp_path / "runs" / "run.md")))

    assert trigger.calls == 2


def test_runtime_requires_a_root():
    with pytest.raises(ValueError):
        WatchRuntime([], on_refresh=lambda: None)


def test_runtime_schedules_existing_roots_once(tmp_path):
    observers = []

    def factory():
        observers.append(FakeObserver())
        return observers[-1]

    runtime = WatchRuntime(
        [tmp_path, tmp_path, tmp_path / "missing"],
        on_refresh=lambda: None,
        observer_factory=factory,
    )
    runtime.start()
    runtime.start()

    assert len(observers) == 1
    assert observers[0].scheduled[0][1:] == (str(tmp_path), True)
    assert observers[0].started
    assert runtime.is_active()

    runtime.close()
    assert observers[0].stopped
    assert not runtime.is_active()


def test_runtime_reports_schedule_failures(tmp_path):
    errors = []
    runtime = WatchRuntime(
        [tmp_path],
        on_refresh=lambda: None,
        on_error=errors.append,
        observer_factory=lambda: FakeObserver(fail=True),
    )

    runtime.start()

    assert len(errors) == 1
    assert isinstance(errors[0], WatchError)
    assert errors[0].code == "WATCH_ERROR"
    assert errors[0].path == str(Path(tmp_path))
