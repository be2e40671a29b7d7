import os

import pytest

from conftest import RecordingHandler
from hotrefresh.config import MonitorConfig, ScopeConfig
from hotrefresh.events import ChangeKind
from hotrefresh.handlers import Dispatcher, HandlerRegistry
from hotrefresh.monitor import DirectoryMonitor
from hotrefresh.scheduler import CommandScheduler
from hotrefresh.targets import Target, TargetResolver


@pytest.fixture
def setup(tmp_path, clock):
    root = tmp_path / "classes"
    root.mkdir()
    calls = []
    scheduler = CommandScheduler(
        TargetResolver([ScopeConfig(scope_id="app", paths=[root])]),
        Dispatcher(HandlerRegistry([RecordingHandler("recorder", calls=calls)])),
        debounce_window=0.3,
        clock=clock,
    )
    config = MonitorConfig(roots=[root], include_patterns=["*.class"], read_payload=True)
    yield root, DirectoryMonitor(config, scheduler), scheduler, calls
    scheduler.shutdown()


def bump(path, content):
    path.write_bytes(content)
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 10))


def test_poll_emits_created_modified_deleted(setup):
    root, monitor, _, _ = setup
    monitor.prime()

    (root / "pkg").mkdir()
    created = root / "pkg" / "A.class"
    created.write_bytes(b"v1")
    (root / "notes.txt").write_text("ignored")
    events = monitor.poll_once()
    assert [(e.kind, e.path) for e in events] == [(ChangeKind.CREATED, created)]
    assert events[0].payload == b"v1"

    bump(created, b"v2!")
    (event,) = monitor.poll_once()
    assert event.kind is ChangeKind.MODIFIED
    assert event.payload == b"v2!"

    created.unlink()
    (event,) = monitor.poll_once()
    assert event.kind is ChangeKind.DELETED
    assert event.payload is None
    assert monitor.stats.events_emitted == 3


def test_prime_does_not_emit_existing_files(setup):
    root, monitor, scheduler, _ = setup
    (root / "A.class").write_bytes(b"v1")

    monitor.prime()

    assert monitor.poll_once() == []
    assert scheduler.pending() == {}


def test_monitor_feeds_scheduler(setup, clock):
    root, monitor, scheduler, calls = setup
    monitor.prime()

    (root / "A.class").write_bytes(b"v1")
    monitor.poll_once()
    bump(root / "A.class", b"v2!")
    monitor.poll_once()

    clock.advance(0.3)
    scheduler.fire_due()
    assert scheduler.wait_idle(2)

    assert calls == [("recorder", "refresh", Target("app", "A"), b"v2!")]
