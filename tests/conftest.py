import threading
from pathlib import Path

import pytest

from hotrefresh.config import ScopeConfig
from hotrefresh.events import ChangeEvent, ChangeKind
from hotrefresh.handlers import RefreshHandler
from hotrefresh.targets import TargetResolver

ROOT = Path("/work/build/classes")


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingHandler(RefreshHandler):
    handles_removal = True

    def __init__(self, handler_id, scopes=None, options=None, *, calls=None, fail=False, block=None):
        super().__init__(handler_id, scopes, options)
        self.calls = calls if calls is not None else []
        self.fail = fail
        self.block = block
        self.done = threading.Event()

    def on_refresh(self, target, payload):
        return self._record(("refresh", target, payload))

    def on_remove(self, target):
        return self._record(("remove", target, None))

    def _record(self, call):
        self.calls.append((self.handler_id,) + call)
        self.done.set()
        if self.block is not None:
            self.block.wait(5)
        if self.fail:
            raise RuntimeError("boom")
        return True


def event(kind, name, at, payload=None, root=ROOT):
    return ChangeEvent(kind=ChangeKind(kind), path=root / name, observed_at=at, payload=payload)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def resolver():
    return TargetResolver([ScopeConfig(scope_id="app", paths=[ROOT], collapse_nested=True)])
