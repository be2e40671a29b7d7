"""Debouncing command scheduler.

Each target moves through ``IDLE -> PENDING -> DRAINING -> IDLE``. Events are
merged into the pending set under the target's own lock and push the target's
deadline ``debounce_window`` seconds into the future. A single timer thread
drains commands whose deadline has passed and starts a dispatch lane for the
target: a worker thread that runs the handlers for that target only.

Merge and drain for one target are serialized by that target's lock; targets
never wait on each other's locks or lanes. A target has at most one lane at a
time, so its dispatches never overlap: a command that becomes due while the
previous one is still being dispatched is run by the same lane as soon as that
dispatch returns. A slow handler therefore only holds back its own target.

Slots are dropped once their target is idle again, so bookkeeping only grows
with the number of targets that currently have work.
"""
from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from .commands import Command, CommandMerger, MergeOutcome
from .errors import ResolutionError, SchedulerFatal
from .events import ChangeEvent
from .handlers import DispatchResult, Dispatcher
from .targets import Target, TargetResolver

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
ResultCallback = Callable[[DispatchResult], None]


class TargetState(str, Enum):
    """Scheduling state of a single target."""

    IDLE = "idle"
    PENDING = "pending"
    DRAINING = "draining"


@dataclass
class SchedulerStats:
    """Counters emitted by the scheduler for observability."""

    received: int = 0
    dropped: int = 0
    merged: int = 0
    stale: int = 0
    drained: int = 0
    dispatched: int = 0
    failed_handlers: int = 0
    discarded: int = 0


@dataclass
class _Slot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    deadline: Optional[float] = None
    in_flight: bool = False
    # deadline passed while the previous command was still in flight
    ready: bool = False
    # removed from the slot table; holders must look the target up again
    retired: bool = False


class CommandScheduler:
    """Coalesces change events into per-target commands and dispatches them."""

    def __init__(
        self,
        resolver: TargetResolver,
        dispatcher: Dispatcher,
        *,
        debounce_window: float = 0.3,
        clock: Clock = time.monotonic,
        on_result: Optional[ResultCallback] = None,
        merger: Optional[CommandMerger] = None,
    ):
        if debounce_window < 0:
            raise ValueError("debounce_window must not be negative")
        self._resolver = resolver
        self._dispatcher = dispatcher
        self._window = debounce_window
        self._clock = clock
        self._on_result = on_result
        self._merger = merger or CommandMerger()

        self._pending: Dict[Target, Command] = {}
        self._slots: Dict[Target, _Slot] = {}
        self._arrivals = itertools.count(1)

        self._heap: List[Tuple[float, int, Target]] = []
        self._heap_seq = itertools.count()
        self._timer_cond = threading.Condition()
        self._timer_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        self._idle_cond = threading.Condition()
        self._in_flight = 0
        self._lanes: Set[threading.Thread] = set()

        self._accepting = True
        self._stats = SchedulerStats()
        self._stats_lock = threading.Lock()

    @property
    def stats(self) -> SchedulerStats:
        with self._stats_lock:
            return replace(self._stats)

    def __enter__(self) -> "CommandScheduler":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def start(self) -> None:
        """Start the timer thread that drains due commands."""

        if self._timer_thread is not None:
            return
        if not self._accepting:
            raise RuntimeError("Scheduler has been shut down")
        self._timer_thread = threading.Thread(target=self._timer_loop, name="hotrefresh-timer", daemon=True)
        self._timer_thread.start()
        logger.info("Scheduler started (debounce=%.0f ms)", self._window * 1000)

    def submit(self, event: ChangeEvent) -> Optional[Target]:
        """Merge ``event`` into the pending set.

        Returns the resolved target, or ``None`` when the event was dropped.
        Never waits for dispatch.
        """

        self._count("received")
        if not self._accepting:
            logger.debug("Scheduler stopped; dropping %s", event.describe())
            self._count("dropped")
            return None

        try:
            target = self._resolver.resolve(event)
        except ResolutionError as exc:
            logger.warning("Dropping %s: %s", event.describe(), exc)
            self._count("dropped")
            return None
        if target is None:
            logger.debug("No scope for %s", event.path)
            self._count("dropped")
            return None

        while True:
            slot = self._slot(target)
            with slot.lock:
                if slot.retired:
                    continue
                if not self._accepting:
                    self._count("dropped")
                    return None
                arrival = next(self._arrivals)
                outcome = self._merger.merge(self._pending, event, target, arrival=arrival)
                deadline = self._clock() + self._window
                slot.deadline = deadline
                slot.ready = False
                break
        self._arm(deadline, target)

        if outcome is MergeOutcome.STALE:
            self._count("stale")
        elif outcome is MergeOutcome.MERGED:
            self._count("merged")
        logger.debug("%s %s -> %s", outcome.value.capitalize(), event.describe(), target)
        return target

    def fire_due(self, now: Optional[float] = None) -> List[Command]:
        """Drain every command whose debounce deadline has passed.

        Returns the commands handed to dispatch lanes by this pass.
        """

        if now is None:
            now = self._clock()
        due: List[Target] = []
        with self._timer_cond:
            while self._heap and self._heap[0][0] <= now:
                _, _, target = heapq.heappop(self._heap)
                due.append(target)

        drained: List[Command] = []
        for target in dict.fromkeys(due):
            command = self._drain_if_due(target, now)
            if command is not None:
                drained.append(command)
                self._launch(command)
        return drained

    def pending(self) -> Dict[Target, Command]:
        """Snapshot of the commands that have not been drained yet."""

        snapshot: Dict[Target, Command] = {}
        for target in list(self._pending):
            slot = self._slots.get(target)
            if slot is None:
                continue
            with slot.lock:
                command = self._pending.get(target)
                if command is not None:
                    snapshot[target] = replace(command)
        return snapshot

    def state_of(self, target: Target) -> TargetState:
        slot = self._slots.get(target)
        if slot is None:
            return TargetState.IDLE
        with slot.lock:
            if slot.in_flight:
                return TargetState.DRAINING
            if target in self._pending:
                return TargetState.PENDING
            return TargetState.IDLE

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is pending or in flight."""

        with self._idle_cond:
            return self._idle_cond.wait_for(lambda: self._in_flight == 0 and not self._pending, timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting events and discard commands that are still pending.

        Dispatches already in flight run to completion; with ``wait`` this
        call blocks until they have.
        """

        if not self._accepting and self._stop_event.is_set():
            return
        self._accepting = False
        self._stop_event.set()
        with self._timer_cond:
            self._heap.clear()
            self._timer_cond.notify_all()
        timer = self._timer_thread
        if timer is not None and timer is not threading.current_thread():
            timer.join()

        discarded = 0
        for target in list(self._pending):
            slot = self._slots.get(target)
            if slot is None:
                continue
            with slot.lock:
                if self._pending.pop(target, None) is not None:
                    discarded += 1
                slot.deadline = None
                slot.ready = False
        if discarded:
            logger.info("Discarded %s pending command(s) on shutdown", discarded)
        self._count("discarded", discarded)

        if wait:
            with self._idle_cond:
                lanes = [lane for lane in self._lanes if lane is not threading.current_thread()]
            for lane in lanes:
                lane.join()
        with self._idle_cond:
            self._idle_cond.notify_all()
        logger.info("Scheduler stopped: %s", self.stats)

    def _slot(self, target: Target) -> _Slot:
        slot = self._slots.get(target)
        if slot is None:
            slot = self._slots.setdefault(target, _Slot())
        return slot

    def _arm(self, deadline: float, target: Target) -> None:
        with self._timer_cond:
            heapq.heappush(self._heap, (deadline, next(self._heap_seq), target))
            if self._heap[0][2] == target:
                self._timer_cond.notify()

    def _drain_if_due(self, target: Target, now: float) -> Optional[Command]:
        slot = self._slots.get(target)
        if slot is None:
            return None
        with slot.lock:
            if not self._accepting or slot.retired:
                return None
            if slot.deadline is None or slot.deadline > now:
                return None
            if target not in self._pending:
                slot.deadline = None
                return None
            if slot.in_flight:
                logger.debug("%s is due while a dispatch is in flight; deferring", target)
                slot.ready = True
                return None
            return self._take(target, slot)

    def _take(self, target: Target, slot: _Slot) -> Command:
        # caller holds slot.lock
        with self._idle_cond:
            self._in_flight += 1
        command = self._pending.pop(target)
        if command.merge_key != target:
            raise SchedulerFatal(f"Pending entry for {target} holds a command for {command.merge_key}")
        command.freeze()
        slot.deadline = None
        slot.ready = False
        slot.in_flight = True
        self._count("drained")
        return command

    def _launch(self, command: Command) -> None:
        lane = threading.Thread(
            target=self._run_dispatch,
            args=(command,),
            name=f"hotrefresh-lane-{command.target}",
            daemon=True,
        )
        with self._idle_cond:
            self._lanes.add(lane)
        lane.start()

    def _run_dispatch(self, command: Optional[Command]) -> None:
        try:
            while command is not None:
                target = command.target
                completed = False
                try:
                    result = self._dispatcher.dispatch(command)
                    completed = True
                except Exception:
                    logger.exception("Dispatch of %s failed", target)
                    completed = True
                else:
                    self._record(result)
                finally:
                    # on BaseException the follow-up is re-armed instead of run here
                    command = self._finish(target, run_follow_up=completed)
        finally:
            with self._idle_cond:
                self._lanes.discard(threading.current_thread())

    def _finish(self, target: Target, *, run_follow_up: bool = True) -> Optional[Command]:
        slot = self._slots[target]
        follow_up: Optional[Command] = None
        rearm: Optional[float] = None
        with slot.lock:
            slot.in_flight = False
            if slot.ready and self._accepting and target in self._pending:
                if run_follow_up:
                    follow_up = self._take(target, slot)
                else:
                    slot.ready = False
                    rearm = slot.deadline
            else:
                slot.ready = False
            if follow_up is None and rearm is None and target not in self._pending and slot.deadline is None:
                slot.retired = True
                if self._slots.get(target) is slot:
                    del self._slots[target]
            with self._idle_cond:
                self._in_flight -= 1
        if rearm is not None:
            self._arm(rearm, target)
        with self._idle_cond:
            self._idle_cond.notify_all()
        return follow_up

    def _record(self, result: DispatchResult) -> None:
        with self._stats_lock:
            self._stats.dispatched += 1
            self._stats.failed_handlers += len(result.failures)
        if self._on_result is None:
            return
        try:
            self._on_result(result)
        except Exception:
            logger.exception("Result callback failed for %s", result.command.target)

    def _count(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            setattr(self._stats, name, getattr(self._stats, name) + amount)

    def _timer_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.fire_due()
            except SchedulerFatal:
                logger.exception("Scheduler invariant violated; shutting down")
                self.shutdown(wait=False)
                return
            with self._timer_cond:
                if self._stop_event.is_set():
                    return
                timeout: Optional[float] = None
                if self._heap:
                    timeout = self._heap[0][0] - self._clock()
                if timeout is None or timeout > 0:
                    self._timer_cond.wait(timeout)
