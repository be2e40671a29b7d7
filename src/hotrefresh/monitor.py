"""Filesystem monitoring loop with a simple polling backend."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .config import MonitorConfig
from .events import ChangeEvent, ChangeKind
from .scheduler import CommandScheduler

logger = logging.getLogger(__name__)

Snapshot = Dict[Path, Tuple[float, int]]


@dataclass
class MonitorStats:
    """Counters emitted by the monitor for observability."""

    cycles: int = 0
    events_emitted: int = 0


class DirectoryMonitor:
    """Polls the watched roots and submits change events to the scheduler."""

    def __init__(self, config: MonitorConfig, scheduler: CommandScheduler):
        self._config = config
        self._scheduler = scheduler
        self._stop_event = threading.Event()
        self._snapshot: Optional[Snapshot] = None
        self._stats = MonitorStats()

    @property
    def stats(self) -> MonitorStats:
        return self._stats

    def run(self) -> None:
        """Run the monitoring loop until stopped."""

        logger.info("Starting monitor for %s", ", ".join(str(root) for root in self._config.roots))
        try:
            self.prime()
            while not self._stop_event.is_set():
                start_time = time.time()
                self.poll_once()
                self._sleep_until_next_cycle(start_time)
        except KeyboardInterrupt:
            logger.info("Monitor interrupted by user")
        finally:
            logger.info(
                "Monitor stopped after %s cycles, %s events",
                self._stats.cycles,
                self._stats.events_emitted,
            )

    def stop(self) -> None:
        """Signal the monitor to stop at the next opportunity."""

        self._stop_event.set()

    def prime(self) -> None:
        """Record the current state of the roots without emitting events."""

        self._snapshot = self._scan()

    def poll_once(self) -> List[ChangeEvent]:
        """Scan once and submit every change since the previous scan."""

        if self._snapshot is None:
            self.prime()
        previous = self._snapshot or {}
        new_snapshot = self._scan()
        observed_at = time.time()
        events = [self._with_payload(event) for event in _diff_snapshots(previous, new_snapshot, observed_at)]
        for event in events:
            self._scheduler.submit(event)
        self._snapshot = new_snapshot
        self._stats.cycles += 1
        self._stats.events_emitted += len(events)
        return events

    def _sleep_until_next_cycle(self, started_at: float) -> None:
        elapsed = time.time() - started_at
        remaining = max(self._config.poll_interval - elapsed, 0.0)
        if remaining > 0:
            self._stop_event.wait(remaining)

    def _with_payload(self, event: ChangeEvent) -> ChangeEvent:
        if not self._config.read_payload or event.kind is ChangeKind.DELETED:
            return event
        try:
            payload = event.path.read_bytes()
        except OSError as exc:
            logger.debug("Could not read %s: %s", event.path, exc)
            return event
        return ChangeEvent(
            kind=event.kind,
            path=event.path,
            observed_at=event.observed_at,
            payload=payload,
            size=event.size,
            mtime=event.mtime,
        )

    def _scan(self) -> Snapshot:
        results: Snapshot = {}
        for root in self._config.roots:
            if not root.exists():
                logger.warning("Root path %s does not exist yet; skipping scan", root)
                continue
            for path in _iter_paths(root, recursive=self._config.recursive):
                if not path.is_file():
                    continue
                if not _matches_patterns(path, self._config.include_patterns, self._config.exclude_patterns):
                    continue
                try:
                    stat = path.stat()
                except FileNotFoundError:
                    continue
                results[path] = (stat.st_mtime, stat.st_size)
        return results


def _iter_paths(root: Path, *, recursive: bool) -> Iterable[Path]:
    if recursive:
        yield from root.rglob("*")
    else:
        yield from root.glob("*")


def _matches_patterns(path: Path, include_patterns: List[str], exclude_patterns: List[str]) -> bool:
    relative = path.name
    rel_from_root = str(path)

    if exclude_patterns and any(fnmatch(relative, pat) or fnmatch(rel_from_root, pat) for pat in exclude_patterns):
        return False

    if not include_patterns:
        return True

    return any(fnmatch(relative, pat) or fnmatch(rel_from_root, pat) for pat in include_patterns)


def _diff_snapshots(old: Snapshot, new: Snapshot, observed_at: float) -> Iterable[ChangeEvent]:
    seen: Set[Path] = set()

    for path, (mtime, size) in new.items():
        if path not in old:
            yield ChangeEvent(kind=ChangeKind.CREATED, path=path, observed_at=observed_at, size=size, mtime=mtime)
        else:
            old_mtime, old_size = old[path]
            if old_mtime != mtime or old_size != size:
                yield ChangeEvent(kind=ChangeKind.MODIFIED, path=path, observed_at=observed_at, size=size, mtime=mtime)
        seen.add(path)

    for path, (mtime, size) in old.items():
        if path not in seen:
            yield ChangeEvent(kind=ChangeKind.DELETED, path=path, observed_at=observed_at, size=size, mtime=mtime)
