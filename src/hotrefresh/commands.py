"""Refresh commands and the merge rules that fold change events into them.

A command is keyed by its :class:`~hotrefresh.targets.Target`. While a command
sits in the pending set every event for the same target is folded into it with
last-writer-wins on ``(observed_at, arrival)``: an event only replaces the
action and payload when it orders after the event that produced the current
state. Equal timestamps fall back to arrival order, so a delayed notification
from before a delete cannot resurrect the unit while a re-create that follows
the delete does.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import MutableMapping, Optional

from .errors import SchedulerFatal
from .events import ChangeEvent, ChangeKind
from .targets import Target

logger = logging.getLogger(__name__)


class CommandAction(str, Enum):
    """What a handler is asked to do with a target."""

    REFRESH = "refresh"
    REMOVE = "remove"

    @classmethod
    def for_kind(cls, kind: ChangeKind) -> "CommandAction":
        if kind is ChangeKind.DELETED:
            return cls.REMOVE
        return cls.REFRESH


class MergeOutcome(str, Enum):
    """How an event was folded into the pending set."""

    CREATED = "created"
    MERGED = "merged"
    STALE = "stale"


@dataclass(eq=False)
class Command:
    """Pending unit of work for one target.

    Commands compare and hash by target only, whatever event content they carry.
    """

    target: Target
    action: CommandAction
    last_event_at: float
    arrival: int
    payload: Optional[bytes] = None
    path: Optional[Path] = None
    event_count: int = 1
    _frozen: bool = field(default=False, repr=False)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Command):
            return NotImplemented
        return self.target == other.target

    def __hash__(self) -> int:
        return hash(self.target)

    @property
    def merge_key(self) -> Target:
        return self.target

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def supersedes(self, event: ChangeEvent, arrival: int) -> bool:
        """Return True when the current state is newer than ``event``."""

        return (self.last_event_at, self.arrival) > (event.observed_at, arrival)

    def apply(self, event: ChangeEvent, arrival: int) -> None:
        self._ensure_mutable()
        self.action = CommandAction.for_kind(event.kind)
        self.payload = event.payload if self.action is CommandAction.REFRESH else None
        self.path = event.path
        self.last_event_at = event.observed_at
        self.arrival = arrival

    def touch(self) -> None:
        self._ensure_mutable()
        self.event_count += 1

    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise SchedulerFatal(f"Command for {self.target} was modified after it was drained")


class CommandMerger:
    """Folds change events into a mapping of pending commands."""

    def merge(
        self,
        pending: MutableMapping[Target, Command],
        event: ChangeEvent,
        target: Target,
        *,
        arrival: int,
    ) -> MergeOutcome:
        """Merge ``event`` for ``target`` into ``pending`` in place.

        The caller is responsible for re-arming the debounce deadline for
        ``target`` whatever the outcome is.
        """

        existing = pending.get(target)
        if existing is None:
            action = CommandAction.for_kind(event.kind)
            pending[target] = Command(
                target=target,
                action=action,
                last_event_at=event.observed_at,
                arrival=arrival,
                payload=event.payload if action is CommandAction.REFRESH else None,
                path=event.path,
            )
            return MergeOutcome.CREATED

        if existing.merge_key != target:
            raise SchedulerFatal(f"Pending entry for {target} is keyed as {existing.merge_key}")

        existing.touch()

        if existing.supersedes(event, arrival):
            logger.debug(
                "Ignoring stale %s for %s (observed %.3f, current %.3f)",
                event.kind.value,
                target,
                event.observed_at,
                existing.last_event_at,
            )
            return MergeOutcome.STALE

        existing.apply(event, arrival)
        return MergeOutcome.MERGED
