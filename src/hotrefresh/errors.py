"""Exception types raised by the refresh pipeline."""
from __future__ import annotations

from typing import Optional


class ResolutionError(Exception):
    """Raised when a path inside a known scope cannot be mapped to a unit."""


class HandlerError(Exception):
    """Failure reported by a refresh handler for one command."""

    def __init__(self, handler_id: str, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(f"{handler_id}: {message}")
        self.handler_id = handler_id
        self.cause = cause

    @property
    def kind(self) -> str:
        if self.cause is None:
            return "failed"
        return type(self.cause).__name__


class SchedulerFatal(RuntimeError):
    """Internal invariant violation; the scheduler cannot continue."""
