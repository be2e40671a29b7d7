"""Change event models shared between the watcher and the scheduler."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class ChangeKind(str, Enum):
    """Types of filesystem changes delivered to the scheduler."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChangeEvent:
    """A single change observed under one of the watched roots."""

    kind: ChangeKind
    path: Path
    observed_at: float
    payload: Optional[bytes] = None
    size: Optional[int] = None
    mtime: Optional[float] = None

    def describe(self) -> str:
        details = [f"kind={self.kind.value}", f"path={self.path}", f"observed_at={self.observed_at:.3f}"]
        if self.size is not None:
            details.append(f"size={self.size}")
        if self.payload is not None:
            details.append(f"payload={len(self.payload)}B")
        return ", ".join(details)
