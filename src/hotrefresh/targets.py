"""Mapping of raw filesystem changes onto refreshable units."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePath
from typing import Iterable, List, Optional, Tuple

from .config import ScopeConfig
from .errors import ResolutionError
from .events import ChangeEvent

logger = logging.getLogger(__name__)

_NESTED_SEPARATOR = "$"
_PACKAGE_MODULE = "__init__"


@dataclass(frozen=True, order=True)
class Target:
    """A refreshable unit inside one isolation scope."""

    scope_id: str
    unit_id: str

    def __str__(self) -> str:
        return f"{self.scope_id}:{self.unit_id}"


class TargetResolver:
    """Resolves change events to targets using the configured scope roots.

    Resolution only looks at the event path, never at the filesystem, so the
    same path always yields the same target for a given scope configuration.
    """

    def __init__(self, scopes: Iterable[ScopeConfig]):
        self._roots: List[Tuple[PurePath, ScopeConfig]] = [
            (PurePath(root), scope) for scope in scopes for root in scope.paths
        ]

    def resolve(self, event: ChangeEvent) -> Optional[Target]:
        """Return the target for ``event`` or ``None`` when it is outside every scope.

        Raises :class:`ResolutionError` when the path sits under a scope root
        but does not name a valid unit.
        """

        return self.resolve_path(event.path)

    def resolve_path(self, path: PurePath) -> Optional[Target]:
        match = self._match_root(PurePath(path))
        if match is None:
            return None
        root, scope = match
        relative = PurePath(path).relative_to(root)

        suffix = _matching_suffix(relative.name, scope.suffixes)
        if suffix is None:
            return None

        unit_id = _unit_id(relative, suffix, collapse_nested=scope.collapse_nested)
        return Target(scope_id=scope.scope_id, unit_id=unit_id)

    def _match_root(self, path: PurePath) -> Optional[Tuple[PurePath, ScopeConfig]]:
        best: Optional[Tuple[PurePath, ScopeConfig]] = None
        for root, scope in self._roots:
            if path == root:
                continue
            try:
                path.relative_to(root)
            except ValueError:
                continue
            if best is None or len(root.parts) > len(best[0].parts):
                best = (root, scope)
        return best


def _matching_suffix(name: str, suffixes: Iterable[str]) -> Optional[str]:
    for suffix in suffixes:
        if name.endswith(suffix):
            return suffix
    return None


def _unit_id(relative: PurePath, suffix: str, *, collapse_nested: bool) -> str:
    parts = list(relative.parts)
    stem = parts[-1][: -len(suffix)] if suffix else parts[-1]
    if not stem:
        raise ResolutionError(f"Path {relative} has no unit name before suffix '{suffix}'")

    if collapse_nested and _NESTED_SEPARATOR in stem:
        stem = stem.split(_NESTED_SEPARATOR, 1)[0]
        if not stem:
            raise ResolutionError(f"Path {relative} names a nested unit without an owner")

    segments = parts[:-1]
    if stem != _PACKAGE_MODULE or not segments:
        segments.append(stem)

    for segment in segments:
        if not segment or "." in segment:
            raise ResolutionError(f"Path {relative} contains invalid unit segment '{segment}'")

    return ".".join(segments)
