"""Refresh handler plugins and command dispatch."""
from __future__ import annotations

import importlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any, Dict, Iterable, Iterator, List, Optional

from .commands import Command, CommandAction
from .config import HandlerConfig
from .errors import HandlerError
from .targets import Target

logger = logging.getLogger(__name__)


class RefreshHandler(ABC):
    """Base class for components that reinitialize units in the running process.

    Handlers are constructed once at start-up and called from dispatch worker
    threads. Calls for the same target never overlap, but calls for different
    targets may, so handlers guard whatever shared state they own.
    """

    #: Whether :meth:`on_remove` should be called for deleted units.
    handles_removal: bool = False

    def __init__(self, handler_id: str, scopes: Optional[Iterable[str]] = None, options: Optional[Dict[str, Any]] = None):
        self.handler_id = handler_id
        self.scopes = frozenset(scopes or ())
        self.options: Dict[str, Any] = dict(options or {})

    def can_handle(self, scope_id: str) -> bool:
        return not self.scopes or scope_id in self.scopes

    @abstractmethod
    def on_refresh(self, target: Target, payload: Optional[bytes]) -> Optional[bool]:
        """Reinitialize ``target``. Return False or raise to report failure."""

    def on_remove(self, target: Target) -> Optional[bool]:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.handler_id!r})"


@dataclass(frozen=True)
class HandlerOutcome:
    """Result of invoking one handler for one command."""

    handler_id: str
    ok: bool
    error: Optional[HandlerError] = None


@dataclass
class DispatchResult:
    """Per-handler outcomes for a dispatched command."""

    command: Command
    outcomes: List[HandlerOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def failures(self) -> List[HandlerOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


class HandlerRegistry:
    """Ordered collection of refresh handlers."""

    def __init__(self, handlers: Iterable[RefreshHandler] = ()):
        self._handlers: List[RefreshHandler] = []
        for handler in handlers:
            self.register(handler)

    @classmethod
    def from_config(cls, configs: Iterable[HandlerConfig]) -> "HandlerRegistry":
        return cls(_load_handler(cfg) for cfg in configs)

    def __iter__(self) -> Iterator[RefreshHandler]:
        return iter(list(self._handlers))

    def __len__(self) -> int:
        return len(self._handlers)

    def register(self, handler: RefreshHandler) -> None:
        if any(existing.handler_id == handler.handler_id for existing in self._handlers):
            raise ValueError(f"Handler id '{handler.handler_id}' is already registered")
        self._handlers.append(handler)
        logger.debug("Registered handler %s", handler)

    def handlers_for(self, scope_id: str) -> List[RefreshHandler]:
        return [handler for handler in self._handlers if handler.can_handle(scope_id)]


class Dispatcher:
    """Hands drained commands to every interested handler, in registration order."""

    def __init__(self, registry: HandlerRegistry):
        self._registry = registry

    def dispatch(self, command: Command) -> DispatchResult:
        result = DispatchResult(command=command)
        target = command.target
        handlers = self._registry.handlers_for(target.scope_id)
        if not handlers:
            logger.info("No handlers registered for scope %s; %s of %s is a no-op", target.scope_id, command.action.value, target)
            return result

        for handler in handlers:
            if command.action is CommandAction.REMOVE and not handler.handles_removal:
                continue
            result.outcomes.append(self._invoke(handler, command))

        if result.ok:
            logger.info("%s %s (%s handler(s), %s event(s))", command.action.value.capitalize(), target, len(result.outcomes), command.event_count)
        else:
            logger.warning(
                "%s %s failed in %s",
                command.action.value.capitalize(),
                target,
                ", ".join(outcome.handler_id for outcome in result.failures),
            )
        return result

    def _invoke(self, handler: RefreshHandler, command: Command) -> HandlerOutcome:
        logger.debug("Dispatching %s of %s to %s", command.action.value, command.target, handler.handler_id)
        try:
            if command.action is CommandAction.REMOVE:
                returned = handler.on_remove(command.target)
            else:
                returned = handler.on_refresh(command.target, command.payload)
        except Exception as exc:
            logger.exception("Handler %s failed for %s", handler.handler_id, command.target)
            error = HandlerError(handler.handler_id, str(exc) or type(exc).__name__, cause=exc)
            return HandlerOutcome(handler_id=handler.handler_id, ok=False, error=error)

        if returned is False:
            error = HandlerError(handler.handler_id, f"reported failure for {command.target}")
            return HandlerOutcome(handler_id=handler.handler_id, ok=False, error=error)
        return HandlerOutcome(handler_id=handler.handler_id, ok=True)


def _load_handler(config: HandlerConfig) -> RefreshHandler:
    module = _import_module(config.module)
    try:
        factory = getattr(module, config.factory)
    except AttributeError as exc:
        raise RuntimeError(
            f"Handler '{config.name}' could not find factory '{config.factory}' in {config.module}"
        ) from exc

    if not callable(factory):
        raise RuntimeError(
            f"Handler '{config.name}' attribute '{config.factory}' in {config.module} is not callable"
        )

    handler = factory(config.name, config.scopes, dict(config.options or {}))
    if not isinstance(handler, RefreshHandler):
        raise RuntimeError(
            f"Handler '{config.name}' factory {config.module}.{config.factory} did not return a RefreshHandler"
        )
    return handler


def _import_module(module_path: str) -> ModuleType:
    try:
        return importlib.import_module(module_path)
    except ImportError as exc:
        raise RuntimeError(f"Unable to import handler module '{module_path}'") from exc
