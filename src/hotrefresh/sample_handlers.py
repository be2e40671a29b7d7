"""Example refresh handlers that can be referenced from configuration."""
from __future__ import annotations

import importlib
import logging
import subprocess
import sys
import threading
from typing import Any, Dict, Iterable, Optional

from .handlers import RefreshHandler
from .targets import Target

logger = logging.getLogger(__name__)


class LoggingRefreshHandler(RefreshHandler):
    """Log refreshed and removed units."""

    handles_removal = True

    def __init__(self, handler_id: str, scopes: Optional[Iterable[str]] = None, options: Optional[Dict[str, Any]] = None):
        super().__init__(handler_id, scopes, options)
        level_name = str(self.options.get("level", "INFO")).upper()
        self._level = getattr(logging, level_name, logging.INFO)
        self._message = self.options.get("message", "Unit changed")

    def on_refresh(self, target: Target, payload: Optional[bytes]) -> None:
        size = "no payload" if payload is None else f"{len(payload)} bytes"
        logger.log(self._level, "%s: refresh %s (%s)", self._message, target, size)

    def on_remove(self, target: Target) -> None:
        logger.log(self._level, "%s: remove %s", self._message, target)


class ModuleReloadHandler(RefreshHandler):
    """Reload imported Python modules whose source changed.

    The unit id is taken as the module name. Modules that have not been
    imported yet are left alone; they pick up the new source on first import.
    Removal drops the module from ``sys.modules`` unless ``evict_on_remove``
    is disabled.
    """

    handles_removal = True

    def __init__(self, handler_id: str, scopes: Optional[Iterable[str]] = None, options: Optional[Dict[str, Any]] = None):
        super().__init__(handler_id, scopes, options)
        self._prefix = str(self.options.get("module_prefix", ""))
        self._evict = bool(self.options.get("evict_on_remove", True))
        # import machinery is process-wide
        self._lock = threading.Lock()

    def module_name(self, target: Target) -> str:
        return f"{self._prefix}{target.unit_id}"

    def on_refresh(self, target: Target, payload: Optional[bytes]) -> bool:
        name = self.module_name(target)
        with self._lock:
            module = sys.modules.get(name)
            if module is None:
                logger.debug("Module %s is not imported; nothing to reload", name)
                return True
            importlib.invalidate_caches()
            importlib.reload(module)
        logger.info("Reloaded module %s", name)
        return True

    def on_remove(self, target: Target) -> bool:
        if not self._evict:
            return True
        name = self.module_name(target)
        with self._lock:
            removed = sys.modules.pop(name, None)
        if removed is not None:
            logger.info("Evicted module %s", name)
        return True


class ShellCommandHandler(RefreshHandler):
    """Execute a templated shell command for each refreshed unit."""

    def __init__(self, handler_id: str, scopes: Optional[Iterable[str]] = None, options: Optional[Dict[str, Any]] = None):
        super().__init__(handler_id, scopes, options)
        template = self.options.get("command")
        if not template:
            raise ValueError(f"Handler '{handler_id}' requires a 'command' option")
        self._template = str(template)
        self._remove_template = self.options.get("remove_command")
        self.handles_removal = bool(self._remove_template)
        self._timeout = self.options.get("timeout")

    def on_refresh(self, target: Target, payload: Optional[bytes]) -> bool:
        return self._run(self._template, target, "refresh")

    def on_remove(self, target: Target) -> bool:
        return self._run(str(self._remove_template), target, "remove")

    def _run(self, template: str, target: Target, action: str) -> bool:
        values = {
            "scope": target.scope_id,
            "unit": target.unit_id,
            "action": action,
            "path": target.unit_id.replace(".", "/"),
        }
        try:
            command = template.format(**values)
        except KeyError as exc:
            logger.error("Handler %s template has unknown placeholder %s", self.handler_id, exc)
            return False

        logger.info("Executing shell command for %s: %s", target, command)
        try:
            subprocess.run(command, shell=True, check=True, timeout=self._timeout)
        except subprocess.CalledProcessError as exc:
            logger.error("Shell command failed (exit %s): %s", exc.returncode, command)
            return False
        except subprocess.TimeoutExpired:
            logger.error("Shell command timed out after %ss: %s", self._timeout, command)
            return False
        return True
