"""Configuration loading utilities for the refresh scheduler."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml # type: ignore


logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 300
DEFAULT_SUFFIXES: Tuple[str, ...] = (".class",)


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


@dataclass
class SchedulerConfig:
    """Timing options for the command scheduler."""

    debounce_window: float = DEFAULT_DEBOUNCE_MS / 1000.0


@dataclass
class MonitorConfig:
    """Options describing how the filesystem monitor should behave."""

    roots: List[Path] = field(default_factory=list)
    poll_interval: float = 0.5
    recursive: bool = True
    include_patterns: List[str] = field(default_factory=list)
    exclude_patterns: List[str] = field(default_factory=list)
    read_payload: bool = False


@dataclass
class ScopeConfig:
    """An isolation boundary and the directory roots that belong to it."""

    scope_id: str
    paths: List[Path]
    suffixes: Tuple[str, ...] = DEFAULT_SUFFIXES
    collapse_nested: bool = False


@dataclass
class HandlerConfig:
    """Refresh handler definition loaded from the configuration file."""

    name: str
    module: str
    factory: str
    scopes: List[str] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AppConfig:
    """Top-level configuration structure."""

    scheduler: SchedulerConfig
    monitor: MonitorConfig
    scopes: List[ScopeConfig] = field(default_factory=list)
    handlers: List[HandlerConfig] = field(default_factory=list)


def load_config(path: Path) -> AppConfig:
    """Load and validate the YAML configuration file."""

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse YAML configuration: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    return parse_config(data, base_dir=path.parent)


def parse_config(data: Dict[str, Any], *, base_dir: Path) -> AppConfig:
    """Build an :class:`AppConfig` from an already-parsed mapping."""

    scheduler_cfg = _parse_scheduler_config(data.get("scheduler"))
    scopes_cfg = _parse_scopes_config(data.get("scopes"), base_dir=base_dir)
    monitor_cfg = _parse_monitor_config(data.get("monitor"), base_dir=base_dir, scopes=scopes_cfg)
    handlers_cfg = _parse_handlers_config(data.get("handlers", []), scopes=scopes_cfg)

    return AppConfig(
        scheduler=scheduler_cfg,
        monitor=monitor_cfg,
        scopes=scopes_cfg,
        handlers=handlers_cfg,
    )


def _parse_scheduler_config(raw: Any) -> SchedulerConfig:
    if raw is None:
        return SchedulerConfig()
    if not isinstance(raw, dict):
        raise ConfigError("'scheduler' section must be a mapping")

    debounce_ms = raw.get("debounce_ms", DEFAULT_DEBOUNCE_MS)
    if isinstance(debounce_ms, bool):
        raise ConfigError("scheduler.debounce_ms must be numeric")
    try:
        debounce_val = float(debounce_ms)
    except (TypeError, ValueError) as exc:
        raise ConfigError("scheduler.debounce_ms must be numeric") from exc
    if debounce_val < 0:
        raise ConfigError("scheduler.debounce_ms must not be negative")

    return SchedulerConfig(debounce_window=debounce_val / 1000.0)


def _parse_scopes_config(raw: Any, *, base_dir: Path) -> List[ScopeConfig]:
    if not isinstance(raw, list) or not raw:
        raise ConfigError("'scopes' section must be a non-empty list")

    scopes: List[ScopeConfig] = []
    seen: set = set()
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ConfigError(f"scopes[{index}] must be a mapping")

        scope_id = item.get("id")
        if not isinstance(scope_id, str) or not scope_id:
            raise ConfigError(f"scopes[{index}].id must be a non-empty string")
        if scope_id in seen:
            raise ConfigError(f"scopes[{index}].id '{scope_id}' is defined more than once")
        seen.add(scope_id)

        paths = _ensure_str_list(item.get("paths"), f"scopes[{index}].paths")
        if not paths:
            raise ConfigError(f"scopes[{index}].paths must list at least one directory")

        suffixes = _ensure_str_list(item.get("suffixes"), f"scopes[{index}].suffixes")
        collapse_nested = item.get("collapse_nested", False)
        if not isinstance(collapse_nested, bool):
            raise ConfigError(f"scopes[{index}].collapse_nested must be a boolean")

        scopes.append(
            ScopeConfig(
                scope_id=scope_id,
                paths=[_resolve_path(p, base_dir) for p in paths],
                suffixes=tuple(suffixes) if suffixes else DEFAULT_SUFFIXES,
                collapse_nested=collapse_nested,
            )
        )
        logger.debug("Loaded scope '%s' with roots %s", scope_id, paths)

    return scopes


def _parse_monitor_config(raw: Any, *, base_dir: Path, scopes: List[ScopeConfig]) -> MonitorConfig:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("'monitor' section must be a mapping")

    roots_raw = _ensure_str_list(raw.get("roots"), "monitor.roots")
    if roots_raw:
        roots = [_resolve_path(p, base_dir) for p in roots_raw]
    else:
        roots = [root for scope in scopes for root in scope.paths]

    poll_interval = raw.get("poll_interval", 0.5)
    try:
        poll_interval_val = float(poll_interval)
    except (TypeError, ValueError) as exc:
        raise ConfigError("monitor.poll_interval must be numeric") from exc
    if poll_interval_val <= 0:
        raise ConfigError("monitor.poll_interval must be positive")

    recursive_flag = raw.get("recursive", True)
    if not isinstance(recursive_flag, bool):
        raise ConfigError("monitor.recursive must be a boolean")

    read_payload = raw.get("read_payload", False)
    if not isinstance(read_payload, bool):
        raise ConfigError("monitor.read_payload must be a boolean")

    include_patterns = _ensure_str_list(raw.get("include_patterns", []), "monitor.include_patterns")
    exclude_patterns = _ensure_str_list(raw.get("exclude_patterns", []), "monitor.exclude_patterns")

    return MonitorConfig(
        roots=roots,
        poll_interval=poll_interval_val,
        recursive=recursive_flag,
        include_patterns=include_patterns,
        exclude_patterns=exclude_patterns,
        read_payload=read_payload,
    )


def _parse_handlers_config(raw: Any, *, scopes: List[ScopeConfig]) -> List[HandlerConfig]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError("'handlers' section must be a list")

    known_scopes = {scope.scope_id for scope in scopes}
    handlers: List[HandlerConfig] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ConfigError(f"handlers[{index}] must be a mapping")

        name = item.get("name") or f"handler_{index}"
        module = item.get("module")
        factory = item.get("factory")
        options = item.get("options", {})

        if not isinstance(module, str) or not isinstance(factory, str):
            raise ConfigError(f"handlers[{index}] must include 'module' and 'factory' strings")
        if options is None:
            options = {}
        if not isinstance(options, dict):
            raise ConfigError(f"handlers[{index}].options must be a mapping if provided")

        handler_scopes = _ensure_str_list(item.get("scopes"), f"handlers[{index}].scopes")
        unknown = [scope for scope in handler_scopes if scope not in known_scopes]
        if unknown:
            raise ConfigError(f"handlers[{index}].scopes references unknown scope(s): {', '.join(unknown)}")

        handler_cfg = HandlerConfig(
            name=str(name),
            module=module,
            factory=factory,
            scopes=handler_scopes,
            options=options,
        )
        logger.info(
            "Loaded handler '%s' (%s.%s) scopes=%s",
            handler_cfg.name,
            handler_cfg.module,
            handler_cfg.factory,
            ",".join(handler_cfg.scopes) or "*",
        )
        handlers.append(handler_cfg)

    return handlers


def _resolve_path(raw: str, base_dir: Path) -> Path:
    path = Path(raw)
    if not path.is_absolute():
        path = (base_dir / path).resolve()
    return path


def _ensure_str_list(value: Any, field_name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{field_name} must be a list of strings")
    items: List[str] = []
    for elem in value:
        if not isinstance(elem, str):
            raise ConfigError(f"{field_name} must contain only strings")
        items.append(elem)
    return items
