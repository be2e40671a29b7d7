"""Command-line entry point for the refresh scheduler."""
from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .config import ConfigError, load_config
from .handlers import Dispatcher, DispatchResult, HandlerRegistry
from .monitor import DirectoryMonitor
from .scheduler import CommandScheduler
from .targets import TargetResolver


def _log_failures(result: DispatchResult) -> None:
    for outcome in result.failures:
        logging.getLogger("hotrefresh").error(
            "Refresh of %s failed in %s: %s",
            result.command.target,
            outcome.handler_id,
            outcome.error,
        )


def main() -> None:
    parser = argparse.ArgumentParser(description="Watch compiled artifacts and refresh them in a running process")
    parser.add_argument(
        "--config",
        default="hotrefresh.yaml",
        help="Path to the YAML configuration file (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    config_path = Path(args.config)
    try:
        app_config = load_config(config_path)
    except ConfigError as exc:
        logging.error("%s", exc)
        raise SystemExit(2) from exc

    registry = HandlerRegistry.from_config(app_config.handlers)
    scheduler = CommandScheduler(
        TargetResolver(app_config.scopes),
        Dispatcher(registry),
        debounce_window=app_config.scheduler.debounce_window,
        on_result=_log_failures,
    )
    monitor = DirectoryMonitor(app_config.monitor, scheduler)
    scheduler.start()
    try:
        monitor.run()
    finally:
        scheduler.shutdown()


if __name__ == "__main__":
    main()
