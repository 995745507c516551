"""Command line entry point for the risk monitor HTTP service."""

from __future__ import annotations

import argparse
import copy
import importlib
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from .config.models import MonitorConfig
from .configuration import load_monitor_config

logger = logging.getLogger(__name__)

MONITOR_LOGGER = "risk_monitor"


def _load_uvicorn() -> Any:
    try:
        return importlib.import_module("uvicorn")
    except ModuleNotFoundError as exc:  # pragma: no cover - uvicorn is a declared dependency
        raise SystemExit(
            "uvicorn is required to serve the risk monitor; install the package dependencies first"
        ) from exc


def _debug_requested(config: MonitorConfig) -> bool:
    return config.debug_api_payloads or any(account.debug_api_payloads for account in config.accounts)


def _determine_uvicorn_logging(config: MonitorConfig) -> Tuple[Optional[Dict[str, Any]], str]:
    """Return ``(log_config, log_level)`` for :func:`uvicorn.run`.

    Without payload debugging uvicorn keeps its own defaults. With it, the
    monitor's logger is routed through uvicorn's default handler at DEBUG.
    """

    if not _debug_requested(config):
        return None, "info"
    try:
        defaults = importlib.import_module("uvicorn.config").LOGGING_CONFIG
    except (ModuleNotFoundError, AttributeError):
        return None, "debug"

    log_config = copy.deepcopy(defaults)
    monitor_logger = log_config.setdefault("loggers", {}).setdefault(MONITOR_LOGGER, {})
    monitor_logger["handlers"] = monitor_logger.get("handlers") or ["default"]
    monitor_logger["level"] = "DEBUG"
    monitor_logger.setdefault("propagate", False)
    return log_config, "debug"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve exchange risk snapshots as a Grafana JSON datasource")
    parser.add_argument("--config", type=Path, required=True, help="Path to the monitor configuration file")
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind")
    parser.add_argument("--port", type=int, default=3000, help="Port to listen on")
    parser.add_argument(
        "--debug",
        type=int,
        default=None,
        help="Logging verbosity: 0 warnings, 1 info, 2 debug (defaults to the config's debug flag)",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    import logging_setup

    config = load_monitor_config(args.config)
    debug = args.debug if args.debug is not None else (2 if _debug_requested(config) else 1)
    logging_setup.configure_logging(debug=debug)

    from .service import RiskMonitorService
    from .web import create_app

    app = create_app(RiskMonitorService(config))
    log_config, log_level = _determine_uvicorn_logging(config)
    run_kwargs: Dict[str, Any] = {"host": args.host, "port": args.port, "log_level": log_level}
    if log_config is not None:
        run_kwargs["log_config"] = log_config
    logger.info("Serving %d accounts on %s:%d", len(config.accounts), args.host, args.port)
    _load_uvicorn().run(app, **run_kwargs)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
