from __future__ import annotations

import importlib
import json
import sys
import types
from pathlib import Path

from risk_monitor import web_server
from risk_monitor.config.models import AccountConfig, MonitorConfig


def _config(global_debug: bool = False, account_debug: bool = False) -> MonitorConfig:
    account = AccountConfig(
        name="main",
        exchange="binance",
        mode="futures",
        credentials={"api_key": "k", "api_secret": "s"},
        debug_api_payloads=account_debug,
    )
    return MonitorConfig(accounts=[account], debug_api_payloads=global_debug)


def test_uvicorn_logging_defaults_when_debug_disabled() -> None:
    assert web_server._determine_uvicorn_logging(_config()) == (None, "info")


def test_uvicorn_logging_promotes_risk_monitor_logger(monkeypatch) -> None:
    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "handlers": {"default": {"class": "logging.StreamHandler"}},
        "loggers": {"uvicorn": {"handlers": ["default"], "level": "INFO"}},
    }
    uvicorn_config_module = types.ModuleType("uvicorn.config")
    uvicorn_config_module.LOGGING_CONFIG = logging_config
    monkeypatch.setitem(sys.modules, "uvicorn.config", uvicorn_config_module)

    log_config, log_level = web_server._determine_uvicorn_logging(_config(account_debug=True))

    assert log_level == "debug"
    assert log_config["loggers"]["risk_monitor"] == {
        "handlers": ["default"],
        "level": "DEBUG",
        "propagate": False,
    }
    assert "risk_monitor" not in logging_config["loggers"]


def test_uvicorn_logging_without_uvicorn_config(monkeypatch) -> None:
    original_import = importlib.import_module

    def fake_import(name, package=None):
        if name == "uvicorn.config":
            raise ModuleNotFoundError("uvicorn unavailable")
        return original_import(name, package)

    monkeypatch.setattr(importlib, "import_module", fake_import)

    assert web_server._determine_uvicorn_logging(_config(global_debug=True)) == (None, "debug")


def test_parser_defaults() -> None:
    args = web_server.build_parser().parse_args(["--config", "monitor.json"])

    assert args.config == Path("monitor.json")
    assert args.port == 3000
    assert args.debug is None


def test_main_builds_app_and_runs_uvicorn(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "monitor.json"
    config_path.write_text(
        json.dumps(
            {
                "accounts": [
                    {
                        "name": "main",
                        "exchange": "binance",
                        "mode": "futures",
                        "credentials": {"api_key": "k", "api_secret": "s"},
                    }
                ]
            }
        ),
        encoding="utf-8",
    )
    calls = {}

    def fake_run(app, **kwargs) -> None:
        calls["app"] = app
        calls.update(kwargs)

    import uvicorn

    monkeypatch.setattr(uvicorn, "run", fake_run)

    web_server.main(["--config", str(config_path), "--port", "3100", "--debug", "1"])

    assert calls["port"] == 3100
    assert calls["host"] == "0.0.0.0"
    assert calls["log_level"] == "info"
    assert calls["app"].state.service.config.accounts[0].name == "main"
