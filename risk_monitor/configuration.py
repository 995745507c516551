"""Utilities for loading risk monitor configuration files."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional

from .config.models import (
    SUPPORTED_MODES,
    AccountConfig,
    HttpSettings,
    MonitorConfig,
    SchedulerSettings,
)

logger = logging.getLogger(__name__)

MODE_ALIASES = {
    "futures": "futures",
    "usdm": "futures",
    "portfolio_margin": "portfolio_margin",
    "portfoliomargin": "portfolio_margin",
    "pm": "portfolio_margin",
    "unified": "unified",
    "uta": "unified",
}

SCHEDULER_ENV_OVERRIDES = {
    "RISK_MONITOR_FETCH_INTERVAL": ("interval_seconds", float),
    "RISK_MONITOR_FETCH_TIMEOUT": ("fetch_timeout_seconds", float),
    "RISK_MONITOR_BACKOFF_BASE": ("backoff_base_seconds", float),
    "RISK_MONITOR_MAX_ERRORS": ("max_consecutive_errors", int),
}


_TRUE_STRINGS = frozenset({"1", "true", "yes", "on", "enabled", "enable"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off", "disabled", "disable"})


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    try:
        with path.open(encoding="utf-8") as handle:
            return json.load(handle)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in configuration file {path}: {exc}") from exc


def _ensure_mapping(payload: Any, *, description: str) -> MutableMapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise TypeError(f"{description} must be a JSON object, got {type(payload).__name__}")
    return payload if isinstance(payload, MutableMapping) else dict(payload)


def _resolve_path_relative_to(base: Path, candidate: Any) -> Path:
    """Resolve ``candidate`` against ``base`` unless it is already absolute."""

    path = Path(str(candidate)).expanduser()
    return (path if path.is_absolute() else base / path).resolve()


def _coerce_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        if text in {"", "default", "auto"}:
            return default
    return bool(value)


def _normalise_credentials(data: Mapping[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    """Map credential aliases to ``api_key``/``api_secret`` and resolve ``*_env`` references."""

    key_aliases = {
        "key": "api_key",
        "apikey": "api_key",
        "api_key": "api_key",
        "secret": "api_secret",
        "secret_key": "api_secret",
        "secretkey": "api_secret",
        "apisecret": "api_secret",
        "api_secret": "api_secret",
    }
    normalised: Dict[str, Any] = {}
    for raw_key, value in data.items():
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if value == "":
                continue
        key_lookup = str(raw_key).lower().replace(" ", "").replace("-", "_")
        if key_lookup.endswith("_env"):
            target = key_aliases.get(key_lookup[: -len("_env")])
            if target is None:
                continue
            resolved = env.get(str(value))
            if resolved is None:
                raise ValueError(f"Environment variable '{value}' referenced by credentials is not set")
            normalised.setdefault(target, resolved.strip())
            continue
        key = key_aliases.get(key_lookup, key_lookup)
        if key == "exchange":
            continue
        normalised[key] = value
    return normalised


def _load_api_keys(path: Path) -> Dict[str, Mapping[str, Any]]:
    """Return API key entries by id; entries nested under ``users`` are lifted to the top."""

    entries: Dict[str, Mapping[str, Any]] = {}
    for entry_id, entry in _ensure_mapping(_load_json(path), description="API key configuration").items():
        if not isinstance(entry, Mapping):
            continue
        if entry_id.lower() != "users":
            entries[entry_id] = entry
            continue
        entries.update({user: keys for user, keys in entry.items() if isinstance(keys, Mapping)})
    return entries


def _parse_accounts(
    accounts_raw: Iterable[Any],
    api_keys: Optional[Mapping[str, Mapping[str, Any]]],
    *,
    env: Mapping[str, str],
    debug_api_payloads_default: bool = False,
) -> List[AccountConfig]:
    accounts: List[AccountConfig] = []
    seen = set()
    for raw in accounts_raw:
        if not isinstance(raw, Mapping):
            raise TypeError("Account entries must be objects with account configuration fields.")
        if not _coerce_bool(raw.get("enabled"), True):
            continue
        name = raw.get("name")
        api_key_id = raw.get("api_key_id")
        exchange = raw.get("exchange")
        credentials_raw = raw.get("credentials") or {}
        if not isinstance(credentials_raw, Mapping):
            raise TypeError(f"Account '{name}' credentials must be an object.")
        credentials = _normalise_credentials(credentials_raw, env)
        if api_key_id:
            if api_keys is None:
                raise ValueError(
                    f"Account '{name}' references api_key_id '{api_key_id}' but no api key file was provided"
                )
            if api_key_id not in api_keys:
                raise ValueError(f"Account '{name}' references unknown api_key_id '{api_key_id}'")
            key_payload = api_keys[api_key_id]
            exchange = exchange or key_payload.get("exchange")
            merged = _normalise_credentials(key_payload, env)
            merged.update(credentials)
            credentials = merged
        if not exchange:
            raise ValueError(
                f"Account '{name}' must specify an exchange either directly or via the api key entry."
            )
        exchange = str(exchange).strip().lower()
        if exchange not in SUPPORTED_MODES:
            raise ValueError(f"Account '{name}' uses unsupported exchange '{exchange}'")

        mode_raw = raw.get("mode") or SUPPORTED_MODES[exchange][0]
        mode = MODE_ALIASES.get(str(mode_raw).strip().lower().replace("-", "_"))
        if mode not in SUPPORTED_MODES[exchange]:
            raise ValueError(f"Account '{name}' uses unsupported mode '{mode_raw}' for {exchange}")
        if not name:
            raise ValueError(f"Every {exchange} account must have a 'name'.")
        if (exchange, str(name)) in seen:
            raise ValueError(f"Duplicate account '{name}' for exchange {exchange}")
        seen.add((exchange, str(name)))
        if not credentials.get("api_key") or not credentials.get("api_secret"):
            raise ValueError(f"Account '{name}' requires both an API key and secret")

        params = raw.get("params") or {}
        if not isinstance(params, Mapping):
            raise TypeError(f"Account '{name}' params must be an object.")
        base_url = raw.get("base_url")
        accounts.append(
            AccountConfig(
                name=str(name),
                exchange=exchange,
                mode=mode,
                base_currency=str(raw.get("base_currency", "USDT")).upper(),
                api_key_id=api_key_id,
                credentials=credentials,
                base_url=str(base_url).strip() if base_url else None,
                params=dict(params),
                enabled=True,
                debug_api_payloads=_coerce_bool(raw.get("debug_api_payloads"), debug_api_payloads_default),
            )
        )
    if not accounts:
        raise ValueError("Risk monitor configuration must include at least one enabled account entry.")
    return accounts


def _env_number(value: Optional[str], caster: Callable[[str], Any]) -> Optional[Any]:
    if value is None or not value.strip():
        return None
    try:
        return caster(value.strip())
    except ValueError:
        logger.warning("Ignoring non-numeric environment override %r", value)
        return None


def _parse_scheduler(settings: Any, env: Mapping[str, str]) -> SchedulerSettings:
    payload = _ensure_mapping(settings or {}, description="Risk monitor configuration 'scheduler'")
    defaults = SchedulerSettings()
    values: Dict[str, Any] = {}
    for name, default in vars(defaults).items():
        raw = payload.get(name)
        if raw is None:
            values[name] = default
            continue
        caster = int if isinstance(default, int) else float
        try:
            values[name] = caster(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Scheduler setting '{name}' must be numeric.") from exc

    for variable, (name, caster) in SCHEDULER_ENV_OVERRIDES.items():
        override = _env_number(env.get(variable), caster)
        if override is not None:
            values[name] = override

    scheduler = SchedulerSettings(**values)
    if scheduler.interval_seconds <= 0 or scheduler.fetch_timeout_seconds <= 0:
        raise ValueError("Scheduler interval and fetch timeout must be greater than zero.")
    if scheduler.max_consecutive_errors < 1:
        raise ValueError("Scheduler 'max_consecutive_errors' must be at least 1.")
    return scheduler


def _parse_http(settings: Any) -> HttpSettings:
    payload = _ensure_mapping(settings or {}, description="Risk monitor configuration 'http'")
    try:
        return HttpSettings(
            request_timeout_seconds=float(payload.get("request_timeout_seconds", 10.0)),
            recv_window_ms=int(payload.get("recv_window_ms", 60_000)),
        )
    except (TypeError, ValueError) as exc:
        raise ValueError("HTTP settings must be numeric.") from exc


def load_monitor_payload(path: Path | str) -> tuple[MutableMapping[str, Any], Path]:
    """Load and return the raw configuration mapping from disk."""

    path = Path(path).expanduser().resolve()
    payload = _load_json(path)
    return _ensure_mapping(payload, description="Risk monitor configuration"), path


def validate_monitor_config(
    config: Mapping[str, Any],
    *,
    source_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> MonitorConfig:
    """Validate and normalise a configuration payload."""

    env = os.environ if env is None else env
    base_dir = source_path.parent.resolve() if source_path else Path.cwd()

    api_keys: Optional[Dict[str, Mapping[str, Any]]] = None
    api_keys_path: Optional[Path] = None
    api_keys_file = config.get("api_keys_file")
    if api_keys_file:
        api_keys_path = _resolve_path_relative_to(base_dir, api_keys_file)
        api_keys = _load_api_keys(api_keys_path)

    accounts_raw = config.get("accounts")
    if not accounts_raw:
        raise ValueError("Risk monitor configuration must include at least one account entry.")
    if isinstance(accounts_raw, (Mapping, str, bytes)):
        raise TypeError("Risk monitor configuration 'accounts' must be an array of account objects.")
    debug_api_payloads = _coerce_bool(config.get("debug_api_payloads"), False)
    accounts = _parse_accounts(
        accounts_raw, api_keys, env=env, debug_api_payloads_default=debug_api_payloads
    )

    monitor_config = MonitorConfig(
        accounts=accounts,
        scheduler=_parse_scheduler(config.get("scheduler"), env),
        http=_parse_http(config.get("http")),
        price_exchange=str(config.get("price_exchange", "binance")),
        debug_api_payloads=debug_api_payloads,
        api_keys_path=api_keys_path,
        config_path=source_path,
    )

    selection = config.get("default_selection")
    if selection:
        selection = _ensure_mapping(selection, description="Risk monitor configuration 'default_selection'")
        exchange = str(selection.get("exchange", "")).lower()
        account = str(selection.get("account", ""))
        if account not in monitor_config.available_accounts().get(exchange, ()):
            raise ValueError(f"Default selection {exchange}/{account} does not match a configured account")
        monitor_config.default_exchange = exchange
        monitor_config.default_account = account
    return monitor_config


def load_monitor_config(path: Path | str, *, env: Optional[Mapping[str, str]] = None) -> MonitorConfig:
    """Load and validate a configuration file from disk."""

    payload, resolved_path = load_monitor_payload(path)
    config = validate_monitor_config(payload, source_path=resolved_path, env=env)
    logger.info(
        "Loaded %d accounts from %s",
        len(config.accounts),
        resolved_path,
    )
    return config


__all__ = [
    "AccountConfig",
    "MonitorConfig",
    "load_monitor_config",
    "load_monitor_payload",
    "validate_monitor_config",
]
