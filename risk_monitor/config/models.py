from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

SUPPORTED_MODES: Dict[str, Tuple[str, ...]] = {
    "binance": ("futures", "portfolio_margin"),
    "bybit": ("unified",),
}


@dataclass()
class AccountConfig:
    """Configuration for a single exchange account."""

    name: str
    exchange: str
    mode: str
    base_currency: str = "USDT"
    api_key_id: Optional[str] = None
    credentials: Dict[str, Any] = field(default_factory=dict)
    base_url: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    debug_api_payloads: bool = False


@dataclass()
class SchedulerSettings:
    """Polling cadence, timeouts and backoff schedule of the fetch scheduler."""

    interval_seconds: float = 30.0
    fetch_timeout_seconds: float = 20.0
    max_consecutive_errors: int = 5
    backoff_base_seconds: float = 60.0
    max_backoff_exponent: int = 4
    shutdown_timeout_seconds: float = 10.0
    health_stale_after_seconds: float = 300.0
    metrics_log_interval_seconds: float = 60.0


@dataclass()
class HttpSettings:
    request_timeout_seconds: float = 10.0
    recv_window_ms: int = 60_000


@dataclass()
class MonitorConfig:
    """Top level risk monitor configuration."""

    accounts: List[AccountConfig]
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    default_exchange: Optional[str] = None
    default_account: Optional[str] = None
    price_exchange: str = "binance"
    debug_api_payloads: bool = False
    api_keys_path: Optional[Path] = None
    config_path: Optional[Path] = None

    def available_exchanges(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(account.exchange for account in self.accounts))

    def available_accounts(self) -> Dict[str, Tuple[str, ...]]:
        grouped: Dict[str, List[str]] = {}
        for account in self.accounts:
            grouped.setdefault(account.exchange, []).append(account.name)
        return {exchange: tuple(names) for exchange, names in grouped.items()}

    def default_selection(self) -> Tuple[str, str]:
        if self.default_exchange and self.default_account:
            return self.default_exchange, self.default_account
        first = self.accounts[0]
        return first.exchange, first.name


__all__ = [
    "AccountConfig",
    "HttpSettings",
    "MonitorConfig",
    "SUPPORTED_MODES",
    "SchedulerSettings",
]
