"""Normalisation and risk calculation for exchange account state."""

from .calculator import (
    build_account_summary,
    liquidation_buffer,
    margin_ratio,
    resolve_base_balance,
    sum_balances,
    total_notional,
    weighted_leverage,
)
from .metrics import MetricRegistry, Timer
from .normalization import (
    build_position,
    estimate_liquidation_price,
    liquidation_distance_pct,
    normalize_binance_position,
    normalize_bybit_position,
)

__all__ = [
    "MetricRegistry",
    "Timer",
    "build_account_summary",
    "build_position",
    "estimate_liquidation_price",
    "liquidation_buffer",
    "liquidation_distance_pct",
    "margin_ratio",
    "normalize_binance_position",
    "normalize_bybit_position",
    "resolve_base_balance",
    "sum_balances",
    "total_notional",
    "weighted_leverage",
]
