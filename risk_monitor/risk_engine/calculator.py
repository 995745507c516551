"""Account level risk aggregates derived from normalised positions."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Sequence, Tuple

from ..models import AccountSummary, Position
from .normalization import coerce_float, round2

MAX_LIQUIDATION_BUFFER = 100.0


def _safe_div(numerator: float, denominator: float) -> float:
    numerator = coerce_float(numerator)
    denominator = coerce_float(denominator)
    if denominator == 0:
        return 0.0
    return numerator / denominator


def total_notional(positions: Iterable[Position]) -> float:
    return sum(abs(position.notional_value) for position in positions)


def weighted_leverage(positions: Sequence[Position]) -> float:
    """Notional weighted mean leverage; 0 without exposure."""

    notional = total_notional(positions)
    if notional <= 0:
        return 0.0
    weighted = sum(position.leverage * abs(position.notional_value) for position in positions)
    return weighted / notional


def margin_ratio(maintenance_margin: float, equity: float) -> float:
    equity = coerce_float(equity)
    if equity <= 0:
        return 0.0
    return max(0.0, _safe_div(maintenance_margin, equity) * 100.0)


def liquidation_buffer(equity: float, maintenance_margin: float) -> float:
    """Percent headroom of equity above maintenance margin, clamped to ``[0, 100]``."""

    maintenance_margin = coerce_float(maintenance_margin)
    if maintenance_margin <= 0:
        return 0.0
    buffer = _safe_div(coerce_float(equity) - maintenance_margin, maintenance_margin) * 100.0
    return min(MAX_LIQUIDATION_BUFFER, max(0.0, buffer))


def sum_balances(
    balances: Iterable[Tuple[str, float]],
    prices: Mapping[str, float],
    *,
    base_currency: str = "USDT",
) -> float:
    """Convert positive native balances into ``base_currency`` using ``prices``.

    Assets without a price contribute nothing.
    """

    total = 0.0
    for asset, amount in balances:
        amount = coerce_float(amount)
        if amount <= 0:
            continue
        if asset == base_currency:
            total += amount
            continue
        total += amount * coerce_float(prices.get(asset))
    return total


def resolve_base_balance(
    reported_total: Optional[float],
    balances: Iterable[Tuple[str, float]] = (),
    prices: Optional[Mapping[str, float]] = None,
    *,
    base_currency: str = "USDT",
) -> float:
    """Prefer a positive exchange reported total, otherwise sum the pools."""

    reported = coerce_float(reported_total)
    if reported > 0:
        return reported
    return sum_balances(balances, prices or {}, base_currency=base_currency)


def build_account_summary(
    *,
    exchange: str,
    account_id: str,
    positions: Sequence[Position],
    open_orders_count: int,
    equity: float,
    maintenance_margin: float,
    base_balance: float,
    base_currency: str = "USDT",
) -> AccountSummary:
    return AccountSummary(
        exchange=exchange,
        account_id=account_id,
        base_currency=base_currency,
        base_balance=round2(base_balance),
        total_notional_value=round2(total_notional(positions)),
        account_leverage=round2(weighted_leverage(positions)),
        open_positions_count=len(positions),
        open_orders_count=int(open_orders_count),
        account_margin_ratio=round2(margin_ratio(maintenance_margin, equity)),
        liquidation_buffer=round2(liquidation_buffer(equity, maintenance_margin)),
    )


__all__ = [
    "MAX_LIQUIDATION_BUFFER",
    "build_account_summary",
    "liquidation_buffer",
    "margin_ratio",
    "resolve_base_balance",
    "sum_balances",
    "total_notional",
    "weighted_leverage",
]
