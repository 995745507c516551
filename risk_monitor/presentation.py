"""Human readable account metrics written to the log on a fixed cadence."""

from __future__ import annotations

import logging
from typing import List, Optional

from .models import AccountSummary, CombinedSnapshot, ExchangeData, Position
from .risk_engine.metrics import MetricRegistry

logger = logging.getLogger(__name__)


def format_currency(value: float) -> str:
    return f"${value:,.2f}"


def format_pct(value: float) -> str:
    return f"{value:.2f}%"


def format_summary(summary: AccountSummary) -> str:
    return (
        f"{summary.exchange}/{summary.account_id}: balance {format_currency(summary.base_balance)} "
        f"{summary.base_currency}, notional {format_currency(summary.total_notional_value)}, "
        f"leverage {summary.account_leverage:.2f}x, margin ratio {format_pct(summary.account_margin_ratio)}, "
        f"liquidation buffer {format_pct(summary.liquidation_buffer)}, "
        f"{summary.open_positions_count} positions, {summary.open_orders_count} open orders"
    )


def format_position(position: Position) -> str:
    return (
        f"  {position.symbol} {position.side.value} {position.size:g} @ {position.mark_price:,.2f} "
        f"notional {format_currency(position.notional_value)} liq {position.liquidation_price:,.2f} "
        f"({format_pct(position.liquidation_distance_pct)} away) lev {position.leverage:.2f}x "
        f"uPnL {format_currency(position.unrealized_pnl)} funding {position.current_funding_rate_pct:.4f}%"
    )


def format_exchange_data(data: ExchangeData) -> List[str]:
    lines = [format_summary(data.account_summary)]
    lines.extend(format_position(position) for position in data.positions)
    return lines


def render_snapshot(snapshot: CombinedSnapshot) -> List[str]:
    lines: List[str] = []
    for exchange in snapshot.available_exchanges:
        for account in snapshot.available_accounts.get(exchange, ()):
            data = snapshot.get(exchange, account)
            if data is None:
                lines.append(f"{exchange}/{account}: no data yet")
                continue
            lines.extend(format_exchange_data(data))
    return lines


def log_account_metrics(snapshot: CombinedSnapshot, metrics: Optional[MetricRegistry] = None) -> None:
    for line in render_snapshot(snapshot):
        logger.info(line)
    if metrics is None:
        return
    summary = metrics.summary()
    for name, value in sorted(summary["counters"].items()):
        logger.info("metric %s = %g", name, value)
    for name, value in sorted(summary["mean"].items()):
        logger.info("metric %s mean = %.3fs", name, value)


__all__ = [
    "format_exchange_data",
    "format_position",
    "format_summary",
    "log_account_metrics",
    "render_snapshot",
]
