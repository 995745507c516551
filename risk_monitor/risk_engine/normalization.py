"""Map exchange-native position records into canonical :class:`Position` objects.

Liquidation prices are taken from the exchange whenever it reports a usable
value. When it does not, an estimate is derived from the mark price, the
leverage and a fixed maintenance margin ratio. The estimate ignores tiered
maintenance brackets and cross-margin collateral, so it is only an
approximation of where the exchange would liquidate.
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Optional, Tuple

from ..errors import ParseError
from ..models import MarginMode, Position, Side


LIQUIDATION_EPSILON = 1e-3
MAINTENANCE_MARGIN_RATIO = 0.013
COMBINED_MARGIN_SHORT_BUFFER = 0.005

FundingRates = Tuple[float, float]


def coerce_float(value: Any, fallback: float = 0.0) -> float:
    if value is None or value == "":
        return fallback
    try:
        result = float(value)
    except (TypeError, ValueError):
        return fallback
    if math.isnan(result) or math.isinf(result):
        return fallback
    return result


def _require_float(raw: Mapping[str, Any], key: str, *, exchange: str) -> float:
    value = raw.get(key)
    try:
        result = float(value)
    except (TypeError, ValueError) as exc:
        raise ParseError(
            f"Position field '{key}' is not numeric (keys: {sorted(raw)})", exchange=exchange
        ) from exc
    if math.isnan(result) or math.isinf(result):
        raise ParseError(f"Position field '{key}' is not finite", exchange=exchange)
    return result


def _require_symbol(raw: Mapping[str, Any], *, exchange: str) -> str:
    symbol = raw.get("symbol")
    if not symbol:
        raise ParseError(f"Position record without symbol (keys: {sorted(raw)})", exchange=exchange)
    return str(symbol)


def round2(value: float) -> float:
    return round(coerce_float(value), 2)


def is_coin_margined(symbol: str) -> bool:
    """Coin-margined Binance contracts carry an underscore (``BTCUSD_PERP``)."""

    return "_" in symbol


def estimate_liquidation_price(
    side: Side, mark_price: float, leverage: float, *, combined_margin: bool = False
) -> float:
    """Approximate the liquidation price of an isolated position at ``leverage``."""

    if mark_price <= 0 or leverage <= 0:
        return 0.0
    headroom = 1.0 / leverage + MAINTENANCE_MARGIN_RATIO
    if side is Side.LONG:
        return max(0.0, mark_price * (1.0 - headroom))
    if combined_margin:
        headroom += COMBINED_MARGIN_SHORT_BUFFER
    return mark_price * (1.0 + headroom)


def liquidation_distance_pct(side: Side, mark_price: float, liquidation_price: float) -> float:
    """Percent the price must move against ``side`` to reach ``liquidation_price``."""

    if liquidation_price <= 0 or mark_price <= 0:
        return 0.0
    if side is Side.LONG:
        return (mark_price - liquidation_price) / mark_price * 100.0
    return (liquidation_price - mark_price) / mark_price * 100.0


def map_margin_mode(value: Any) -> MarginMode:
    if isinstance(value, str) and value.strip().lower() == "isolated":
        return MarginMode.ISOLATED
    return MarginMode.CROSS


def resolve_liquidation_price(
    reported: float, side: Side, mark_price: float, leverage: float, *, combined_margin: bool
) -> float:
    if reported >= LIQUIDATION_EPSILON:
        return reported
    return estimate_liquidation_price(side, mark_price, leverage, combined_margin=combined_margin)


def build_position(
    *,
    exchange: str,
    symbol: str,
    side: Side,
    size: float,
    notional_value: float,
    entry_price: float,
    mark_price: float,
    reported_liquidation_price: float,
    leverage: float,
    unrealized_pnl: float,
    realized_pnl: float,
    margin_mode: MarginMode,
    funding: Optional[FundingRates] = None,
    combined_margin: bool = False,
) -> Position:
    """Assemble a :class:`Position`, estimating liquidation and rounding every number."""

    if leverage <= 0:
        leverage = 1.0
    liquidation_price = resolve_liquidation_price(
        reported_liquidation_price, side, mark_price, leverage, combined_margin=combined_margin
    )
    current_rate, next_rate = funding or (0.0, 0.0)
    return Position(
        symbol=symbol,
        side=side,
        size=round2(abs(size)),
        notional_value=round2(abs(notional_value)),
        entry_price=round2(entry_price),
        mark_price=round2(mark_price),
        liquidation_price=round2(liquidation_price),
        liquidation_distance_pct=round2(liquidation_distance_pct(side, mark_price, liquidation_price)),
        current_funding_rate_pct=round2(current_rate * 100.0),
        next_funding_rate_pct=round2(next_rate * 100.0),
        leverage=round2(leverage),
        unrealized_pnl=round2(unrealized_pnl),
        realized_pnl=round2(realized_pnl),
        margin_mode=margin_mode,
        exchange=exchange,
    )


def normalize_binance_position(
    raw: Mapping[str, Any],
    *,
    exchange: str = "binance",
    funding: Optional[Mapping[str, FundingRates]] = None,
    portfolio_margin: bool = False,
) -> Optional[Position]:
    """Normalise a Binance ``positionRisk`` entry; returns ``None`` for flat positions."""

    symbol = _require_symbol(raw, exchange=exchange)
    amount = coerce_float(raw.get("positionAmt"))
    if amount == 0:
        return None
    mark_price = _require_float(raw, "markPrice", exchange=exchange)
    coin_margined = is_coin_margined(symbol)
    side = Side.LONG if amount > 0 else Side.SHORT

    if coin_margined and raw.get("notionalValue") not in (None, ""):
        notional = abs(coerce_float(raw.get("notionalValue")) * mark_price)
    else:
        notional = abs(amount * mark_price)

    rates: Optional[FundingRates] = None
    if not coin_margined and funding:
        rates = funding.get(symbol)

    return build_position(
        exchange=exchange,
        symbol=symbol,
        side=side,
        size=amount,
        notional_value=notional,
        entry_price=coerce_float(raw.get("entryPrice")),
        mark_price=mark_price,
        reported_liquidation_price=coerce_float(raw.get("liquidationPrice")),
        leverage=coerce_float(raw.get("leverage"), fallback=1.0),
        unrealized_pnl=coerce_float(raw.get("unRealizedProfit", raw.get("unrealizedProfit"))),
        realized_pnl=0.0,
        margin_mode=map_margin_mode(raw.get("marginType")),
        funding=rates,
        combined_margin=portfolio_margin and coin_margined,
    )


def normalize_bybit_position(
    raw: Mapping[str, Any],
    *,
    exchange: str = "bybit",
    funding: Optional[Mapping[str, FundingRates]] = None,
) -> Optional[Position]:
    """Normalise a Bybit v5 ``position/list`` entry of a unified account."""

    symbol = _require_symbol(raw, exchange=exchange)
    size = coerce_float(raw.get("size"))
    if size == 0:
        return None
    mark_price = _require_float(raw, "markPrice", exchange=exchange)
    raw_side = str(raw.get("side") or "")
    if raw_side == "Buy":
        side = Side.LONG
    elif raw_side == "Sell":
        side = Side.SHORT
    else:
        side = Side.LONG if size > 0 else Side.SHORT

    notional = coerce_float(raw.get("positionValue"))
    if notional == 0:
        notional = size * mark_price

    trade_mode = str(raw.get("tradeMode", "0")).strip()
    margin_mode = MarginMode.ISOLATED if trade_mode == "1" else MarginMode.CROSS

    return build_position(
        exchange=exchange,
        symbol=symbol,
        side=side,
        size=size,
        notional_value=notional,
        entry_price=coerce_float(raw.get("avgPrice")),
        mark_price=mark_price,
        reported_liquidation_price=coerce_float(raw.get("liqPrice")),
        leverage=coerce_float(raw.get("leverage"), fallback=1.0),
        unrealized_pnl=coerce_float(raw.get("unrealisedPnl")),
        realized_pnl=coerce_float(raw.get("cumRealisedPnl")),
        margin_mode=margin_mode,
        funding=(funding or {}).get(symbol),
        combined_margin=True,
    )


__all__ = [
    "COMBINED_MARGIN_SHORT_BUFFER",
    "LIQUIDATION_EPSILON",
    "MAINTENANCE_MARGIN_RATIO",
    "build_position",
    "coerce_float",
    "estimate_liquidation_price",
    "is_coin_margined",
    "liquidation_distance_pct",
    "map_margin_mode",
    "normalize_binance_position",
    "normalize_bybit_position",
    "round2",
]
