from __future__ import annotations

import math

import pytest

from risk_monitor.errors import ParseError
from risk_monitor.models import MarginMode, Side
from risk_monitor.risk_engine.normalization import (
    COMBINED_MARGIN_SHORT_BUFFER,
    MAINTENANCE_MARGIN_RATIO,
    estimate_liquidation_price,
    liquidation_distance_pct,
    map_margin_mode,
    normalize_binance_position,
    normalize_bybit_position,
)


def test_short_binance_position_without_liquidation_price_is_estimated() -> None:
    raw = {
        "symbol": "BTCUSDT",
        "positionAmt": "-0.5",
        "markPrice": "60000",
        "leverage": "10",
        "entryPrice": "61000",
        "liquidationPrice": "0",
    }

    position = normalize_binance_position(raw)

    assert position is not None
    assert position.side is Side.SHORT
    assert position.size == 0.5
    assert position.notional_value == 30000.0
    assert position.entry_price == 61000.0
    assert position.liquidation_price == pytest.approx(66780.0)
    assert position.liquidation_price > 60000
    assert position.liquidation_distance_pct == pytest.approx(11.3)
    assert position.margin_mode is MarginMode.CROSS


@pytest.mark.parametrize("leverage", [1, 2, 5, 10, 20, 50, 125])
@pytest.mark.parametrize("mark", [0.05, 1.0, 3000.0, 60000.0])
def test_estimated_liquidation_price_is_on_the_adverse_side(leverage: float, mark: float) -> None:
    long_price = estimate_liquidation_price(Side.LONG, mark, leverage)
    short_price = estimate_liquidation_price(Side.SHORT, mark, leverage)

    assert math.isfinite(long_price) and math.isfinite(short_price)
    assert 0 <= long_price < mark
    assert short_price > mark


def test_long_estimate_is_clamped_at_zero_for_unlevered_positions() -> None:
    assert estimate_liquidation_price(Side.LONG, 100.0, 1.0) == 0.0


def test_combined_margin_adds_short_buffer() -> None:
    plain = estimate_liquidation_price(Side.SHORT, 100.0, 10)
    combined = estimate_liquidation_price(Side.SHORT, 100.0, 10, combined_margin=True)

    assert plain == pytest.approx(100.0 * (1 + 0.1 + MAINTENANCE_MARGIN_RATIO))
    assert combined - plain == pytest.approx(100.0 * COMBINED_MARGIN_SHORT_BUFFER)


def test_liquidation_distance_is_direction_aware() -> None:
    assert liquidation_distance_pct(Side.LONG, 100.0, 80.0) == pytest.approx(20.0)
    assert liquidation_distance_pct(Side.SHORT, 100.0, 125.0) == pytest.approx(25.0)
    assert liquidation_distance_pct(Side.LONG, 100.0, 0.0) == 0.0


def test_reported_liquidation_price_is_preferred_above_epsilon() -> None:
    raw = {
        "symbol": "ETHUSDT",
        "positionAmt": "2",
        "markPrice": "3000",
        "leverage": "5",
        "liquidationPrice": "2500.456",
        "marginType": "isolated",
        "unRealizedProfit": "12.346",
    }

    position = normalize_binance_position(raw, funding={"ETHUSDT": (0.0001, 0.00015)})

    assert position is not None
    assert position.side is Side.LONG
    assert position.liquidation_price == 2500.46
    assert position.margin_mode is MarginMode.ISOLATED
    assert position.unrealized_pnl == 12.35
    assert position.current_funding_rate_pct == 0.01
    assert position.next_funding_rate_pct == pytest.approx(0.01, abs=0.01)


def test_negligible_liquidation_price_falls_back_to_estimate() -> None:
    raw = {"symbol": "ETHUSDT", "positionAmt": "1", "markPrice": "1000", "leverage": "10", "liquidationPrice": "0.0005"}

    position = normalize_binance_position(raw)

    assert position is not None
    assert position.liquidation_price == pytest.approx(1000 * (1 - 0.1 - MAINTENANCE_MARGIN_RATIO))


def test_flat_positions_are_skipped() -> None:
    assert normalize_binance_position({"symbol": "BTCUSDT", "positionAmt": "0", "markPrice": "1"}) is None
    assert normalize_bybit_position({"symbol": "BTCUSDT", "size": "0", "markPrice": "1"}) is None


def test_coin_margined_contracts_have_no_funding_and_use_coin_notional() -> None:
    raw = {
        "symbol": "BTCUSD_PERP",
        "positionAmt": "-2",
        "markPrice": "50000",
        "notionalValue": "-0.004",
        "leverage": "10",
        "liquidationPrice": "0",
    }

    position = normalize_binance_position(
        raw, funding={"BTCUSD_PERP": (0.01, 0.01)}, portfolio_margin=True
    )

    assert position is not None
    assert position.notional_value == 200.0
    assert position.current_funding_rate_pct == 0.0
    assert position.next_funding_rate_pct == 0.0
    assert position.liquidation_price == pytest.approx(55900.0)


def test_bybit_position_mapping() -> None:
    raw = {
        "symbol": "BTCUSDT",
        "side": "Buy",
        "size": "0.1",
        "avgPrice": "49000",
        "markPrice": "50000",
        "liqPrice": "45000",
        "leverage": "10",
        "unrealisedPnl": "100",
        "cumRealisedPnl": "-5.556",
        "positionValue": "5000",
        "tradeMode": 1,
    }

    position = normalize_bybit_position(raw, funding={"BTCUSDT": (0.0001, 0.0002)})

    assert position is not None
    assert position.side is Side.LONG
    assert position.notional_value == 5000.0
    assert position.realized_pnl == -5.56
    assert position.margin_mode is MarginMode.ISOLATED
    assert position.liquidation_distance_pct == 10.0
    assert position.next_funding_rate_pct == 0.02


@pytest.mark.parametrize(
    "value, expected",
    [("cross", MarginMode.CROSS), ("ISOLATED", MarginMode.ISOLATED), ("portfolio", MarginMode.CROSS), (None, MarginMode.CROSS)],
)
def test_margin_mode_mapping_defaults_to_cross(value, expected) -> None:
    assert map_margin_mode(value) is expected


def test_non_numeric_mark_price_raises_parse_error() -> None:
    with pytest.raises(ParseError):
        normalize_binance_position({"symbol": "BTCUSDT", "positionAmt": "1", "markPrice": "n/a"})


def test_missing_symbol_raises_parse_error() -> None:
    with pytest.raises(ParseError):
        normalize_bybit_position({"size": "1", "markPrice": "1"})
