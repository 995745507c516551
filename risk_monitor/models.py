"""Canonical risk data model shared by every exchange variant."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Tuple

AccountKey = Tuple[str, str]


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class MarginMode(str, Enum):
    CROSS = "CROSS"
    ISOLATED = "ISOLATED"


@dataclass(frozen=True)
class Position:
    """One open derivative position.

    ``size`` is always the absolute contract quantity; the direction of the
    exposure lives only in ``side``.
    """

    symbol: str
    side: Side
    size: float
    notional_value: float
    entry_price: float
    mark_price: float
    liquidation_price: float
    liquidation_distance_pct: float
    current_funding_rate_pct: float
    next_funding_rate_pct: float
    leverage: float
    unrealized_pnl: float
    realized_pnl: float
    margin_mode: MarginMode
    exchange: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "size": self.size,
            "notionalValue": self.notional_value,
            "entryPrice": self.entry_price,
            "markPrice": self.mark_price,
            "liquidationPrice": self.liquidation_price,
            "liquidationPriceChangePercent": self.liquidation_distance_pct,
            "currentFundingRate": self.current_funding_rate_pct,
            "nextFundingRate": self.next_funding_rate_pct,
            "leverage": self.leverage,
            "unrealizedPnl": self.unrealized_pnl,
            "realizedPnl": self.realized_pnl,
            "marginMode": self.margin_mode.value,
            "exchange": self.exchange,
        }


@dataclass(frozen=True)
class AccountSummary:
    exchange: str
    account_id: str
    base_currency: str
    base_balance: float
    total_notional_value: float
    account_leverage: float
    open_positions_count: int
    open_orders_count: int
    account_margin_ratio: float
    liquidation_buffer: float

    def to_payload(self) -> Dict[str, Any]:
        return {
            "exchange": self.exchange,
            "accountId": self.account_id,
            "baseCurrency": self.base_currency,
            "baseBalance": self.base_balance,
            "totalNotionalValue": self.total_notional_value,
            "accountLeverage": self.account_leverage,
            "openPositionsCount": self.open_positions_count,
            "openOrdersCount": self.open_orders_count,
            "accountMarginRatio": self.account_margin_ratio,
            "liquidationBuffer": self.liquidation_buffer,
        }


@dataclass(frozen=True)
class ExchangeData:
    """Result of one successful fetch cycle for an (exchange, account) pair."""

    positions: Tuple[Position, ...]
    account_summary: AccountSummary
    fetched_at: float = 0.0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "positions": [position.to_payload() for position in self.positions],
            "accountSummary": self.account_summary.to_payload(),
            "fetchedAt": self.fetched_at,
        }


@dataclass
class FetchState:
    """Scheduler bookkeeping for one (exchange, account) pair."""

    last_fetch: float = 0.0
    consecutive_errors: int = 0
    backoff_until: float = 0.0
    last_error: str = ""

    def in_backoff(self, now: float) -> bool:
        return self.backoff_until > 0 and now < self.backoff_until


@dataclass(frozen=True)
class CombinedSnapshot:
    """Immutable view over every cached :class:`ExchangeData`.

    New instances are published by the snapshot cache on every write; readers
    keep whichever instance they obtained without further locking.
    """

    exchanges: Mapping[str, Mapping[str, ExchangeData]]
    current_exchange: str
    current_account: str
    available_exchanges: Tuple[str, ...] = ()
    available_accounts: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def get(self, exchange: str, account: str) -> ExchangeData | None:
        return self.exchanges.get(exchange, {}).get(account)

    def current(self) -> ExchangeData | None:
        return self.get(self.current_exchange, self.current_account)

    def to_payload(self) -> Dict[str, Any]:
        exchanges: Dict[str, Dict[str, Any]] = {}
        for exchange, accounts in self.exchanges.items():
            exchanges[exchange] = {name: data.to_payload() for name, data in accounts.items()}
        return {
            "exchanges": exchanges,
            "currentExchange": self.current_exchange,
            "currentAccount": self.current_account,
            "availableExchanges": list(self.available_exchanges),
            "availableAccounts": {
                exchange: list(accounts) for exchange, accounts in self.available_accounts.items()
            },
        }


POSITION_COLUMNS: Tuple[str, ...] = (
    "symbol",
    "side",
    "size",
    "notionalValue",
    "entryPrice",
    "markPrice",
    "liquidationPrice",
    "liquidationPriceChangePercent",
    "currentFundingRate",
    "nextFundingRate",
    "leverage",
    "unrealizedPnl",
    "realizedPnl",
    "marginMode",
)


__all__ = [
    "AccountKey",
    "AccountSummary",
    "CombinedSnapshot",
    "ExchangeData",
    "FetchState",
    "MarginMode",
    "POSITION_COLUMNS",
    "Position",
    "Side",
]
