"""Exchange client variants and the factory that selects one per account."""

from __future__ import annotations

from typing import Any, Dict, Tuple, Type

from ..config.models import AccountConfig
from .base import ExchangeClient, HttpTransport
from .binance import BinanceFuturesClient, BinancePortfolioMarginClient
from .bybit import BybitUnifiedClient
from .pricing import CcxtPriceOracle, PriceOracle

CLIENT_VARIANTS: Dict[Tuple[str, str], Type[ExchangeClient]] = {
    ("binance", "futures"): BinanceFuturesClient,
    ("binance", "portfolio_margin"): BinancePortfolioMarginClient,
    ("bybit", "unified"): BybitUnifiedClient,
}


def create_client(config: AccountConfig, **kwargs: Any) -> ExchangeClient:
    """Instantiate the client variant matching ``config.exchange`` and ``config.mode``."""

    variant = CLIENT_VARIANTS.get((config.exchange.lower(), config.mode.lower()))
    if variant is None:
        raise ValueError(
            f"Account '{config.name}' uses unsupported exchange/mode {config.exchange}/{config.mode}"
        )
    return variant(config, **kwargs)


__all__ = [
    "BinanceFuturesClient",
    "BinancePortfolioMarginClient",
    "BybitUnifiedClient",
    "CLIENT_VARIANTS",
    "CcxtPriceOracle",
    "ExchangeClient",
    "HttpTransport",
    "PriceOracle",
    "create_client",
]
