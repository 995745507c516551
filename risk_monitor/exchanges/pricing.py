"""Best-effort asset price lookup used to convert non-base balances.

Resolution is two steps and never deeper: the direct ``ASSET/QUOTE`` market,
then ``ASSET/BTC`` multiplied by ``BTC/QUOTE``. Anything else resolves to 0.
"""

from __future__ import annotations

import abc
import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Iterable, Optional

import ccxt.async_support as ccxt_async
from ccxt.base.errors import BaseError

logger = logging.getLogger(__name__)

INTERMEDIATE_ASSET = "BTC"


class PriceOracle(abc.ABC):
    """Resolve the price of an asset expressed in a quote currency."""

    @abc.abstractmethod
    async def price(self, asset: str, quote: str = "USDT") -> float:
        """Return the price of ``asset`` in ``quote`` or 0 when unknown."""

    async def prices(self, assets: Iterable[str], quote: str = "USDT") -> Dict[str, float]:
        assets = list(dict.fromkeys(assets))
        results = await asyncio.gather(*(self.price(asset, quote) for asset in assets))
        return dict(zip(assets, results))

    async def close(self) -> None:
        return None


class CcxtPriceOracle(PriceOracle):
    """Look up spot prices through ccxt's public market data endpoints."""

    def __init__(
        self,
        exchange_id: str = "binance",
        *,
        client: Any = None,
        client_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.exchange_id = exchange_id
        self._client = client
        self._client_factory = client_factory

    def _ensure_client(self) -> Any:
        if self._client is None:
            if self._client_factory is not None:
                self._client = self._client_factory()
            else:
                exchange_class = getattr(ccxt_async, self.exchange_id)
                self._client = exchange_class({"enableRateLimit": True})
        return self._client

    async def _last_price(self, symbol: str) -> float:
        client = self._ensure_client()
        ticker = await client.fetch_ticker(symbol)
        for key in ("last", "close", "bid"):
            value = ticker.get(key) if isinstance(ticker, dict) else None
            if value:
                return float(value)
        return 0.0

    async def price(self, asset: str, quote: str = "USDT") -> float:
        asset = asset.upper()
        quote = quote.upper()
        if asset == quote:
            return 1.0
        try:
            direct = await self._last_price(f"{asset}/{quote}")
            if direct > 0:
                return direct
        except BaseError as exc:
            logger.debug("No direct %s/%s price: %s", asset, quote, exc)

        if asset == INTERMEDIATE_ASSET or quote == INTERMEDIATE_ASSET:
            logger.warning("Unable to price %s in %s", asset, quote)
            return 0.0
        try:
            via_intermediate = await self._last_price(f"{asset}/{INTERMEDIATE_ASSET}")
            intermediate_price = await self._last_price(f"{INTERMEDIATE_ASSET}/{quote}")
        except BaseError as exc:
            logger.warning("Unable to price %s in %s: %s", asset, quote, exc)
            return 0.0
        resolved = via_intermediate * intermediate_price
        if resolved <= 0:
            logger.warning("Unable to price %s in %s", asset, quote)
            return 0.0
        return resolved

    async def close(self) -> None:
        if self._client is None:
            return
        closer = getattr(self._client, "close", None)
        if closer is None:
            return
        result = closer()
        if inspect.isawaitable(result):
            await result
        self._client = None


__all__ = ["CcxtPriceOracle", "INTERMEDIATE_ASSET", "PriceOracle"]
