"""Shared plumbing for the REST exchange clients."""

from __future__ import annotations

import abc
import asyncio
import inspect
import json
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import aiohttp

from ..config.models import AccountConfig
from ..errors import NetworkError, ParseError
from ..models import ExchangeData
from .pricing import PriceOracle

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def payload_shape(payload: Any, *, depth: int = 2) -> Any:
    """Describe the structure of ``payload`` without leaking its values."""

    if depth <= 0:
        return type(payload).__name__
    if isinstance(payload, Mapping):
        return {str(key): payload_shape(value, depth=depth - 1) for key, value in payload.items()}
    if isinstance(payload, (list, tuple)):
        if not payload:
            return "list[0]"
        return [f"list[{len(payload)}]", payload_shape(payload[0], depth=depth - 1)]
    return type(payload).__name__


class HttpTransport:
    """Thin wrapper around :class:`aiohttp.ClientSession` returning decoded JSON.

    Transport failures surface as :class:`NetworkError`; bodies that are not
    JSON surface as :class:`ParseError`. HTTP status handling is left to the
    exchange clients because every exchange encodes errors differently.
    """

    def __init__(
        self,
        *,
        exchange: str,
        account: str,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.exchange = exchange
        self.account = account
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def get_json(self, url: str, *, headers: Optional[Mapping[str, str]] = None) -> Tuple[int, Any]:
        session = self._ensure_session()
        try:
            async with session.get(url, headers=dict(headers or {})) as response:
                status = response.status
                text = await response.text()
        except asyncio.TimeoutError as exc:
            raise NetworkError("Request timed out", exchange=self.exchange, account=self.account) from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(
                f"Network error: {exc}", exchange=self.exchange, account=self.account
            ) from exc
        if not text:
            return status, None
        try:
            return status, json.loads(text)
        except ValueError as exc:
            if status >= 400:
                return status, {"msg": text[:200]}
            raise ParseError(
                f"Response is not valid JSON (status {status})",
                exchange=self.exchange,
                account=self.account,
            ) from exc

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None


class ExchangeClient(abc.ABC):
    """Capability interface shared by every exchange/account variant."""

    exchange: str = ""

    def __init__(
        self,
        config: AccountConfig,
        *,
        transport: Optional[HttpTransport] = None,
        price_oracle: Optional[PriceOracle] = None,
        clock: Clock = time.time,
        request_timeout_seconds: float = 10.0,
    ) -> None:
        self.config = config
        self.account = config.name
        self._transport = transport or HttpTransport(
            exchange=self.exchange,
            account=config.name,
            timeout_seconds=request_timeout_seconds,
        )
        self._price_oracle = price_oracle
        self._clock = clock
        self._debug_api_payloads = config.debug_api_payloads

    @property
    def key(self) -> Tuple[str, str]:
        return self.exchange, self.account

    @abc.abstractmethod
    async def initialize(self) -> None:
        """Validate credentials with one authenticated round trip."""

    @abc.abstractmethod
    async def fetch_snapshot(self) -> ExchangeData:
        """Fetch and normalise positions and account totals as one unit."""

    async def close(self) -> None:
        """Release the HTTP session. The price oracle is shared and closed by its owner."""

        closer = getattr(self._transport, "close", None)
        if closer is None:
            return
        try:
            result = closer()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.debug(
                "[%s/%s] Failed to close HTTP session cleanly", self.exchange, self.account, exc_info=True
            )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _log_exchange_payload(self, operation: str, payload: Any) -> None:
        if not self._debug_api_payloads:
            return
        logger.debug(
            "[%s/%s] %s response shape=%s",
            self.exchange,
            self.account,
            operation,
            payload_shape(payload),
        )

    def _parse_error(self, message: str, payload: Any) -> ParseError:
        logger.warning(
            "[%s/%s] Unexpected payload: %s (shape=%s)",
            self.exchange,
            self.account,
            message,
            payload_shape(payload),
        )
        return ParseError(message, exchange=self.exchange, account=self.account)

    async def _convert_prices(self, assets: Any, base_currency: str) -> Dict[str, float]:
        wanted = sorted({asset for asset in assets if asset and asset != base_currency})
        if not wanted or self._price_oracle is None:
            return {}
        return await self._price_oracle.prices(wanted, quote=base_currency)


__all__ = ["Clock", "ExchangeClient", "HttpTransport", "payload_shape"]
