"""Binance USDT-M futures and portfolio margin clients."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlencode

from ..config.models import AccountConfig
from ..errors import AuthError, FetchError, NetworkError
from ..models import ExchangeData, Position
from ..risk_engine.calculator import build_account_summary, resolve_base_balance
from ..risk_engine.normalization import (
    FundingRates,
    coerce_float,
    is_coin_margined,
    normalize_binance_position,
)
from .base import ExchangeClient
from .signing import (
    DEFAULT_RECV_WINDOW_MS,
    binance_headers,
    binance_signed_query,
    split_credentials,
)

logger = logging.getLogger(__name__)

FUTURES_URL = "https://fapi.binance.com"
COIN_FUTURES_URL = "https://dapi.binance.com"
PORTFOLIO_MARGIN_URL = "https://papi.binance.com"

AUTH_ERROR_CODES = {-2014, -2015, -1022, -2008}
TIMESTAMP_ERROR_CODE = -1021
FUNDING_HISTORY_LIMIT = 30


def _error_code(payload: Any) -> Optional[int]:
    if isinstance(payload, Mapping) and "code" in payload:
        try:
            return int(payload["code"])
        except (TypeError, ValueError):
            return None
    return None


class BinanceClient(ExchangeClient):
    """Signed REST access shared by the Binance account variants.

    The local clock is synchronised against the futures server time during
    :meth:`initialize` and the offset is reused for every signed request.
    """

    exchange = "binance"
    default_base_url = FUTURES_URL
    market_data_url = FUTURES_URL

    def __init__(
        self, config: AccountConfig, *, recv_window_ms: int = DEFAULT_RECV_WINDOW_MS, **kwargs: Any
    ) -> None:
        super().__init__(config, **kwargs)
        self._api_key, self._api_secret = split_credentials(config.credentials)
        self._base_url = (config.base_url or self.default_base_url).rstrip("/")
        self._recv_window_ms = recv_window_ms
        self._time_offset_ms = 0

    @property
    def time_offset_ms(self) -> int:
        return self._time_offset_ms

    async def sync_time(self) -> None:
        local_before = self._now_ms()
        payload = await self._public("/fapi/v1/time", base_url=self.market_data_url)
        if not isinstance(payload, Mapping) or "serverTime" not in payload:
            raise self._parse_error("Server time response without serverTime", payload)
        server_time = int(coerce_float(payload.get("serverTime")))
        local_after = self._now_ms()
        self._time_offset_ms = server_time - (local_before + local_after) // 2
        logger.debug(
            "[%s/%s] Server time offset %d ms", self.exchange, self.account, self._time_offset_ms
        )

    def _timestamp_ms(self) -> int:
        return self._now_ms() + self._time_offset_ms

    def _check_response(self, status: int, payload: Any, path: str) -> Any:
        code = _error_code(payload)
        failed = status >= 400 or (code is not None and code < 0)
        if not failed:
            return payload
        message = payload.get("msg") if isinstance(payload, Mapping) else None
        detail = f"{path} failed (status {status}, code {code}): {message or 'no message'}"
        if status == 401 or status == 403 or code in AUTH_ERROR_CODES:
            raise AuthError(detail, exchange=self.exchange, account=self.account, code=code)
        if status in (418, 429):
            raise NetworkError(
                f"Rate limited on {path} (status {status})",
                exchange=self.exchange,
                account=self.account,
                code=code,
            )
        raise NetworkError(detail, exchange=self.exchange, account=self.account, code=code)

    async def _public(
        self, path: str, params: Optional[Mapping[str, Any]] = None, *, base_url: Optional[str] = None
    ) -> Any:
        url = f"{(base_url or self.market_data_url).rstrip('/')}{path}"
        if params:
            url = f"{url}?{urlencode(dict(params))}"
        status, payload = await self._transport.get_json(url)
        self._log_exchange_payload(path, payload)
        return self._check_response(status, payload, path)

    async def _signed(
        self, path: str, params: Optional[Mapping[str, Any]] = None, *, base_url: Optional[str] = None
    ) -> Any:
        query = binance_signed_query(
            self._api_secret, params, self._timestamp_ms(), recv_window_ms=self._recv_window_ms
        )
        url = f"{(base_url or self._base_url).rstrip('/')}{path}?{query}"
        status, payload = await self._transport.get_json(url, headers=binance_headers(self._api_key))
        self._log_exchange_payload(path, payload)
        try:
            return self._check_response(status, payload, path)
        except NetworkError as exc:
            if exc.code == TIMESTAMP_ERROR_CODE:
                logger.warning(
                    "[%s/%s] Timestamp rejected, resynchronising clock", self.exchange, self.account
                )
                try:
                    await self.sync_time()
                except FetchError as sync_exc:
                    logger.warning("[%s/%s] Clock resync failed: %s", self.exchange, self.account, sync_exc)
            raise

    def _require_list(self, payload: Any, operation: str) -> List[Mapping[str, Any]]:
        if not isinstance(payload, list):
            raise self._parse_error(f"{operation} did not return a list", payload)
        return [entry for entry in payload if isinstance(entry, Mapping)]

    def _require_mapping(self, payload: Any, operation: str, fields: Sequence[str]) -> Mapping[str, Any]:
        if not isinstance(payload, Mapping):
            raise self._parse_error(f"{operation} did not return an object", payload)
        missing = [name for name in fields if name not in payload]
        if missing:
            raise self._parse_error(f"{operation} is missing {', '.join(missing)}", payload)
        return payload

    async def _funding_history_mean(self, symbol: str) -> Optional[float]:
        try:
            payload = await self._public(
                "/fapi/v1/fundingRate", {"symbol": symbol, "limit": FUNDING_HISTORY_LIMIT}
            )
        except FetchError as exc:
            logger.debug(
                "[%s/%s] Funding history for %s unavailable: %s", self.exchange, self.account, symbol, exc
            )
            return None
        if not isinstance(payload, list) or not payload:
            return None
        rates = [coerce_float(entry.get("fundingRate")) for entry in payload if isinstance(entry, Mapping)]
        if not rates:
            return None
        return sum(rates) / len(rates)

    async def _funding_rates(
        self, premium_index: Any, position_symbols: Iterable[str]
    ) -> Dict[str, FundingRates]:
        """Current rate from the premium index, next rate from the recent history mean."""

        current: Dict[str, float] = {}
        for entry in self._require_list(premium_index, "premiumIndex"):
            symbol = entry.get("symbol")
            if symbol:
                current[str(symbol)] = coerce_float(entry.get("lastFundingRate"))

        symbols = sorted({symbol for symbol in position_symbols if not is_coin_margined(symbol)})
        means = await asyncio.gather(*(self._funding_history_mean(symbol) for symbol in symbols))
        rates: Dict[str, FundingRates] = {symbol: (rate, rate) for symbol, rate in current.items()}
        for symbol, mean in zip(symbols, means):
            last = current.get(symbol, 0.0)
            rates[symbol] = (last, mean if mean is not None else last)
        return rates

    def _normalize_positions(
        self,
        raw_positions: Iterable[Mapping[str, Any]],
        funding: Mapping[str, FundingRates],
        *,
        portfolio_margin: bool,
    ) -> Tuple[Position, ...]:
        positions: List[Position] = []
        for raw in raw_positions:
            position = normalize_binance_position(
                raw,
                exchange=self.exchange,
                funding=funding,
                portfolio_margin=portfolio_margin,
            )
            if position is not None:
                positions.append(position)
        return tuple(positions)

    @staticmethod
    def _open_symbols(raw_positions: Iterable[Mapping[str, Any]]) -> List[str]:
        return [
            str(raw.get("symbol"))
            for raw in raw_positions
            if raw.get("symbol") and coerce_float(raw.get("positionAmt")) != 0
        ]


class BinanceFuturesClient(BinanceClient):
    """USDT-M futures account, optionally including COIN-M wallet balances."""

    async def initialize(self) -> None:
        await self.sync_time()
        account = await self._signed("/fapi/v2/account")
        self._require_mapping(account, "account", ("totalMaintMargin", "totalMarginBalance"))
        logger.info("[%s/%s] Futures client initialised", self.exchange, self.account)

    async def _coin_margined_account(self) -> Optional[Any]:
        if not self.config.params.get("include_coin_margined_balance", True):
            return None
        return await self._signed("/dapi/v1/account", base_url=COIN_FUTURES_URL)

    async def fetch_snapshot(self) -> ExchangeData:
        account_raw, positions_raw, orders_raw, premium_raw, coin_account_raw = await asyncio.gather(
            self._signed("/fapi/v2/account"),
            self._signed("/fapi/v2/positionRisk"),
            self._signed("/fapi/v1/openOrders"),
            self._public("/fapi/v1/premiumIndex"),
            self._coin_margined_account(),
        )
        account = self._require_mapping(
            account_raw, "account", ("totalMaintMargin", "totalMarginBalance", "assets")
        )
        raw_positions = self._require_list(positions_raw, "positionRisk")
        orders = self._require_list(orders_raw, "openOrders")

        funding = await self._funding_rates(premium_raw, self._open_symbols(raw_positions))
        positions = self._normalize_positions(raw_positions, funding, portfolio_margin=False)

        balances: List[Tuple[str, float]] = []
        for asset in account.get("assets") or []:
            if isinstance(asset, Mapping):
                balances.append((str(asset.get("asset")), coerce_float(asset.get("walletBalance"))))
        if isinstance(coin_account_raw, Mapping):
            for asset in coin_account_raw.get("assets") or []:
                if isinstance(asset, Mapping):
                    balances.append((str(asset.get("asset")), coerce_float(asset.get("walletBalance"))))
        base_currency = self.config.base_currency
        prices = await self._convert_prices(
            (asset for asset, amount in balances if amount > 0), base_currency
        )
        base_balance = resolve_base_balance(None, balances, prices, base_currency=base_currency)

        summary = build_account_summary(
            exchange=self.exchange,
            account_id=self.account,
            positions=positions,
            open_orders_count=len(orders),
            equity=coerce_float(account.get("totalMarginBalance")),
            maintenance_margin=coerce_float(account.get("totalMaintMargin")),
            base_balance=base_balance,
            base_currency=base_currency,
        )
        return ExchangeData(positions=positions, account_summary=summary, fetched_at=self._clock())


class BinancePortfolioMarginClient(BinanceClient):
    """Portfolio margin account combining USDT-M and COIN-M positions."""

    default_base_url = PORTFOLIO_MARGIN_URL

    async def initialize(self) -> None:
        await self.sync_time()
        account = await self._signed("/papi/v1/account")
        self._require_mapping(account, "account", ("actualEquity", "accountMaintMargin"))
        logger.info("[%s/%s] Portfolio margin client initialised", self.exchange, self.account)

    async def fetch_snapshot(self) -> ExchangeData:
        (
            account_raw,
            um_positions_raw,
            cm_positions_raw,
            um_orders_raw,
            cm_orders_raw,
            premium_raw,
        ) = await asyncio.gather(
            self._signed("/papi/v1/account"),
            self._signed("/papi/v1/um/positionRisk"),
            self._signed("/papi/v1/cm/positionRisk"),
            self._signed("/papi/v1/um/openOrders"),
            self._signed("/papi/v1/cm/openOrders"),
            self._public("/fapi/v1/premiumIndex"),
        )
        account = self._require_mapping(account_raw, "account", ("actualEquity", "accountMaintMargin"))
        raw_positions = self._require_list(um_positions_raw, "um/positionRisk") + self._require_list(
            cm_positions_raw, "cm/positionRisk"
        )
        open_orders = len(self._require_list(um_orders_raw, "um/openOrders")) + len(
            self._require_list(cm_orders_raw, "cm/openOrders")
        )

        funding = await self._funding_rates(premium_raw, self._open_symbols(raw_positions))
        positions = self._normalize_positions(raw_positions, funding, portfolio_margin=True)

        equity = coerce_float(account.get("actualEquity"))
        summary = build_account_summary(
            exchange=self.exchange,
            account_id=self.account,
            positions=positions,
            open_orders_count=open_orders,
            equity=equity,
            maintenance_margin=coerce_float(account.get("accountMaintMargin")),
            base_balance=resolve_base_balance(equity, base_currency=self.config.base_currency),
            base_currency=self.config.base_currency,
        )
        return ExchangeData(positions=positions, account_summary=summary, fetched_at=self._clock())


__all__ = [
    "AUTH_ERROR_CODES",
    "BinanceClient",
    "BinanceFuturesClient",
    "BinancePortfolioMarginClient",
]
