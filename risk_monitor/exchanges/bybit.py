"""Bybit v5 unified margin account client."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..config.models import AccountConfig
from ..errors import AuthError, NetworkError
from ..models import ExchangeData, Position
from ..risk_engine.calculator import build_account_summary, resolve_base_balance
from ..risk_engine.normalization import FundingRates, coerce_float, normalize_bybit_position
from .base import ExchangeClient
from .signing import DEFAULT_RECV_WINDOW_MS, bybit_query, bybit_signed_headers, split_credentials

logger = logging.getLogger(__name__)

BYBIT_URL = "https://api.bybit.com"
SETTLE_COINS = ("USDT", "USDC")
# wallet totals and per-coin usdValue are quoted in USD
USD_PEGGED = frozenset({"USD", "USDT", "USDC"})
POSITION_PAGE_LIMIT = 200

AUTH_RET_CODES = {10003, 10004, 10005, 33004}
RATE_LIMIT_RET_CODES = {10006, 10016, 10018}


class BybitUnifiedClient(ExchangeClient):
    """Unified trading account with linear positions settled in USDT and USDC."""

    exchange = "bybit"

    def __init__(
        self, config: AccountConfig, *, recv_window_ms: int = DEFAULT_RECV_WINDOW_MS, **kwargs: Any
    ) -> None:
        super().__init__(config, **kwargs)
        self._api_key, self._api_secret = split_credentials(config.credentials)
        self._base_url = (config.base_url or BYBIT_URL).rstrip("/")
        self._recv_window_ms = recv_window_ms

    def _check_response(self, status: int, payload: Any, path: str) -> Any:
        if status in (401, 403):
            raise AuthError(
                f"{path} rejected credentials (status {status})",
                exchange=self.exchange,
                account=self.account,
            )
        if status in (418, 429) or status >= 500:
            raise NetworkError(
                f"{path} failed with status {status}", exchange=self.exchange, account=self.account
            )
        if not isinstance(payload, Mapping) or "retCode" not in payload:
            raise self._parse_error(f"{path} response without retCode", payload)
        try:
            ret_code = int(payload.get("retCode"))
        except (TypeError, ValueError):
            raise self._parse_error(f"{path} returned a non-numeric retCode", payload) from None
        if ret_code == 0:
            result = payload.get("result")
            if not isinstance(result, Mapping):
                raise self._parse_error(f"{path} response without result", payload)
            return result
        detail = f"{path} failed (retCode {ret_code}): {payload.get('retMsg') or 'no message'}"
        if ret_code in AUTH_RET_CODES:
            raise AuthError(detail, exchange=self.exchange, account=self.account, code=ret_code)
        if ret_code in RATE_LIMIT_RET_CODES:
            raise NetworkError(
                f"Rate limited on {path} (retCode {ret_code})",
                exchange=self.exchange,
                account=self.account,
                code=ret_code,
            )
        raise NetworkError(detail, exchange=self.exchange, account=self.account, code=ret_code)

    async def _public(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Mapping[str, Any]:
        query = bybit_query(params)
        url = f"{self._base_url}{path}?{query}" if query else f"{self._base_url}{path}"
        status, payload = await self._transport.get_json(url)
        self._log_exchange_payload(path, payload)
        return self._check_response(status, payload, path)

    async def _signed(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Mapping[str, Any]:
        query = bybit_query(params)
        headers = bybit_signed_headers(
            self._api_key,
            self._api_secret,
            query,
            self._now_ms(),
            recv_window_ms=self._recv_window_ms,
        )
        url = f"{self._base_url}{path}?{query}" if query else f"{self._base_url}{path}"
        status, payload = await self._transport.get_json(url, headers=headers)
        self._log_exchange_payload(path, payload)
        return self._check_response(status, payload, path)

    def _result_list(self, result: Mapping[str, Any], operation: str) -> List[Mapping[str, Any]]:
        entries = result.get("list")
        if not isinstance(entries, list):
            raise self._parse_error(f"{operation} result without list", result)
        return [entry for entry in entries if isinstance(entry, Mapping)]

    async def _wallet(self) -> Mapping[str, Any]:
        return await self._signed("/v5/account/wallet-balance", {"accountType": "UNIFIED"})

    async def initialize(self) -> None:
        result = await self._wallet()
        self._result_list(result, "wallet-balance")
        logger.info("[%s/%s] Unified account client initialised", self.exchange, self.account)

    async def _positions(self, settle_coin: str) -> Mapping[str, Any]:
        return await self._signed(
            "/v5/position/list",
            {"category": "linear", "settleCoin": settle_coin, "limit": POSITION_PAGE_LIMIT},
        )

    async def _open_orders(self, settle_coin: str) -> Mapping[str, Any]:
        return await self._signed(
            "/v5/order/realtime", {"category": "linear", "settleCoin": settle_coin}
        )

    def _funding_rates(self, tickers: Mapping[str, Any]) -> Dict[str, FundingRates]:
        rates: Dict[str, FundingRates] = {}
        for ticker in self._result_list(tickers, "tickers"):
            symbol = ticker.get("symbol")
            if not symbol:
                continue
            current = coerce_float(ticker.get("fundingRate"))
            upcoming = ticker.get("nextFundingRate")
            rates[str(symbol)] = (current, coerce_float(upcoming, fallback=current))
        return rates

    async def _base_balance(self, wallet: Mapping[str, Any]) -> float:
        base_currency = self.config.base_currency
        usd_base = base_currency in USD_PEGGED
        balances: List[Tuple[str, float]] = []
        for coin in wallet.get("coin") or []:
            if not isinstance(coin, Mapping):
                continue
            usd_value = coerce_float(coin.get("usdValue"))
            if usd_base and usd_value > 0:
                balances.append((base_currency, usd_value))
            else:
                balances.append((str(coin.get("coin")), coerce_float(coin.get("equity"))))
        reported = coerce_float(wallet.get("totalWalletBalance")) if usd_base else 0.0
        prices: Dict[str, float] = {}
        if reported <= 0:
            prices = await self._convert_prices(
                (asset for asset, amount in balances if amount > 0), base_currency
            )
        return resolve_base_balance(reported, balances, prices, base_currency=base_currency)

    async def fetch_snapshot(self) -> ExchangeData:
        wallet_result, usdt_positions, usdc_positions, usdt_orders, usdc_orders, tickers = (
            await asyncio.gather(
                self._wallet(),
                self._positions(SETTLE_COINS[0]),
                self._positions(SETTLE_COINS[1]),
                self._open_orders(SETTLE_COINS[0]),
                self._open_orders(SETTLE_COINS[1]),
                self._public("/v5/market/tickers", {"category": "linear"}),
            )
        )
        wallets = self._result_list(wallet_result, "wallet-balance")
        if not wallets or "coin" not in wallets[0]:
            raise self._parse_error("wallet-balance returned no unified account", wallet_result)
        wallet = wallets[0]

        funding = self._funding_rates(tickers)
        positions: List[Position] = []
        pools = ((usdt_positions, "position/list USDT"), (usdc_positions, "position/list USDC"))
        for result, operation in pools:
            for raw in self._result_list(result, operation):
                position = normalize_bybit_position(raw, exchange=self.exchange, funding=funding)
                if position is not None:
                    positions.append(position)
        open_orders = len(self._result_list(usdt_orders, "order/realtime USDT")) + len(
            self._result_list(usdc_orders, "order/realtime USDC")
        )

        summary = build_account_summary(
            exchange=self.exchange,
            account_id=self.account,
            positions=positions,
            open_orders_count=open_orders,
            equity=coerce_float(wallet.get("totalEquity")),
            maintenance_margin=coerce_float(wallet.get("totalMaintenanceMargin")),
            base_balance=await self._base_balance(wallet),
            base_currency=self.config.base_currency,
        )
        return ExchangeData(positions=tuple(positions), account_summary=summary, fetched_at=self._clock())


__all__ = ["AUTH_RET_CODES", "BybitUnifiedClient"]
