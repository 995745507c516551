from __future__ import annotations

import hashlib
import hmac

from risk_monitor.exchanges.signing import (
    binance_headers,
    binance_signed_query,
    bybit_query,
    bybit_signed_headers,
    sign,
    split_credentials,
)


def _hmac(secret: str, payload: str) -> str:
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def test_sign_matches_published_binance_example() -> None:
    secret = "NhqPtmdSJYdKjVHjA7PZj4Mge3R5YNiP1e3UZjInClVN65XAbvqqM6A7H5fATj0j"
    query = (
        "symbol=LTCBTC&side=BUY&type=LIMIT&timeInForce=GTC&quantity=1&price=0.1"
        "&recvWindow=5000&timestamp=1499827319559"
    )

    assert sign(secret, query) == "c8db56825ae71d6d79447849e617115f4a920fa2acdcab2b053c4b2838bd6b71"


def test_binance_query_appends_timestamp_recv_window_and_signature_in_order() -> None:
    signed = binance_signed_query("secret", {"symbol": "BTCUSDT"}, 1_700_000_000_123)

    query, signature = signed.split("&signature=")
    assert query == "symbol=BTCUSDT&timestamp=1700000000123&recvWindow=60000"
    assert signature == _hmac("secret", query)


def test_binance_query_without_params_is_deterministic() -> None:
    first = binance_signed_query("secret", None, 42, recv_window_ms=5000)
    second = binance_signed_query("secret", {}, 42, recv_window_ms=5000)

    assert first == second
    assert first.startswith("timestamp=42&recvWindow=5000&signature=")


def test_binance_headers_carry_api_key() -> None:
    assert binance_headers("key-123") == {"X-MBX-APIKEY": "key-123"}


def test_bybit_headers_sign_timestamp_key_window_and_query() -> None:
    query = bybit_query({"category": "linear", "settleCoin": "USDT"})
    headers = bybit_signed_headers("bybit-key", "bybit-secret", query, 1_700_000_000_000)

    assert query == "category=linear&settleCoin=USDT"
    assert headers["X-BAPI-API-KEY"] == "bybit-key"
    assert headers["X-BAPI-TIMESTAMP"] == "1700000000000"
    assert headers["X-BAPI-RECV-WINDOW"] == "60000"
    assert headers["X-BAPI-SIGN"] == _hmac(
        "bybit-secret", "1700000000000bybit-key60000category=linear&settleCoin=USDT"
    )


def test_split_credentials_defaults_to_empty_strings() -> None:
    assert split_credentials({"api_key": "k", "api_secret": "s"}) == ("k", "s")
    assert split_credentials({}) == ("", "")
