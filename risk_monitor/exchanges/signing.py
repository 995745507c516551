"""HMAC-SHA256 request signing for the supported exchanges.

Each exchange canonicalises the signed payload differently and rejects any
deviation, so the helpers below build the exact string the exchange expects.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

DEFAULT_RECV_WINDOW_MS = 60_000


def sign(secret: str, payload: str) -> str:
    """Return the hex HMAC-SHA256 digest of ``payload`` keyed by ``secret``."""

    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def binance_signed_query(
    secret: str,
    params: Optional[Mapping[str, Any]],
    timestamp_ms: int,
    *,
    recv_window_ms: int = DEFAULT_RECV_WINDOW_MS,
) -> str:
    """Return ``params`` + ``timestamp`` + ``recvWindow`` URL encoded with the signature appended."""

    ordered: Dict[str, Any] = dict(params or {})
    ordered["timestamp"] = int(timestamp_ms)
    ordered["recvWindow"] = int(recv_window_ms)
    query = urlencode(ordered)
    return f"{query}&signature={sign(secret, query)}"


def binance_headers(api_key: str) -> Dict[str, str]:
    return {"X-MBX-APIKEY": api_key}


def bybit_signed_headers(
    api_key: str,
    secret: str,
    query: str,
    timestamp_ms: int,
    *,
    recv_window_ms: int = DEFAULT_RECV_WINDOW_MS,
) -> Dict[str, str]:
    """Return the Bybit v5 authentication headers for a GET with ``query``."""

    timestamp = str(int(timestamp_ms))
    recv_window = str(int(recv_window_ms))
    signature = sign(secret, f"{timestamp}{api_key}{recv_window}{query}")
    return {
        "X-BAPI-API-KEY": api_key,
        "X-BAPI-SIGN": signature,
        "X-BAPI-TIMESTAMP": timestamp,
        "X-BAPI-RECV-WINDOW": recv_window,
    }


def bybit_query(params: Optional[Mapping[str, Any]]) -> str:
    return urlencode(dict(params or {}))


def split_credentials(credentials: Mapping[str, Any]) -> Tuple[str, str]:
    """Return ``(api_key, api_secret)`` from a normalised credentials mapping."""

    api_key = str(credentials.get("api_key") or "")
    api_secret = str(credentials.get("api_secret") or "")
    return api_key, api_secret


__all__ = [
    "DEFAULT_RECV_WINDOW_MS",
    "binance_headers",
    "binance_signed_query",
    "bybit_query",
    "bybit_signed_headers",
    "sign",
    "split_credentials",
]
