"""Exception hierarchy shared by exchange clients, the scheduler and the cache."""

from __future__ import annotations

from typing import Optional


class FetchError(RuntimeError):
    """Base class for failures raised while talking to an exchange."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        exchange: Optional[str] = None,
        account: Optional[str] = None,
        code: Optional[int] = None,
    ) -> None:
        prefix = ""
        if exchange and account:
            prefix = f"[{exchange}/{account}] "
        elif exchange:
            prefix = f"[{exchange}] "
        super().__init__(f"{prefix}{message}")
        self.exchange = exchange
        self.account = account
        self.code = code


class AuthError(FetchError):
    """Credentials were rejected or the request signature was invalid."""


class NetworkError(FetchError):
    """Transport failure, timeout or rate limit. Always retryable."""

    retryable = True


class ParseError(FetchError):
    """The exchange answered with a payload missing expected fields."""


class InvalidSelectionError(ValueError):
    """Raised when selecting an exchange/account pair that is not configured."""

    def __init__(self, exchange: str, account: str) -> None:
        super().__init__(f"Unknown exchange/account selection: {exchange}/{account}")
        self.exchange = exchange
        self.account = account


__all__ = [
    "AuthError",
    "FetchError",
    "InvalidSelectionError",
    "NetworkError",
    "ParseError",
]
