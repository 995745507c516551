"""Multi-exchange derivatives risk monitor.

Polls authenticated exchange REST APIs, normalises positions into one risk
model, derives account level risk metrics and serves the latest snapshot.
"""

from .errors import AuthError, FetchError, InvalidSelectionError, NetworkError, ParseError
from .models import AccountSummary, CombinedSnapshot, ExchangeData, MarginMode, Position, Side

__all__ = [
    "AccountSummary",
    "AuthError",
    "CombinedSnapshot",
    "ExchangeData",
    "FetchError",
    "InvalidSelectionError",
    "MarginMode",
    "NetworkError",
    "ParseError",
    "Position",
    "Side",
]
