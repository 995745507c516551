"""Read-only liveness view over the scheduler's fetch state."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from .models import AccountKey, FetchState

DEFAULT_STALE_AFTER_SECONDS = 300.0


def _isoformat(timestamp: float) -> Optional[str]:
    if timestamp <= 0:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class AccountHealth:
    exchange: str
    account: str
    healthy: bool
    initialized: bool
    last_fetch: Optional[str]
    seconds_since_last_fetch: Optional[float]
    in_backoff: bool
    backoff_ends: Optional[str]
    error_count: int
    last_error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "exchange": self.exchange,
            "account": self.account,
            "healthy": self.healthy,
            "initialized": self.initialized,
            "lastFetch": self.last_fetch,
            "timeSinceLastFetch": self.seconds_since_last_fetch,
            "inBackoff": self.in_backoff,
            "backoffEnds": self.backoff_ends,
            "errorCount": self.error_count,
            "lastError": self.last_error,
        }


@dataclass(frozen=True)
class HealthReport:
    timestamp: str
    accounts: List[AccountHealth] = field(default_factory=list)

    @property
    def status(self) -> str:
        if self.accounts and all(entry.healthy for entry in self.accounts):
            return "ok"
        return "degraded"

    def to_payload(self) -> Dict[str, Any]:
        exchanges: Dict[str, Dict[str, Any]] = {}
        for entry in self.accounts:
            exchanges.setdefault(entry.exchange, {})[entry.account] = entry.to_payload()
        return {"status": self.status, "timestamp": self.timestamp, "exchanges": exchanges}


def account_health(
    key: AccountKey,
    state: FetchState,
    now: float,
    *,
    stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS,
) -> AccountHealth:
    exchange, account = key
    since_last: Optional[float] = None
    if state.last_fetch > 0:
        since_last = round(now - state.last_fetch, 3)
    healthy = state.last_fetch > 0 and (now - state.last_fetch) < stale_after_seconds
    in_backoff = state.in_backoff(now)
    return AccountHealth(
        exchange=exchange,
        account=account,
        healthy=healthy,
        initialized=True,
        last_fetch=_isoformat(state.last_fetch),
        seconds_since_last_fetch=since_last,
        in_backoff=in_backoff,
        backoff_ends=_isoformat(state.backoff_until) if in_backoff else None,
        error_count=state.consecutive_errors,
        last_error=state.last_error or None,
    )


class HealthMonitor:
    """Derive liveness from fetch timestamps and backoff state without mutating either."""

    def __init__(
        self,
        states: Callable[[], Mapping[AccountKey, FetchState]],
        *,
        degraded: Callable[[], Mapping[AccountKey, str]] = dict,
        stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._states = states
        self._degraded = degraded
        self._stale_after_seconds = stale_after_seconds
        self._clock = clock

    def report(self) -> HealthReport:
        now = self._clock()
        entries = [
            account_health(key, state, now, stale_after_seconds=self._stale_after_seconds)
            for key, state in self._states().items()
        ]
        for (exchange, account), error in self._degraded().items():
            entries.append(
                AccountHealth(
                    exchange=exchange,
                    account=account,
                    healthy=False,
                    initialized=False,
                    last_fetch=None,
                    seconds_since_last_fetch=None,
                    in_backoff=False,
                    backoff_ends=None,
                    error_count=0,
                    last_error=error,
                )
            )
        return HealthReport(timestamp=_isoformat(now) or "", accounts=entries)


__all__ = ["AccountHealth", "HealthMonitor", "HealthReport", "account_health"]
