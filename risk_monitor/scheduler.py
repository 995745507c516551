"""Periodic fetch driver with per-account error counters and exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional

from .config.models import SchedulerSettings
from .errors import FetchError, NetworkError
from .exchanges.base import ExchangeClient
from .models import AccountKey, FetchState
from .risk_engine.metrics import MetricRegistry, Timer
from .snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)


class FetchScheduler:
    """Drive ``fetch_snapshot`` on every registered client.

    Per key the scheduler moves between READY, FETCHING and BACKOFF. Failures
    leave the cached data untouched; once ``max_consecutive_errors`` is
    reached every further failure doubles the pause, up to
    ``backoff_base_seconds * 2 ** max_backoff_exponent``.
    """

    def __init__(
        self,
        cache: SnapshotCache,
        settings: Optional[SchedulerSettings] = None,
        *,
        metrics: Optional[MetricRegistry] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self.settings = settings or SchedulerSettings()
        self.metrics = metrics or MetricRegistry()
        self._clock = clock
        self._clients: Dict[AccountKey, ExchangeClient] = {}
        self._states: Dict[AccountKey, FetchState] = {}
        self._locks: Dict[AccountKey, asyncio.Lock] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    def register(self, client: ExchangeClient) -> None:
        key = client.key
        if key in self._clients:
            raise ValueError(f"Client for {key[0]}/{key[1]} is already registered")
        self._clients[key] = client
        self._states[key] = FetchState()
        self._locks[key] = asyncio.Lock()

    @property
    def clients(self) -> List[ExchangeClient]:
        return list(self._clients.values())

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def state(self, key: AccountKey) -> FetchState:
        """Return a copy of the fetch state for ``key``."""

        return replace(self._states[key])

    def states(self) -> Dict[AccountKey, FetchState]:
        return {key: replace(state) for key, state in self._states.items()}

    def backoff_delay(self, consecutive_errors: int) -> float:
        """Seconds to pause after ``consecutive_errors`` failures; 0 below the threshold."""

        threshold = self.settings.max_consecutive_errors
        if consecutive_errors < threshold:
            return 0.0
        exponent = min(consecutive_errors - threshold, self.settings.max_backoff_exponent)
        return self.settings.backoff_base_seconds * (2 ** exponent)

    async def fetch_one(self, client: ExchangeClient) -> bool:
        """Run one fetch for ``client``; returns whether the cache was updated.

        Callers other than the periodic driver may invoke this directly, for
        example to refresh one account on demand. A call that finds a fetch
        for the same key already in flight returns ``False`` without waiting.
        """

        key = client.key
        exchange, account = key
        state = self._states[key]
        now = self._clock()
        if state.in_backoff(now):
            logger.info(
                "[%s/%s] In backoff, skipping fetch for another %.0fs",
                exchange,
                account,
                state.backoff_until - now,
                extra={"exchange": exchange, "account": account, "op": "fetch_snapshot"},
            )
            return False
        lock = self._locks[key]
        if lock.locked():
            logger.debug("[%s/%s] Previous fetch still running, skipping", exchange, account)
            return False

        async with lock:
            labels = {"exchange": exchange, "account": account}
            try:
                with Timer(self.metrics, "exchange_fetch_latency_seconds", labels=labels):
                    data = await asyncio.wait_for(
                        client.fetch_snapshot(), timeout=self.settings.fetch_timeout_seconds
                    )
            except asyncio.TimeoutError:
                self._record_failure(
                    key,
                    NetworkError(
                        f"Fetch timed out after {self.settings.fetch_timeout_seconds}s",
                        exchange=exchange,
                        account=account,
                    ),
                )
                return False
            except FetchError as exc:
                self._record_failure(key, exc)
                return False
            except Exception as exc:
                logger.error(
                    "[%s/%s] Unexpected error while fetching snapshot",
                    exchange,
                    account,
                    extra={"exchange": exchange, "account": account, "op": "fetch_snapshot"},
                    exc_info=True,
                )
                self._record_failure(key, exc)
                return False

            self._cache.write(exchange, account, data)
            state.last_fetch = self._clock()
            state.consecutive_errors = 0
            state.backoff_until = 0.0
            state.last_error = ""
            logger.debug(
                "[%s/%s] Snapshot updated with %d positions",
                exchange,
                account,
                len(data.positions),
            )
            return True

    def _record_failure(self, key: AccountKey, exc: BaseException) -> None:
        exchange, account = key
        state = self._states[key]
        state.consecutive_errors += 1
        state.last_error = str(exc)
        self.metrics.inc(
            "exchange_fetch_errors_total",
            labels={"exchange": exchange, "account": account, "type": type(exc).__name__},
        )
        delay = self.backoff_delay(state.consecutive_errors)
        if delay > 0:
            state.backoff_until = self._clock() + delay
            logger.warning(
                "[%s/%s] %d consecutive failures, backing off for %.0fs: %s",
                exchange,
                account,
                state.consecutive_errors,
                delay,
                exc,
                extra={"exchange": exchange, "account": account, "op": "fetch_snapshot"},
            )
            return
        logger.warning(
            "[%s/%s] Fetch failed (%d/%d): %s",
            exchange,
            account,
            state.consecutive_errors,
            self.settings.max_consecutive_errors,
            exc,
            extra={"exchange": exchange, "account": account, "op": "fetch_snapshot"},
        )

    async def run_cycle(self) -> None:
        """Fetch every registered key concurrently."""

        await asyncio.gather(*(self.fetch_one(client) for client in self._clients.values()))

    async def _run(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            await self.run_cycle()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.settings.interval_seconds)
            except asyncio.TimeoutError:
                continue

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="risk-monitor-fetch-scheduler")
        logger.info(
            "Fetch scheduler started for %d accounts (interval %.0fs)",
            len(self._clients),
            self.settings.interval_seconds,
        )

    async def stop(self) -> None:
        """Stop scheduling, wait for the in-flight cycle, then cancel it after the timeout."""

        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        task = self._task
        self._task = None
        try:
            await asyncio.wait_for(task, timeout=self.settings.shutdown_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Fetch cycle did not finish within %.0fs, cancelled",
                self.settings.shutdown_timeout_seconds,
            )
        logger.info("Fetch scheduler stopped")


__all__ = ["FetchScheduler"]
