"""The risk monitor aggregate: clients, scheduler, cache and health in one owner."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from .config.models import MonitorConfig
from .errors import AuthError, FetchError
from .exchanges import CcxtPriceOracle, ExchangeClient, PriceOracle, create_client
from .health import HealthMonitor, HealthReport
from .models import AccountKey, CombinedSnapshot
from .presentation import log_account_metrics
from .risk_engine.metrics import MetricRegistry
from .scheduler import FetchScheduler
from .snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., ExchangeClient]


class RiskMonitorService:
    """Own every moving part of the monitor and expose the read/selection API.

    Clients are initialised independently: a client whose initialisation
    fails is reported as degraded and never scheduled, while the remaining
    clients keep running.
    """

    def __init__(
        self,
        config: MonitorConfig,
        *,
        clients: Optional[Sequence[ExchangeClient]] = None,
        client_factory: ClientFactory = create_client,
        price_oracle: Optional[PriceOracle] = None,
        metrics: Optional[MetricRegistry] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self._clock = clock
        self._client_factory = client_factory
        self._price_oracle = price_oracle
        self._pending_clients: Optional[List[ExchangeClient]] = list(clients) if clients is not None else None
        self._degraded: Dict[AccountKey, str] = {}
        self._initialized = False
        self._metrics_task: Optional[asyncio.Task] = None

        self.metrics = metrics or MetricRegistry()
        self.cache = SnapshotCache(config.available_accounts(), current=config.default_selection())
        self.scheduler = FetchScheduler(
            self.cache, config.scheduler, metrics=self.metrics, clock=clock
        )
        self.health = HealthMonitor(
            self.scheduler.states,
            degraded=self.degraded,
            stale_after_seconds=config.scheduler.health_stale_after_seconds,
            clock=clock,
        )

    def degraded(self) -> Dict[AccountKey, str]:
        return dict(self._degraded)

    def _build_clients(self) -> List[ExchangeClient]:
        if self._price_oracle is None:
            self._price_oracle = CcxtPriceOracle(self.config.price_exchange)
        clients: List[ExchangeClient] = []
        for account in self.config.accounts:
            kwargs: Dict[str, Any] = {
                "price_oracle": self._price_oracle,
                "clock": self._clock,
                "request_timeout_seconds": self.config.http.request_timeout_seconds,
                "recv_window_ms": self.config.http.recv_window_ms,
            }
            clients.append(self._client_factory(account, **kwargs))
        return clients

    async def initialize(self) -> None:
        """Initialise every client concurrently and register the ones that succeed."""

        if self._initialized:
            return
        clients = self._pending_clients if self._pending_clients is not None else self._build_clients()
        self._pending_clients = None
        results = await asyncio.gather(
            *(client.initialize() for client in clients), return_exceptions=True
        )
        for client, result in zip(clients, results):
            exchange, account = client.key
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                if isinstance(result, AuthError):
                    logger.error("[%s/%s] Credentials rejected: %s", exchange, account, result)
                elif isinstance(result, FetchError):
                    logger.error("[%s/%s] Initialisation failed: %s", exchange, account, result)
                else:
                    logger.error(
                        "[%s/%s] Unexpected initialisation failure",
                        exchange,
                        account,
                        exc_info=(type(result), result, result.__traceback__),
                    )
                self._degraded[client.key] = str(result)
                await client.close()
                continue
            self.scheduler.register(client)
        self._initialized = True
        logger.info(
            "Risk monitor initialised: %d active, %d degraded",
            len(self.scheduler.clients),
            len(self._degraded),
        )

    async def start(self) -> None:
        await self.initialize()
        self.scheduler.start()
        interval = self.config.scheduler.metrics_log_interval_seconds
        if interval > 0 and self._metrics_task is None:
            self._metrics_task = asyncio.create_task(
                self._metrics_loop(interval), name="risk-monitor-metrics-log"
            )

    async def stop(self) -> None:
        if self._metrics_task is not None:
            self._metrics_task.cancel()
            try:
                await self._metrics_task
            except asyncio.CancelledError:
                pass
            self._metrics_task = None
        await self.scheduler.stop()
        for client in self.scheduler.clients:
            await client.close()
        if self._price_oracle is not None:
            await self._price_oracle.close()

    async def _metrics_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            log_account_metrics(self.cache.get_snapshot(), self.metrics)

    def get_snapshot(self) -> CombinedSnapshot:
        return self.cache.get_snapshot()

    def set_current(self, exchange: str, account: str) -> None:
        self.cache.set_current(exchange, account)

    def get_health(self) -> HealthReport:
        return self.health.report()


__all__ = ["RiskMonitorService"]
