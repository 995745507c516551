from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from risk_monitor.health import HealthMonitor
from risk_monitor.models import (
    POSITION_COLUMNS,
    AccountSummary,
    ExchangeData,
    FetchState,
    MarginMode,
    Position,
    Side,
)
from risk_monitor.snapshot_cache import SnapshotCache
from risk_monitor.web import create_app

NOW = 1_700_000_000.0


class StubService:
    def __init__(self) -> None:
        self.cache = SnapshotCache({"binance": ["main", "hedge"], "bybit": ["unified"]})
        self.health = HealthMonitor(
            lambda: {("binance", "main"): FetchState(last_fetch=NOW - 10)},
            degraded=lambda: {("bybit", "unified"): "credentials rejected"},
            clock=lambda: NOW,
        )
        self.started = False

    def get_snapshot(self):
        return self.cache.get_snapshot()

    def set_current(self, exchange: str, account: str) -> None:
        self.cache.set_current(exchange, account)

    def get_health(self):
        return self.health.report()

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False


def _position() -> Position:
    return Position(
        symbol="BTCUSDT",
        side=Side.SHORT,
        size=0.5,
        notional_value=30000.0,
        entry_price=61000.0,
        mark_price=60000.0,
        liquidation_price=66780.0,
        liquidation_distance_pct=11.3,
        current_funding_rate_pct=0.01,
        next_funding_rate_pct=0.02,
        leverage=10.0,
        unrealized_pnl=500.0,
        realized_pnl=0.0,
        margin_mode=MarginMode.CROSS,
        exchange="binance",
    )


def _summary(account: str) -> AccountSummary:
    return AccountSummary(
        exchange="binance",
        account_id=account,
        base_currency="USDT",
        base_balance=1700.0,
        total_notional_value=30000.0,
        account_leverage=10.0,
        open_positions_count=1,
        open_orders_count=2,
        account_margin_ratio=5.0,
        liquidation_buffer=100.0,
    )


@pytest.fixture
def service() -> StubService:
    stub = StubService()
    stub.cache.write(
        "binance", "main", ExchangeData(positions=(_position(),), account_summary=_summary("main"), fetched_at=NOW)
    )
    return stub


@pytest.fixture
def client(service: StubService) -> TestClient:
    return TestClient(create_app(service, manage_lifecycle=False))


def test_index_liveness_and_search(client: TestClient) -> None:
    assert client.get("/").json()["status"] == "ok"
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/search").json() == [
        "positions",
        "account_summary",
        "available_exchanges",
        "health_status",
    ]
    assert client.post("/annotations", json={}).json() == []


def test_query_returns_position_and_summary_tables(client: TestClient) -> None:
    response = client.post(
        "/query",
        json={"targets": [{"target": "positions"}, {"target": "account_summary"}, {"target": "unknown"}]},
    )

    assert response.status_code == 200
    positions, summary = response.json()
    assert positions["type"] == "table"
    assert [column["text"] for column in positions["columns"]] == list(POSITION_COLUMNS)
    row = positions["rows"][0]
    assert row[0] == "BTCUSDT"
    assert row[1] == "SHORT"
    assert row[POSITION_COLUMNS.index("liquidationPriceChangePercent")] == 11.3
    assert row[-1] == "CROSS"
    assert summary["rows"][0][1] == "main"


def test_query_for_pair_without_data_returns_empty_table(client: TestClient) -> None:
    response = client.post("/query", json={"targets": [{"target": "positions", "exchange": "bybit", "account": "unified"}]})

    assert response.status_code == 200
    assert response.json()[0]["rows"] == []


def test_query_validation(client: TestClient) -> None:
    assert client.post("/query", json={"targets": "positions"}).status_code == 400
    unknown = client.post("/query", json={"targets": [{"target": "positions", "exchange": "okx"}]})
    assert unknown.status_code == 404


def test_data_and_current_selection_endpoints(client: TestClient) -> None:
    data = client.get("/api/data").json()
    assert data["currentExchange"] == "binance"
    assert data["exchanges"]["binance"]["main"]["accountSummary"]["baseBalance"] == 1700.0

    positions = client.get("/api/positions").json()
    assert positions[0]["liquidationPriceChangePercent"] == 11.3
    assert client.get("/api/account-summary").json()["accountId"] == "main"


def test_set_current_switches_and_validates(client: TestClient, service: StubService) -> None:
    response = client.post("/api/set-current", json={"exchange": "binance", "account": "hedge"})
    assert response.status_code == 200
    assert response.json() == {"success": True, "exchange": "binance", "account": "hedge"}
    assert service.get_snapshot().current_account == "hedge"

    # no data yet for the new selection
    assert client.get("/api/positions").status_code == 404

    assert client.post("/api/set-current", json={"exchange": "binance"}).status_code == 400
    assert client.post("/api/set-current").status_code == 400
    missing = client.post("/api/set-current", json={"exchange": "bybit", "account": "hedge"})
    assert missing.status_code == 404
    assert service.get_snapshot().current_account == "hedge"


def test_available_accounts_and_variables(client: TestClient) -> None:
    available = client.get("/api/available").json()
    assert available["exchanges"] == ["binance", "bybit"]
    assert available["accounts"]["binance"] == ["main", "hedge"]

    assert client.get("/api/accounts/bybit").json() == ["unified"]
    assert client.get("/api/accounts/okx").status_code == 404

    assert client.post("/variable", json={"payload": {"target": "/api/available"}}).json() == ["binance", "bybit"]
    assert client.post("/variable", json={"target": "/api/accounts/binance"}).json() == ["main", "hedge"]
    assert client.post("/variable", json={"target": "/elsewhere"}).status_code == 400


def test_health_endpoint_reports_degraded_accounts(client: TestClient) -> None:
    payload = client.get("/api/health").json()

    assert payload["status"] == "degraded"
    assert payload["exchanges"]["binance"]["main"]["healthy"] is True
    assert payload["exchanges"]["bybit"]["unified"]["lastError"] == "credentials rejected"


def test_lifecycle_hooks_start_and_stop_the_service() -> None:
    stub = StubService()

    with TestClient(create_app(stub)):
        assert stub.started

    assert not stub.started
