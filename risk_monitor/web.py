"""FastAPI adapter exposing the risk monitor as a Grafana JSON datasource.

The handlers only read the snapshot cache and the health monitor, and update
the current selection. All fetching happens in the service's scheduler.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol

from fastapi import Body, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from .errors import InvalidSelectionError
from .health import HealthReport
from .models import POSITION_COLUMNS, CombinedSnapshot, ExchangeData

SEARCH_METRICS = ["positions", "account_summary", "available_exchanges", "health_status"]
SUMMARY_COLUMNS = (
    "exchange",
    "accountId",
    "baseCurrency",
    "baseBalance",
    "totalNotionalValue",
    "accountLeverage",
    "openPositionsCount",
    "openOrdersCount",
    "accountMarginRatio",
    "liquidationBuffer",
)


class MonitorServiceProtocol(Protocol):
    def get_snapshot(self) -> CombinedSnapshot: ...

    def set_current(self, exchange: str, account: str) -> None: ...

    def get_health(self) -> HealthReport: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _resolve_selection(
    snapshot: CombinedSnapshot, exchange: Optional[str], account: Optional[str]
) -> tuple[str, str]:
    exchange = exchange or snapshot.current_exchange
    account = account or snapshot.current_account
    if exchange not in snapshot.available_accounts:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown exchange '{exchange}'")
    if account not in snapshot.available_accounts[exchange]:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown account '{account}' for exchange '{exchange}'",
        )
    return exchange, account


def _current_data(snapshot: CombinedSnapshot) -> ExchangeData:
    if not snapshot.current_exchange or not snapshot.current_account:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No exchange or account selected")
    data = snapshot.current()
    if data is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No data available for selected exchange and account",
        )
    return data


def positions_table(data: Optional[ExchangeData]) -> Dict[str, Any]:
    rows: List[List[Any]] = []
    if data is not None:
        for position in data.positions:
            payload = position.to_payload()
            rows.append([payload[column] for column in POSITION_COLUMNS])
    return {
        "columns": [{"text": column} for column in POSITION_COLUMNS],
        "rows": rows,
        "type": "table",
    }


def account_summary_table(data: Optional[ExchangeData]) -> Dict[str, Any]:
    rows: List[List[Any]] = []
    if data is not None:
        payload = data.account_summary.to_payload()
        rows.append([payload[column] for column in SUMMARY_COLUMNS])
    return {
        "columns": [{"text": column} for column in SUMMARY_COLUMNS],
        "rows": rows,
        "type": "table",
    }


def _require_text(payload: Mapping[str, Any], *names: str) -> List[str]:
    values = []
    for name in names:
        value = payload.get(name)
        if not isinstance(value, str) or not value.strip():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"{' and '.join(names).capitalize()} are required",
            )
        values.append(value.strip())
    return values


def create_app(service: MonitorServiceProtocol, *, manage_lifecycle: bool = True) -> FastAPI:
    app = FastAPI(title="Exchange Risk Monitor")
    app.state.service = service

    def get_service(request: Request) -> MonitorServiceProtocol:
        return request.app.state.service

    @app.get("/", response_class=JSONResponse)
    def index() -> Dict[str, Any]:
        return {
            "status": "ok",
            "endpoints": {
                "search": "/search",
                "query": "/query",
                "annotations": "/annotations",
                "health": "/health",
            },
        }

    @app.get("/health", response_class=JSONResponse)
    def liveness() -> Dict[str, Any]:
        return {"status": "ok", "timestamp": _now_iso()}

    @app.get("/search", response_class=JSONResponse)
    def search() -> List[str]:
        return list(SEARCH_METRICS)

    @app.post("/query", response_class=JSONResponse)
    def query(request: Request, payload: Dict[str, Any] = Body(...)) -> List[Dict[str, Any]]:
        targets = payload.get("targets")
        if not isinstance(targets, list):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid request format")
        snapshot = get_service(request).get_snapshot()
        results: List[Dict[str, Any]] = []
        for target in targets:
            if not isinstance(target, Mapping):
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid target")
            name = target.get("target")
            if name not in ("positions", "account_summary"):
                continue
            exchange, account = _resolve_selection(snapshot, target.get("exchange"), target.get("account"))
            data = snapshot.get(exchange, account)
            if name == "positions":
                results.append(positions_table(data))
            else:
                results.append(account_summary_table(data))
        return results

    @app.post("/annotations", response_class=JSONResponse)
    def annotations() -> List[Any]:
        return []

    @app.post("/variable", response_class=JSONResponse)
    def variable(request: Request, payload: Optional[Dict[str, Any]] = Body(default=None)) -> List[str]:
        payload = payload or {}
        inner = payload.get("payload") if isinstance(payload.get("payload"), Mapping) else {}
        target = str(inner.get("target") or payload.get("target") or "")
        snapshot = get_service(request).get_snapshot()
        if target == "/api/available":
            return list(snapshot.available_exchanges)
        prefix = "/api/accounts/"
        if target.startswith(prefix):
            exchange = target[len(prefix):]
            if exchange not in snapshot.available_accounts:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown exchange '{exchange}'")
            return list(snapshot.available_accounts[exchange])
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported variable target")

    @app.get("/api/data", response_class=JSONResponse)
    def data(request: Request) -> Dict[str, Any]:
        return get_service(request).get_snapshot().to_payload()

    @app.get("/api/positions", response_class=JSONResponse)
    def positions(request: Request) -> List[Dict[str, Any]]:
        current = _current_data(get_service(request).get_snapshot())
        return [position.to_payload() for position in current.positions]

    @app.get("/api/account-summary", response_class=JSONResponse)
    def account_summary(request: Request) -> Dict[str, Any]:
        return _current_data(get_service(request).get_snapshot()).account_summary.to_payload()

    @app.get("/api/available", response_class=JSONResponse)
    def available(request: Request) -> Dict[str, Any]:
        snapshot = get_service(request).get_snapshot()
        return {
            "exchanges": list(snapshot.available_exchanges),
            "accounts": {name: list(accounts) for name, accounts in snapshot.available_accounts.items()},
            "currentExchange": snapshot.current_exchange,
            "currentAccount": snapshot.current_account,
        }

    @app.post("/api/set-current", response_class=JSONResponse)
    def set_current(
        request: Request, payload: Optional[Dict[str, Any]] = Body(default=None)
    ) -> Dict[str, Any]:
        exchange, account = _require_text(payload or {}, "exchange", "account")
        try:
            get_service(request).set_current(exchange, account)
        except InvalidSelectionError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return {"success": True, "exchange": exchange, "account": account}

    @app.get("/api/health", response_class=JSONResponse)
    def health(request: Request) -> Dict[str, Any]:
        return get_service(request).get_health().to_payload()

    @app.get("/api/accounts/{exchange}", response_class=JSONResponse)
    def accounts(request: Request, exchange: str) -> List[str]:
        snapshot = get_service(request).get_snapshot()
        if exchange not in snapshot.available_accounts:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown exchange '{exchange}'")
        return list(snapshot.available_accounts[exchange])

    if manage_lifecycle:

        @app.on_event("startup")
        async def startup() -> None:  # pragma: no cover - FastAPI lifecycle
            await service.start()

        @app.on_event("shutdown")
        async def shutdown() -> None:  # pragma: no cover - FastAPI lifecycle
            await service.stop()

    return app


__all__ = ["MonitorServiceProtocol", "account_summary_table", "create_app", "positions_table"]
