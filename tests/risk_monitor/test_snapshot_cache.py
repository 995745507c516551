from __future__ import annotations

import threading

import pytest

from risk_monitor.errors import InvalidSelectionError
from risk_monitor.models import AccountSummary, ExchangeData
from risk_monitor.snapshot_cache import SnapshotCache


def _data(exchange: str, account: str, fetched_at: float = 1.0) -> ExchangeData:
    summary = AccountSummary(
        exchange=exchange,
        account_id=account,
        base_currency="USDT",
        base_balance=100.0,
        total_notional_value=0.0,
        account_leverage=0.0,
        open_positions_count=0,
        open_orders_count=0,
        account_margin_ratio=0.0,
        liquidation_buffer=0.0,
    )
    return ExchangeData(positions=(), account_summary=summary, fetched_at=fetched_at)


def _cache() -> SnapshotCache:
    return SnapshotCache({"binance": ["main", "hedge"], "bybit": ["unified"]})


def test_defaults_to_first_configured_account() -> None:
    snapshot = _cache().get_snapshot()

    assert (snapshot.current_exchange, snapshot.current_account) == ("binance", "main")
    assert snapshot.available_exchanges == ("binance", "bybit")
    assert snapshot.current() is None


def test_write_replaces_only_the_target_entry() -> None:
    cache = _cache()
    cache.write("binance", "main", _data("binance", "main"))
    before = cache.get_snapshot()

    cache.write("bybit", "unified", _data("bybit", "unified"))
    after = cache.get_snapshot()

    assert before is not after
    assert before.get("bybit", "unified") is None
    assert after.get("binance", "main") is before.get("binance", "main")
    assert after.get("bybit", "unified").account_summary.exchange == "bybit"


def test_set_current_rejects_unknown_pairs_without_mutation() -> None:
    cache = _cache()
    before = cache.get_snapshot()

    with pytest.raises(InvalidSelectionError):
        cache.set_current("bybit", "main")
    with pytest.raises(InvalidSelectionError):
        cache.set_current("okx", "main")

    assert cache.get_snapshot() is before


def test_published_snapshot_cannot_be_mutated_by_readers() -> None:
    cache = _cache()
    cache.write("binance", "main", _data("binance", "main"))
    snapshot = cache.get_snapshot()

    with pytest.raises(TypeError):
        snapshot.exchanges["binance"]["main"] = _data("binance", "main", fetched_at=999.0)
    with pytest.raises(TypeError):
        snapshot.exchanges["okx"] = {}
    with pytest.raises(TypeError):
        snapshot.available_accounts["okx"] = ("x",)
    with pytest.raises(InvalidSelectionError):
        cache.set_current("okx", "x")

    cache.write("bybit", "unified", _data("bybit", "unified"))
    assert cache.get("binance", "main").fetched_at == 1.0
    assert cache.get_snapshot().current_exchange == "binance"


def test_set_current_changes_selection() -> None:
    cache = _cache()
    cache.write("binance", "hedge", _data("binance", "hedge"))

    cache.set_current("binance", "hedge")

    snapshot = cache.get_snapshot()
    assert snapshot.current_account == "hedge"
    assert snapshot.current() is snapshot.get("binance", "hedge")
    assert cache.is_available("bybit", "unified")
    assert not cache.is_available("bybit", "hedge")


def test_payload_uses_camel_case_keys() -> None:
    cache = _cache()
    cache.write("binance", "main", _data("binance", "main", fetched_at=12.5))

    payload = cache.get_snapshot().to_payload()

    assert payload["currentExchange"] == "binance"
    assert payload["availableAccounts"] == {"binance": ["main", "hedge"], "bybit": ["unified"]}
    entry = payload["exchanges"]["binance"]["main"]
    assert entry["fetchedAt"] == 12.5
    assert entry["accountSummary"]["accountId"] == "main"
    assert entry["positions"] == []


def test_concurrent_writers_never_lose_entries() -> None:
    accounts = {f"ex{index}": [f"acc{index}"] for index in range(8)}
    cache = SnapshotCache(accounts)

    def writer(index: int) -> None:
        for round_number in range(50):
            cache.write(f"ex{index}", f"acc{index}", _data(f"ex{index}", f"acc{index}", float(round_number)))

    threads = [threading.Thread(target=writer, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    snapshot = cache.get_snapshot()
    for index in range(8):
        assert snapshot.get(f"ex{index}", f"acc{index}").fetched_at == 49.0
