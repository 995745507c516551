"""Latest :class:`ExchangeData` per (exchange, account) plus the current selection."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Sequence, Tuple

from .errors import InvalidSelectionError
from .models import CombinedSnapshot, ExchangeData

logger = logging.getLogger(__name__)


def _freeze(exchanges: Dict[str, Dict[str, ExchangeData]]) -> Mapping[str, Mapping[str, ExchangeData]]:
    return MappingProxyType({name: MappingProxyType(accounts) for name, accounts in exchanges.items()})


class SnapshotCache:
    """Publish immutable :class:`CombinedSnapshot` instances.

    Every mutation builds a new snapshot under a lock and swaps the reference,
    so a reader holding a snapshot never sees a partially applied write. The
    published mappings are read-only proxies over copies owned by the cache.
    """

    def __init__(
        self,
        available_accounts: Mapping[str, Sequence[str]],
        *,
        current: Optional[Tuple[str, str]] = None,
    ) -> None:
        accounts = {exchange: tuple(names) for exchange, names in available_accounts.items()}
        if current is None:
            exchange = next(iter(accounts), "")
            account = accounts[exchange][0] if exchange and accounts[exchange] else ""
            current = (exchange, account)
        self._lock = threading.Lock()
        self._snapshot = CombinedSnapshot(
            exchanges=_freeze({}),
            current_exchange=current[0],
            current_account=current[1],
            available_exchanges=tuple(accounts),
            available_accounts=MappingProxyType(accounts),
        )

    def get_snapshot(self) -> CombinedSnapshot:
        return self._snapshot

    def get(self, exchange: str, account: str) -> Optional[ExchangeData]:
        return self._snapshot.get(exchange, account)

    def is_available(self, exchange: str, account: str) -> bool:
        snapshot = self._snapshot
        return account in snapshot.available_accounts.get(exchange, ())

    def write(self, exchange: str, account: str, data: ExchangeData) -> None:
        """Replace the entry for ``(exchange, account)`` leaving every other entry untouched."""

        with self._lock:
            current = self._snapshot
            exchanges: Dict[str, Dict[str, ExchangeData]] = {
                name: dict(accounts) for name, accounts in current.exchanges.items()
            }
            exchanges.setdefault(exchange, {})[account] = data
            self._snapshot = replace(current, exchanges=_freeze(exchanges))

    def set_current(self, exchange: str, account: str) -> None:
        with self._lock:
            current = self._snapshot
            if account not in current.available_accounts.get(exchange, ()):
                raise InvalidSelectionError(exchange, account)
            self._snapshot = replace(current, current_exchange=exchange, current_account=account)
        logger.info("Current selection set to %s/%s", exchange, account)


__all__ = ["SnapshotCache"]
