"""Yield accounting over rotating snapshot histories."""
from __future__ import annotations

import logging
from typing import List, Optional

from .constants import SnapshotDefaults
from .exceptions import InvalidSnapshotOrderError
from .locks import KeyedLocks
from .models import WalletSnapshot, YieldDelta, snapshot_key
from .snapshot_store import HistoryKey, SnapshotStore

logger = logging.getLogger(__name__)


def compute_yield_delta(from_snapshot: WalletSnapshot, to_snapshot: WalletSnapshot) -> YieldDelta:
    """Exact integer difference between two snapshots.

    Raises:
        InvalidSnapshotOrderError: ``to`` is not strictly later than ``from``
    """
    if to_snapshot.timestamp <= from_snapshot.timestamp:
        raise InvalidSnapshotOrderError(from_snapshot.timestamp, to_snapshot.timestamp)
    return YieldDelta(
        from_snapshot=from_snapshot,
        to_snapshot=to_snapshot,
        delta_underlying=to_snapshot.underlying_value - from_snapshot.underlying_value,
        delta_shares=to_snapshot.shares - from_snapshot.shares,
        delta_time_sec=to_snapshot.timestamp - from_snapshot.timestamp,
    )


class YieldAccountant:
    """Records snapshots per (agent, vault) and computes yield between them.

    Each key keeps at most ``limit`` snapshots, strictly increasing in
    timestamp. Appends to one key are serialized; different keys proceed
    concurrently.
    """

    def __init__(
        self,
        store: SnapshotStore,
        *,
        limit: int = SnapshotDefaults.HISTORY_LIMIT,
    ) -> None:
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self._store = store
        self.limit = limit
        self._locks: KeyedLocks[HistoryKey] = KeyedLocks()

    async def record(self, snapshot: WalletSnapshot) -> None:
        """Append ``snapshot`` to its history, evicting the oldest past the limit.

        Raises:
            InvalidSnapshotOrderError: the snapshot is not later than the
                stored tail. The history is left untouched.
        """
        key = snapshot.key
        async with self._locks.hold(key):
            history = await self._store.load(key)
            if history and snapshot.timestamp <= history[-1].timestamp:
                raise InvalidSnapshotOrderError(history[-1].timestamp, snapshot.timestamp)

            history.append(snapshot)
            evicted = len(history) - self.limit
            if evicted > 0:
                del history[:evicted]
            await self._store.save(key, history)

        logger.debug(
            f"Recorded snapshot for {snapshot.agent_address} at {snapshot.timestamp} "
            f"({len(history)}/{self.limit} kept)"
        )

    def delta(self, from_snapshot: WalletSnapshot, to_snapshot: WalletSnapshot) -> YieldDelta:
        return compute_yield_delta(from_snapshot, to_snapshot)

    async def history(self, agent_address: str, vault_address: str) -> List[WalletSnapshot]:
        return await self._store.load(snapshot_key(agent_address, vault_address))

    async def latest_delta(self, agent_address: str, vault_address: str) -> Optional[YieldDelta]:
        """Delta between the two most recent snapshots, or None with fewer than two."""
        history = await self.history(agent_address, vault_address)
        if len(history) < 2:
            return None
        return self.delta(history[-2], history[-1])

    async def total_delta(self, agent_address: str, vault_address: str) -> Optional[YieldDelta]:
        """Delta across the whole retained window (oldest to newest)."""
        history = await self.history(agent_address, vault_address)
        if len(history) < 2:
            return None
        return self.delta(history[0], history[-1])
