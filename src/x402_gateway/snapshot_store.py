"""Persistence for per-(agent, vault) snapshot histories.

The YieldAccountant owns ordering and the retention cap; stores only load
and save whole histories for one key.
"""
from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Protocol

from .constants import SnapshotDefaults
from .exceptions import SerializationError
from .models import WalletSnapshot
from .serialization import dumps_histories, loads_histories

logger = logging.getLogger(__name__)

HistoryKey = tuple[str, str]


class SnapshotStore(Protocol):
    async def load(self, key: HistoryKey) -> List[WalletSnapshot]: ...

    async def save(self, key: HistoryKey, snapshots: List[WalletSnapshot]) -> None: ...

    async def keys(self) -> List[HistoryKey]: ...


class InMemorySnapshotStore:
    """Process-local histories, for tests and dev runs."""

    def __init__(self) -> None:
        self._histories: Dict[HistoryKey, List[WalletSnapshot]] = {}

    async def load(self, key: HistoryKey) -> List[WalletSnapshot]:
        return list(self._histories.get(key, []))

    async def save(self, key: HistoryKey, snapshots: List[WalletSnapshot]) -> None:
        self._histories[key] = list(snapshots)

    async def keys(self) -> List[HistoryKey]:
        return sorted(self._histories)


class JsonFileSnapshotStore(InMemorySnapshotStore):
    """All histories in one JSON document, rewritten atomically on each save.

    The file is read lazily on first access. A file that fails to parse is
    logged and treated as empty; it is overwritten by the next save.
    """

    def __init__(self, path: str | Path, *, limit: int = SnapshotDefaults.HISTORY_LIMIT) -> None:
        super().__init__()
        self.path = Path(path)
        self.limit = limit
        self._loaded = False
        self._file_lock = asyncio.Lock()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._file_lock:
            if self._loaded:
                return
            self._histories = await asyncio.to_thread(self._read)
            self._loaded = True

    def _read(self) -> Dict[HistoryKey, List[WalletSnapshot]]:
        if not self.path.exists():
            return {}
        try:
            return loads_histories(self.path.read_bytes(), limit=self.limit)
        except (SerializationError, OSError) as e:
            logger.warning(f"Failed to load snapshot history from {self.path}, starting empty: {e}")
            return {}

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".snapshots_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def load(self, key: HistoryKey) -> List[WalletSnapshot]:
        await self._ensure_loaded()
        return await super().load(key)

    async def save(self, key: HistoryKey, snapshots: List[WalletSnapshot]) -> None:
        await self._ensure_loaded()
        async with self._file_lock:
            self._histories[key] = list(snapshots)
            payload = dumps_histories(self._histories)
            await asyncio.to_thread(self._write, payload)

    async def keys(self) -> List[HistoryKey]:
        await self._ensure_loaded()
        return await super().keys()

