"""Off-chain daily spend accumulators, keyed by agent address.

The chain stores an agent's limits but not its consumption. These stores own
``spent_today`` and make the reset-check-increment sequence atomic per agent:
- InMemorySpendStore / JsonFileSpendStore: per-agent asyncio.Lock
- RedisSpendStore: WATCH/MULTI conditional update, safe across processes

A stored value that is missing, negative or not an integer counts as zero.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from .constants import SpendDefaults
from .exceptions import SerializationError
from .locks import KeyedLocks
from .models import SpendAccumulator, SpendResult

logger = logging.getLogger(__name__)


class SpendStore(Protocol):
    async def get(self, agent_address: str, day: str) -> SpendAccumulator: ...

    async def try_spend(
        self,
        agent_address: str,
        amount: int,
        daily_limit: int,
        day: str,
    ) -> SpendResult: ...

    async def release(self, agent_address: str, amount: int, day: str) -> int: ...

    async def close(self) -> None: ...


def _coerce_spent(agent_address: str, raw: Any) -> int:
    if isinstance(raw, bool):
        raw = None
    if isinstance(raw, str):
        try:
            raw = int(raw)
        except ValueError:
            raw = None
    if not isinstance(raw, int) or raw < 0:
        if raw is not None:
            logger.warning(f"Corrupt spend accumulator for {agent_address} ({raw!r}), treating as zero")
        return 0
    return raw


# ============================================================================
# In-process stores
# ============================================================================

class InMemorySpendStore:
    """In-memory accumulator store for tests and single-process dev runs."""

    def __init__(self) -> None:
        self._records: Dict[str, SpendAccumulator] = {}
        self._locks: KeyedLocks[str] = KeyedLocks()

    def _current(self, key: str, day: str) -> SpendAccumulator:
        record = self._records.get(key)
        if record is None or record.day != day:
            return SpendAccumulator(agent_address=key, day=day, spent_today=0)
        return SpendAccumulator(
            agent_address=key,
            day=day,
            spent_today=_coerce_spent(key, record.spent_today),
        )

    async def _persist(self) -> None:
        """Hook for durable subclasses; called with the agent's lock held."""

    async def _commit(self, record: SpendAccumulator) -> None:
        key = record.agent_address
        previous = self._records.get(key)
        self._records[key] = record
        try:
            await self._persist()
        except BaseException:
            # Roll back so a failed or cancelled write never leaves a spend counted
            if previous is None:
                self._records.pop(key, None)
            else:
                self._records[key] = previous
            raise

    async def get(self, agent_address: str, day: str) -> SpendAccumulator:
        return self._current(agent_address.lower(), day)

    async def try_spend(
        self,
        agent_address: str,
        amount: int,
        daily_limit: int,
        day: str,
    ) -> SpendResult:
        key = agent_address.lower()
        async with self._locks.hold(key):
            record = self._current(key, day)
            if record.spent_today + amount > daily_limit:
                return SpendResult(allowed=False, spent_today=record.spent_today, day=day)
            updated = SpendAccumulator(
                agent_address=key, day=day, spent_today=record.spent_today + amount
            )
            await self._commit(updated)
            return SpendResult(allowed=True, spent_today=updated.spent_today, day=day)

    async def release(self, agent_address: str, amount: int, day: str) -> int:
        key = agent_address.lower()
        async with self._locks.hold(key):
            record = self._current(key, day)
            updated = SpendAccumulator(
                agent_address=key, day=day, spent_today=max(0, record.spent_today - amount)
            )
            await self._commit(updated)
            return updated.spent_today

    async def close(self) -> None:
        pass


class JsonFileSpendStore(InMemorySpendStore):
    """Accumulators persisted to a JSON file so limits survive restarts.

    Amounts are written as decimal strings. A malformed file is logged and
    replaced by an empty state on the next write.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)
        self._write_lock = asyncio.Lock()
        self._records = self._load()

    def _load(self) -> Dict[str, SpendAccumulator]:
        if not self._path.exists():
            return {}
        try:
            return self._parse(self._path.read_bytes())
        except SerializationError as e:
            logger.warning(f"Failed to parse spend state at {self._path}, starting fresh: {e}")
            return {}

    @staticmethod
    def _parse(raw: bytes) -> Dict[str, SpendAccumulator]:
        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
            raise SerializationError(f"spend state is not valid JSON: {e}") from e
        agents = document.get("agents") if isinstance(document, dict) else None
        if not isinstance(agents, dict):
            raise SerializationError("spend state must contain an 'agents' object")

        records: Dict[str, SpendAccumulator] = {}
        for key, entry in agents.items():
            if not isinstance(entry, dict) or not isinstance(entry.get("day"), str):
                logger.warning(f"Dropping malformed spend entry for {key}")
                continue
            records[key.lower()] = SpendAccumulator(
                agent_address=key.lower(),
                day=entry["day"],
                spent_today=_coerce_spent(key, entry.get("spent_today")),
            )
        return records

    def _dump(self) -> str:
        return json.dumps(
            {
                "version": 1,
                "agents": {
                    key: {"day": record.day, "spent_today": str(record.spent_today)}
                    for key, record in sorted(self._records.items())
                },
            },
            indent=2,
        )

    def _write(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".spend_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def _persist(self) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._write, self._dump())


# ============================================================================
# Redis store
# ============================================================================

class RedisSpendStore:
    """Redis-backed accumulators shared by every gateway process.

    Each agent is one hash ``{prefix}:{agent}`` with fields ``day`` and
    ``spent`` (decimal string). Updates use optimistic WATCH/MULTI so two
    processes can never both pass the daily check on the same headroom.
    """

    def __init__(
        self,
        redis_client: Any,
        *,
        prefix: str = SpendDefaults.REDIS_PREFIX,
        ttl_seconds: int = SpendDefaults.REDIS_TTL_SECONDS,
    ) -> None:
        self.redis = redis_client
        self._prefix = prefix
        self._ttl = ttl_seconds

    @classmethod
    def from_url(cls, redis_url: str, **kwargs: Any) -> "RedisSpendStore":
        return cls(aioredis.from_url(redis_url, decode_responses=True), **kwargs)

    def _key(self, agent_address: str) -> str:
        return f"{self._prefix}:{agent_address.lower()}"

    @staticmethod
    def _spent_for_day(agent_address: str, raw: Optional[dict], day: str) -> int:
        if not raw or raw.get("day") != day:
            return 0
        return _coerce_spent(agent_address, raw.get("spent"))

    async def get(self, agent_address: str, day: str) -> SpendAccumulator:
        raw = await self.redis.hgetall(self._key(agent_address))
        return SpendAccumulator(
            agent_address=agent_address.lower(),
            day=day,
            spent_today=self._spent_for_day(agent_address, raw, day),
        )

    async def _update(self, agent_address: str, day: str, mutate) -> tuple[bool, int]:
        key = self._key(agent_address)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    current = self._spent_for_day(agent_address, await pipe.hgetall(key), day)
                    new_value = mutate(current)
                    if new_value is None:
                        await pipe.unwatch()
                        return False, current
                    pipe.multi()
                    pipe.hset(key, mapping={"day": day, "spent": str(new_value)})
                    pipe.expire(key, self._ttl)
                    await pipe.execute()
                    return True, new_value
                except WatchError:
                    logger.debug(f"Concurrent spend update on {key}, retrying")
                    continue

    async def try_spend(
        self,
        agent_address: str,
        amount: int,
        daily_limit: int,
        day: str,
    ) -> SpendResult:
        def mutate(current: int) -> Optional[int]:
            if current + amount > daily_limit:
                return None
            return current + amount

        allowed, spent = await self._update(agent_address, day, mutate)
        return SpendResult(allowed=allowed, spent_today=spent, day=day)

    async def release(self, agent_address: str, amount: int, day: str) -> int:
        _, spent = await self._update(agent_address, day, lambda current: max(0, current - amount))
        return spent

    async def close(self) -> None:
        await self.redis.aclose()
