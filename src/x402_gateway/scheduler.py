"""Fixed-cadence yield monitoring.

Snapshots every watched wallet on an interval and records the results in
the YieldAccountant. Runs as a plain asyncio task; one failed wallet never
stops the loop.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .constants import SnapshotDefaults
from .exceptions import InvalidSnapshotOrderError
from .models import WalletSnapshot
from .wallet_watcher import WalletWatcher
from .yield_accountant import YieldAccountant

logger = logging.getLogger("x402_gateway.scheduler")


@dataclass(slots=True)
class RunSummary:
    recorded: int = 0
    failed: list[str] = field(default_factory=list)
    out_of_order: list[str] = field(default_factory=list)


class YieldMonitor:
    """Interval job: snapshot, then record, for each watched address."""

    def __init__(
        self,
        watcher: WalletWatcher,
        accountant: YieldAccountant,
        addresses: Sequence[str],
        *,
        interval_seconds: float = SnapshotDefaults.INTERVAL_SECONDS,
    ) -> None:
        self._watcher = watcher
        self._accountant = accountant
        self.addresses = list(addresses)
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task[None]] = None
        self._started = False

    async def run_once(self) -> RunSummary:
        summary = RunSummary()
        if not self.addresses:
            return summary

        results = await self._watcher.snapshot_all(self.addresses)
        for address, result in zip(self.addresses, results):
            if not isinstance(result, WalletSnapshot):
                summary.failed.append(address)
                continue
            try:
                await self._accountant.record(result)
            except InvalidSnapshotOrderError as e:
                logger.warning("Skipping out-of-order snapshot for %s: %s", address, e.message)
                summary.out_of_order.append(address)
                continue
            summary.recorded += 1

        logger.info(
            "Yield monitor run: %d recorded, %d failed, %d out of order",
            summary.recorded,
            len(summary.failed),
            len(summary.out_of_order),
        )
        return summary

    async def _runner(self) -> None:
        while self._started:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Yield monitor run failed - %s: %s", type(e).__name__, e)
            await asyncio.sleep(self.interval_seconds)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._task = asyncio.create_task(self._runner())
        logger.info(
            "Yield monitor started (%d wallets, every %ss)",
            len(self.addresses),
            self.interval_seconds,
        )

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Yield monitor stopped")

    @property
    def is_running(self) -> bool:
        return self._started
