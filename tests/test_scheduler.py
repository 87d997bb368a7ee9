"""Tests for the fixed-cadence yield monitor."""
from __future__ import annotations

import asyncio

import pytest

from fakes import FakeBalanceReader, fast_chain
from x402_gateway.scheduler import YieldMonitor
from x402_gateway.snapshot_store import InMemorySnapshotStore
from x402_gateway.wallet_watcher import WalletWatcher
from x402_gateway.yield_accountant import YieldAccountant

VAULT = "0x" + "ab" * 20
USDC = "0x" + "cd" * 20
GOOD = "0x" + "01" * 20
BAD = "0x" + "02" * 20


class TickingClock:
    def __init__(self, start: int = 1_700_000_000):
        self.now = start

    def __call__(self) -> float:
        self.now += 60
        return float(self.now)


class SelectiveReader(FakeBalanceReader):
    async def vault_shares(self, vault, address):
        if address == BAD:
            raise ConnectionError("rpc down")
        return 10**8


def make_monitor(addresses, clock=None, interval=300):
    watcher = WalletWatcher(
        fast_chain(),
        SelectiveReader(rate=2 * 10**26),
        vault_address=VAULT,
        stable_asset_address=USDC,
        clock=clock or TickingClock(),
    )
    accountant = YieldAccountant(InMemorySnapshotStore())
    return YieldMonitor(watcher, accountant, addresses, interval_seconds=interval), accountant


class TestYieldMonitor:
    @pytest.mark.asyncio
    async def test_run_once_records_snapshots(self):
        monitor, accountant = make_monitor([GOOD])

        summary = await monitor.run_once()
        await monitor.run_once()

        assert summary.recorded == 1
        history = await accountant.history(GOOD, VAULT)
        assert len(history) == 2
        assert history[0].underlying_value == 2 * 10**16

    @pytest.mark.asyncio
    async def test_failed_wallet_does_not_block_others(self):
        monitor, accountant = make_monitor([BAD, GOOD])

        summary = await monitor.run_once()

        assert summary.recorded == 1
        assert summary.failed == [BAD]
        assert len(await accountant.history(GOOD, VAULT)) == 1

    @pytest.mark.asyncio
    async def test_stale_clock_is_skipped(self):
        monitor, accountant = make_monitor([GOOD], clock=lambda: 1_700_000_000.0)

        await monitor.run_once()
        summary = await monitor.run_once()

        assert summary.out_of_order == [GOOD]
        assert len(await accountant.history(GOOD, VAULT)) == 1

    @pytest.mark.asyncio
    async def test_no_addresses(self):
        monitor, _ = make_monitor([])
        summary = await monitor.run_once()
        assert summary.recorded == 0

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        monitor, accountant = make_monitor([GOOD], interval=0.01)

        await monitor.start()
        assert monitor.is_running
        await asyncio.sleep(0.05)
        await monitor.stop()

        assert not monitor.is_running
        assert len(await accountant.history(GOOD, VAULT)) >= 2
