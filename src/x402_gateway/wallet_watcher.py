"""Point-in-time wallet balance snapshots against the yield vault."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Protocol, Sequence, Union

from .constants import EXCHANGE_RATE_SCALE
from .models import WalletSnapshot
from .retry import ResilientChainClient

logger = logging.getLogger(__name__)


class BalanceReader(Protocol):
    async def native_balance(self, address: str) -> int: ...

    async def token_balance(self, token: str, address: str) -> int: ...

    async def vault_shares(self, vault: str, address: str) -> int: ...

    async def exchange_rate(self, vault: str) -> int: ...


def underlying_value(shares: int, exchange_rate: int) -> int:
    """Vault shares converted to underlying units, rounded down."""
    return shares * exchange_rate // EXCHANGE_RATE_SCALE


class WalletWatcher:
    """Reads balances for one wallet and assembles a WalletSnapshot."""

    def __init__(
        self,
        chain: ResilientChainClient,
        reader: BalanceReader,
        *,
        vault_address: str,
        stable_asset_address: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._chain = chain
        self._reader = reader
        self.vault_address = vault_address
        self.stable_asset_address = stable_asset_address
        self._clock = clock

    async def snapshot(self, address: str) -> WalletSnapshot:
        """
        Raises:
            UpstreamChainError: any balance read failed after all retries
        """
        native, stable, shares, rate = await asyncio.gather(
            self._chain.execute(
                lambda: self._reader.native_balance(address),
                label="getBalance",
            ),
            self._chain.execute(
                lambda: self._reader.token_balance(self.stable_asset_address, address),
                label="stable.balanceOf",
            ),
            self._chain.execute(
                lambda: self._reader.vault_shares(self.vault_address, address),
                label="vault.balanceOf",
            ),
            self._chain.execute(
                lambda: self._reader.exchange_rate(self.vault_address),
                label="exchangeRateStored",
            ),
        )

        snapshot = WalletSnapshot(
            agent_address=address,
            vault_address=self.vault_address,
            shares=shares,
            underlying_value=underlying_value(shares, rate),
            timestamp=int(self._clock()),
            native_balance=native,
            stable_balance=stable,
            exchange_rate=rate,
        )
        logger.debug(
            f"Snapshot {address}: shares={shares} underlying={snapshot.underlying_value} "
            f"stable={stable} native={native}"
        )
        return snapshot

    async def snapshot_all(
        self, addresses: Sequence[str]
    ) -> List[Union[WalletSnapshot, BaseException]]:
        """Snapshot every address; a failure is returned in place, not raised."""
        results = await asyncio.gather(
            *(self.snapshot(address) for address in addresses),
            return_exceptions=True,
        )
        failed = 0
        for address, result in zip(addresses, results):
            if isinstance(result, BaseException):
                failed += 1
                logger.error(f"Snapshot failed for {address}: {result}")
        logger.info(f"Snapshot complete: {len(addresses) - failed}/{len(addresses)} wallets")
        return list(results)
