"""Merchant identity verification against the on-chain registry."""
from __future__ import annotations

import logging
from typing import Awaitable, Callable

from .exceptions import NotRegisteredError
from .models import MerchantRecord
from .retry import ResilientChainClient

logger = logging.getLogger(__name__)

MerchantReader = Callable[[str], Awaitable[MerchantRecord]]


class IdentityVerifier:
    """Confirms a merchant id resolves to an active on-chain wallet.

    Nothing is cached: a merchant deregistered a moment ago must not keep
    passing on a stale read.
    """

    def __init__(self, chain: ResilientChainClient, read_merchant: MerchantReader) -> None:
        self._chain = chain
        self._read_merchant = read_merchant

    async def verify(self, merchant_id: str) -> MerchantRecord:
        """
        Raises:
            NotRegisteredError: zero wallet or inactive registration
            UpstreamChainError: registry read failed after all retries
        """
        record = await self._chain.execute(
            lambda: self._read_merchant(merchant_id),
            label="getMerchant",
        )

        if not record.is_registered:
            logger.info(f"Merchant {merchant_id} resolves to the zero address")
            raise NotRegisteredError(merchant_id)
        if not record.is_active:
            logger.info(f"Merchant {merchant_id} is registered but inactive")
            raise NotRegisteredError(merchant_id, reason="inactive")

        return record
