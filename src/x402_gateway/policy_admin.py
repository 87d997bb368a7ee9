"""Privileged policy write path for setup and recovery tooling.

Never wired into request handling. A write needs all of:
- a configured signing identity
- ``allow_policy_writes`` switched on explicitly
- a task context that is not inside an authorization
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from .chain import registry
from .chain.connection import SigningContext
from .exceptions import PolicyWriteForbiddenError
from .policy_gate import compute_policy_hash
from .retry import ResilientChainClient

logger = logging.getLogger(__name__)


class PolicyAdministrator:
    """Writes an agent's own spend policy to the AgentPolicyRegistry."""

    def __init__(
        self,
        chain: ResilientChainClient,
        signing: Optional[SigningContext],
        *,
        allow_policy_writes: bool = False,
    ) -> None:
        self._chain = chain
        self._signing = signing
        self._allow_writes = allow_policy_writes

    def _require_signer(self) -> SigningContext:
        if self._signing is None:
            raise PolicyWriteForbiddenError("setPolicy requires a signing identity (X402_SIGNER_PRIVATE_KEY)")
        if not self._allow_writes:
            raise PolicyWriteForbiddenError("policy writes are disabled (set X402_ALLOW_POLICY_WRITES=true)")
        if registry.chain_writes_blocked():
            raise PolicyWriteForbiddenError(
                "setPolicy refused: chain writes are not permitted during request authorization"
            )
        return self._signing

    async def set_policy(
        self,
        daily_spend_limit: int,
        max_per_transaction: int,
        policy_hash: Optional[str] = None,
    ) -> dict[str, Any]:
        """Submit ``setPolicy`` and return the confirmed receipt.

        When ``policy_hash`` is omitted the canonical hash of the two limits
        is used, which keeps the policy verifiable by LocalPolicyHashVerifier.
        """
        if daily_spend_limit < 0 or max_per_transaction < 0:
            raise ValueError("limits must be non-negative")
        if max_per_transaction > daily_spend_limit:
            logger.warning(
                "maxPerTransaction exceeds dailySpendLimit; the daily limit will bind first"
            )

        signing = self._require_signer()
        policy_hash = policy_hash or compute_policy_hash(daily_spend_limit, max_per_transaction)

        logger.info(
            f"Setting policy for {signing.address}: daily={daily_spend_limit} "
            f"per_tx={max_per_transaction} hash={policy_hash}"
        )
        # One attempt only: a blind resubmit could double-send after a lost response.
        return await self._chain.with_retry(
            lambda: registry.set_policy(signing, daily_spend_limit, max_per_transaction, policy_hash),
            max_attempts=1,
            label="setPolicy",
        )
