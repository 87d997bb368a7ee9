"""Per-agent spend policy enforcement.

Limits and the frozen flag come from the on-chain AgentPolicyRegistry and
are read fresh on every request. Consumption (``spent_today``) is tracked
off-chain by a SpendStore, which performs the daily reset, the limit check
and the increment as one atomic step per agent.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Protocol

from eth_abi import encode
from web3 import Web3

from .chain.registry import read_only_chain_access
from .constants import LimitScope, ReasonCode
from .models import AuthorizationDecision, OnChainPolicy
from .retry import ResilientChainClient
from .spend_store import SpendStore

logger = logging.getLogger(__name__)

PolicyReader = Callable[[str], Awaitable[OnChainPolicy]]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_day(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d")


def compute_policy_hash(daily_spend_limit: int, max_per_transaction: int) -> str:
    """keccak256(abi.encode(dailySpendLimit, maxPerTransaction)) as 0x-hex."""
    digest = Web3.keccak(encode(["uint256", "uint256"], [daily_spend_limit, max_per_transaction]))
    return "0x" + bytes(digest).hex()


class PolicyHashVerifier(Protocol):
    """Extension point: decide whether an on-chain policy hash is trustworthy."""

    def __call__(self, agent_address: str, policy: OnChainPolicy) -> bool: ...


class LocalPolicyHashVerifier:
    """Recomputes the hash from the on-chain limits and compares.

    Catches registry entries whose limits were changed without updating the
    fingerprint. Policies whose hash is all zeros were set without one and
    are rejected unless ``allow_unhashed`` is True.
    """

    def __init__(self, *, allow_unhashed: bool = False) -> None:
        self.allow_unhashed = allow_unhashed

    def __call__(self, agent_address: str, policy: OnChainPolicy) -> bool:
        if int(policy.policy_hash, 16) == 0:
            return self.allow_unhashed
        expected = compute_policy_hash(policy.daily_spend_limit, policy.max_per_transaction)
        return expected.lower() == policy.policy_hash.lower()


class PolicyGate:
    """Enforces per-agent spend limits and freeze state."""

    def __init__(
        self,
        chain: ResilientChainClient,
        read_policy: PolicyReader,
        spend_store: SpendStore,
        *,
        hash_verifier: Optional[PolicyHashVerifier] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._chain = chain
        self._read_policy = read_policy
        self._store = spend_store
        self._hash_verifier = hash_verifier
        self._clock = clock

    def today(self) -> str:
        return utc_day(self._clock())

    def next_reset(self) -> datetime:
        now = self._clock().astimezone(timezone.utc)
        return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)

    async def authorize(
        self,
        agent_address: str,
        requested_amount: int,
        *,
        merchant_id: str = "",
    ) -> AuthorizationDecision:
        """
        Raises:
            ValueError: requested_amount is not a positive integer
            UpstreamChainError: policy read failed after all retries
        """
        if isinstance(requested_amount, bool) or not isinstance(requested_amount, int) or requested_amount <= 0:
            raise ValueError("requested_amount must be a positive integer")

        def deny(reason: ReasonCode, **detail) -> AuthorizationDecision:
            logger.info(f"Policy denied {requested_amount} for {agent_address}: {reason.value} {detail}")
            return AuthorizationDecision.deny(
                merchant_id, agent_address, requested_amount, reason, **detail
            )

        with read_only_chain_access():
            policy = await self._chain.execute(
                lambda: self._read_policy(agent_address),
                label="getPolicy",
            )

        if policy.is_frozen:
            return deny(ReasonCode.POLICY_FROZEN)

        if self._hash_verifier is not None and not self._hash_verifier(agent_address, policy):
            return deny(ReasonCode.POLICY_HASH_MISMATCH, policy_hash=policy.policy_hash)

        if requested_amount > policy.max_per_transaction:
            return deny(
                ReasonCode.LIMIT_EXCEEDED,
                scope=LimitScope.PER_TRANSACTION.value,
                limit=str(policy.max_per_transaction),
            )

        day = self.today()
        result = await self._store.try_spend(
            agent_address,
            requested_amount,
            policy.daily_spend_limit,
            day,
        )
        if not result.allowed:
            return deny(
                ReasonCode.LIMIT_EXCEEDED,
                scope=LimitScope.DAILY.value,
                limit=str(policy.daily_spend_limit),
                spent_today=str(result.spent_today),
                resets_at=self.next_reset().isoformat(),
            )

        logger.debug(
            f"Policy allowed {requested_amount} for {agent_address}; "
            f"spent today {result.spent_today}/{policy.daily_spend_limit}"
        )
        return AuthorizationDecision.allow(
            merchant_id,
            agent_address,
            requested_amount,
            spent_today=str(result.spent_today),
        )

    async def release(self, agent_address: str, amount: int) -> int:
        """Give back an amount reserved by ``authorize`` when a later gate denies."""
        remaining = await self._store.release(agent_address, amount, self.today())
        logger.info(f"Released {amount} for {agent_address}; spent today now {remaining}")
        return remaining

    async def spent_today(self, agent_address: str) -> int:
        record = await self._store.get(agent_address, self.today())
        return record.spent_today
