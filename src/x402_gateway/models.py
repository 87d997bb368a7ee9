"""Domain records shared by the authorization and yield subsystems.

All monetary fields are ``int`` in the asset's smallest unit. Chain values are
uint256 and routinely exceed the float-safe range, so nothing here is ever
converted to float.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .constants import ZERO_ADDRESS, DecisionOutcome, LimitScope, ReasonCode
from .exceptions import (
    GatewayException,
    LimitExceededError,
    NotRegisteredError,
    PolicyFrozenError,
    SsrfBlockedError,
    UpstreamChainError,
)


@dataclass(frozen=True, slots=True)
class MerchantRecord:
    """Projection of ``MerchantRegistry.getMerchant``; valid for one request only."""

    merchant_id: str
    wallet: str
    is_active: bool
    metadata_uri: str = ""

    @property
    def is_registered(self) -> bool:
        return self.wallet.lower() != ZERO_ADDRESS


@dataclass(frozen=True, slots=True)
class OnChainPolicy:
    """Projection of ``AgentPolicyRegistry.getPolicy``.

    The chain stores limits only. Consumption lives in a SpendAccumulator.
    """

    daily_spend_limit: int
    max_per_transaction: int
    policy_hash: str
    is_frozen: bool
    last_updated: int


@dataclass(slots=True)
class SpendAccumulator:
    """Off-chain running total for one agent and one UTC day."""

    agent_address: str
    day: str
    spent_today: int = 0


@dataclass(frozen=True, slots=True)
class SpendResult:
    allowed: bool
    spent_today: int
    day: str


@dataclass(frozen=True, slots=True)
class WalletSnapshot:
    """Point-in-time balances of one wallet against one vault."""

    agent_address: str
    vault_address: str
    shares: int
    underlying_value: int
    timestamp: int
    native_balance: int = 0
    stable_balance: int = 0
    exchange_rate: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return snapshot_key(self.agent_address, self.vault_address)


def snapshot_key(agent_address: str, vault_address: str) -> tuple[str, str]:
    return (agent_address.lower(), vault_address.lower())


@dataclass(frozen=True, slots=True)
class YieldDelta:
    """Change between two snapshots; negative values mean withdrawal or loss."""

    from_snapshot: WalletSnapshot
    to_snapshot: WalletSnapshot
    delta_underlying: int
    delta_shares: int
    delta_time_sec: int

    @property
    def is_loss(self) -> bool:
        return self.delta_underlying < 0


@dataclass(frozen=True, slots=True)
class AuthorizationDecision:
    """Outcome of one authorization; logged, never mutated."""

    merchant_id: str
    agent_address: str
    amount: int
    outcome: DecisionOutcome
    reason_code: ReasonCode
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    detail: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def allow(cls, merchant_id: str, agent_address: str, amount: int, **detail: Any) -> "AuthorizationDecision":
        return cls(
            merchant_id=merchant_id,
            agent_address=agent_address,
            amount=amount,
            outcome=DecisionOutcome.ALLOW,
            reason_code=ReasonCode.OK,
            detail=detail,
        )

    @classmethod
    def deny(
        cls,
        merchant_id: str,
        agent_address: str,
        amount: int,
        reason_code: ReasonCode,
        **detail: Any,
    ) -> "AuthorizationDecision":
        return cls(
            merchant_id=merchant_id,
            agent_address=agent_address,
            amount=amount,
            outcome=DecisionOutcome.DENY,
            reason_code=reason_code,
            detail=detail,
        )

    @property
    def allowed(self) -> bool:
        return self.outcome == DecisionOutcome.ALLOW

    def to_dict(self) -> dict[str, Any]:
        return {
            "merchant_id": self.merchant_id,
            "agent_address": self.agent_address,
            "amount": str(self.amount),
            "outcome": self.outcome.value,
            "reason_code": self.reason_code.value,
            "timestamp": self.timestamp.isoformat(),
            "detail": self.detail,
        }

    def to_exception(self) -> Optional[GatewayException]:
        """Exception matching a DENY, for transports that map errors to HTTP codes."""
        if self.allowed:
            return None
        reason = self.reason_code
        if reason == ReasonCode.NOT_REGISTERED:
            return NotRegisteredError(self.merchant_id, self.detail.get("reason", "unregistered"))
        if reason == ReasonCode.LIMIT_EXCEEDED:
            return LimitExceededError(
                f"{self.detail.get('scope', LimitScope.DAILY)} limit exceeded",
                scope=str(self.detail.get("scope", LimitScope.DAILY)),
                limit=int(self.detail.get("limit", 0)),
                requested=self.amount,
            )
        if reason in (ReasonCode.POLICY_FROZEN, ReasonCode.POLICY_HASH_MISMATCH):
            return PolicyFrozenError(
                f"Policy for {self.agent_address} rejected: {reason.value}",
                error_code=reason.value,
            )
        if reason == ReasonCode.SSRF_BLOCKED:
            return SsrfBlockedError("Upstream target is not allowed", details=dict(self.detail))
        return UpstreamChainError(
            f"Gateway could not reach the chain: {reason.value}",
            details={"reason": reason.value},
        )
