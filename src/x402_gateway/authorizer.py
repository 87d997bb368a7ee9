"""Request authorization pipeline.

Sequences identity verification, spend policy and the upstream guard for
one inbound request and always answers with an AuthorizationDecision.
Denials never escape as exceptions.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .chain.registry import read_only_chain_access
from .constants import ReasonCode, Timeouts
from .exceptions import NotRegisteredError, UpstreamChainError
from .identity import IdentityVerifier
from .logging_config import log_context
from .models import AuthorizationDecision
from .policy_gate import PolicyGate
from .upstream_guard import UpstreamGuard

logger = logging.getLogger(__name__)


@dataclass
class _Attempt:
    """Progress of one authorization, readable after a timeout cancels it."""

    reserved: bool = False
    stage: str = "identity"


class RequestAuthorizer:
    """Entry point for authorizing a paid request from an agent."""

    def __init__(
        self,
        identity: IdentityVerifier,
        policy_gate: PolicyGate,
        upstream_guard: UpstreamGuard,
        *,
        timeout: float = Timeouts.AUTHORIZATION,
    ) -> None:
        self._identity = identity
        self._policy_gate = policy_gate
        self._upstream_guard = upstream_guard
        self.timeout = timeout

    async def authorize(
        self,
        merchant_id: str,
        agent_address: str,
        amount: int,
        target_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        request_id: Optional[str] = None,
    ) -> AuthorizationDecision:
        """Authorize ``amount`` from ``agent_address`` to ``merchant_id``.

        ``timeout`` is the caller's patience in seconds (default from
        settings). When it expires, in-flight chain retries are cancelled,
        any spend reservation is released and a ``Timeout`` denial is
        returned.

        Raises:
            ValueError: amount is not a positive integer
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError("amount must be a positive integer")

        deadline = self.timeout if timeout is None else timeout
        attempt = _Attempt()

        with log_context(request_id=request_id, merchant_id=merchant_id, agent_address=agent_address):
            with read_only_chain_access():
                try:
                    decision = await asyncio.wait_for(
                        self._run(attempt, merchant_id, agent_address, amount, target_url),
                        deadline,
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Authorization timed out after {deadline}s during {attempt.stage}"
                    )
                    if attempt.reserved:
                        await self._policy_gate.release(agent_address, amount)
                    decision = AuthorizationDecision.deny(
                        merchant_id,
                        agent_address,
                        amount,
                        ReasonCode.TIMEOUT,
                        stage=attempt.stage,
                        timeout_seconds=deadline,
                    )

            self._log_decision(decision)
            return decision

    async def _run(
        self,
        attempt: _Attempt,
        merchant_id: str,
        agent_address: str,
        amount: int,
        target_url: Optional[str],
    ) -> AuthorizationDecision:
        try:
            await self._identity.verify(merchant_id)
        except NotRegisteredError as e:
            return AuthorizationDecision.deny(
                merchant_id,
                agent_address,
                amount,
                ReasonCode.NOT_REGISTERED,
                reason=e.details.get("reason", "unregistered"),
            )
        except UpstreamChainError as e:
            return self._chain_failure(merchant_id, agent_address, amount, e)

        attempt.stage = "policy"
        try:
            decision = await self._policy_gate.authorize(
                agent_address, amount, merchant_id=merchant_id
            )
        except UpstreamChainError as e:
            return self._chain_failure(merchant_id, agent_address, amount, e)
        if not decision.allowed:
            return decision
        attempt.reserved = True

        if target_url is None:
            return decision

        attempt.stage = "upstream"
        try:
            safe = await self._upstream_guard.validate(target_url)
        except Exception as e:
            logger.error(f"Upstream guard failed for {target_url!r}, rejecting: {e}")
            safe = False
        if not safe:
            await self._policy_gate.release(agent_address, amount)
            attempt.reserved = False
            return AuthorizationDecision.deny(
                merchant_id,
                agent_address,
                amount,
                ReasonCode.SSRF_BLOCKED,
                target_url=target_url,
            )
        return decision

    @staticmethod
    def _chain_failure(
        merchant_id: str,
        agent_address: str,
        amount: int,
        error: UpstreamChainError,
    ) -> AuthorizationDecision:
        logger.error(f"Gateway chain failure while authorizing: {error.message}")
        return AuthorizationDecision.deny(
            merchant_id,
            agent_address,
            amount,
            ReasonCode.UPSTREAM_CHAIN_ERROR,
            **error.details,
        )

    @staticmethod
    def _log_decision(decision: AuthorizationDecision) -> None:
        level = logging.INFO if decision.allowed else logging.WARNING
        logger.log(
            level,
            f"Authorization {decision.outcome.value} ({decision.reason_code.value}) "
            f"for {decision.amount} to {decision.merchant_id}",
            extra={"decision": decision.to_dict()},
        )
