"""Wiring: builds every gateway component from GatewaySettings."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Optional, Sequence

from web3.exceptions import ContractLogicError, InvalidAddress

from .authorizer import RequestAuthorizer
from .chain import registry
from .chain.balances import ConnectionBalanceReader
from .chain.connection import ChainConnection, SigningContext, create_connection
from .config import GatewaySettings
from .exceptions import ConfigurationError
from .identity import IdentityVerifier
from .policy_admin import PolicyAdministrator
from .policy_gate import LocalPolicyHashVerifier, PolicyGate
from .retry import ResilientChainClient, RetryPolicy
from .scheduler import YieldMonitor
from .snapshot_store import JsonFileSnapshotStore
from .spend_store import InMemorySpendStore, JsonFileSpendStore, RedisSpendStore, SpendStore
from .upstream_guard import UpstreamGuard
from .wallet_watcher import WalletWatcher
from .yield_accountant import YieldAccountant

logger = logging.getLogger(__name__)

# Reverts and bad input fail the same way on every attempt.
NON_RETRYABLE_CHAIN_ERRORS = (ContractLogicError, InvalidAddress, ConfigurationError)


@dataclass
class Gateway:
    settings: GatewaySettings
    connection: ChainConnection
    chain: ResilientChainClient
    spend_store: SpendStore
    identity: IdentityVerifier
    policy_gate: PolicyGate
    upstream_guard: UpstreamGuard
    authorizer: RequestAuthorizer
    watcher: WalletWatcher
    accountant: YieldAccountant
    administrator: PolicyAdministrator

    def yield_monitor(self, addresses: Optional[Sequence[str]] = None) -> YieldMonitor:
        if addresses is None:
            addresses = self.settings.watched_address_list
        return YieldMonitor(
            self.watcher,
            self.accountant,
            addresses,
            interval_seconds=self.settings.snapshot_interval_seconds,
        )

    async def close(self) -> None:
        await self.spend_store.close()
        disconnect = getattr(self.connection.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()


def create_spend_store(settings: GatewaySettings) -> SpendStore:
    if settings.spend_store == "redis":
        return RedisSpendStore.from_url(settings.redis_url)
    if settings.spend_store == "file":
        return JsonFileSpendStore(settings.spend_state_path)
    logger.warning("Using in-memory spend store; daily totals reset on restart")
    return InMemorySpendStore()


def build_gateway(
    settings: GatewaySettings,
    *,
    connection: Optional[ChainConnection] = None,
) -> Gateway:
    """Assemble a Gateway. ``connection`` overrides the RPC built from settings."""
    connection = connection or create_connection(settings)
    chain = ResilientChainClient(
        RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
            jitter_ms=settings.retry_jitter_ms,
            non_retryable_exceptions=NON_RETRYABLE_CHAIN_ERRORS,
        )
    )
    spend_store = create_spend_store(settings)

    identity = IdentityVerifier(chain, partial(registry.get_merchant, connection))
    policy_gate = PolicyGate(
        chain,
        partial(registry.get_policy, connection),
        spend_store,
        hash_verifier=LocalPolicyHashVerifier() if settings.verify_policy_hash else None,
    )
    upstream_guard = UpstreamGuard(
        require_https=settings.enforce_https,
        dns_timeout=settings.dns_timeout_seconds,
    )
    authorizer = RequestAuthorizer(
        identity,
        policy_gate,
        upstream_guard,
        timeout=settings.authorization_timeout_seconds,
    )

    watcher = WalletWatcher(
        chain,
        ConnectionBalanceReader(connection),
        vault_address=settings.vault_address,
        stable_asset_address=settings.stable_asset_address,
    )
    accountant = YieldAccountant(
        JsonFileSnapshotStore(
            settings.snapshot_history_path, limit=settings.snapshot_history_limit
        ),
        limit=settings.snapshot_history_limit,
    )

    signing = None
    if settings.signer_private_key:
        signing = SigningContext.from_private_key(connection, settings.signer_private_key)
    administrator = PolicyAdministrator(
        chain,
        signing,
        allow_policy_writes=settings.allow_policy_writes,
    )

    logger.info(
        f"Gateway ready: env={settings.environment} chain_id={settings.chain_id} "
        f"spend_store={settings.spend_store} https_only={settings.enforce_https}"
    )
    return Gateway(
        settings=settings,
        connection=connection,
        chain=chain,
        spend_store=spend_store,
        identity=identity,
        policy_gate=policy_gate,
        upstream_guard=upstream_guard,
        authorizer=authorizer,
        watcher=watcher,
        accountant=accountant,
        administrator=administrator,
    )
