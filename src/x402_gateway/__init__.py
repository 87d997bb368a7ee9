"""
x402 gateway: pay-per-request authorization for autonomous agents.

Authorizes metered API calls against on-chain merchant registrations and
agent spend policies, and tracks yield on funds parked in a vault.

Quick start:
    from x402_gateway import build_gateway, load_settings

    gateway = build_gateway(load_settings())
    decision = await gateway.authorizer.authorize(
        "weather-api", "0xAgent...", 1_000_000, target_url="https://api.example.com/v1"
    )
    if decision.allowed:
        ...
"""
from __future__ import annotations

from .authorizer import RequestAuthorizer
from .config import GatewaySettings, load_settings
from .constants import DecisionOutcome, LimitScope, ReasonCode
from .exceptions import (
    ConfigurationError,
    GatewayException,
    InvalidSnapshotOrderError,
    LimitExceededError,
    NotRegisteredError,
    PolicyFrozenError,
    PolicyWriteForbiddenError,
    SerializationError,
    SsrfBlockedError,
    UpstreamChainError,
)
from .gateway import Gateway, build_gateway
from .identity import IdentityVerifier
from .models import (
    AuthorizationDecision,
    MerchantRecord,
    OnChainPolicy,
    SpendAccumulator,
    WalletSnapshot,
    YieldDelta,
)
from .policy_admin import PolicyAdministrator
from .policy_gate import LocalPolicyHashVerifier, PolicyGate, compute_policy_hash
from .retry import ResilientChainClient, RetryPolicy
from .scheduler import YieldMonitor
from .snapshot_store import InMemorySnapshotStore, JsonFileSnapshotStore
from .spend_store import InMemorySpendStore, JsonFileSpendStore, RedisSpendStore
from .upstream_guard import UpstreamGuard
from .wallet_watcher import WalletWatcher
from .yield_accountant import YieldAccountant, compute_yield_delta

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Wiring
    "Gateway",
    "build_gateway",
    "GatewaySettings",
    "load_settings",
    # Components
    "ResilientChainClient",
    "RetryPolicy",
    "UpstreamGuard",
    "IdentityVerifier",
    "PolicyGate",
    "LocalPolicyHashVerifier",
    "compute_policy_hash",
    "PolicyAdministrator",
    "RequestAuthorizer",
    "WalletWatcher",
    "YieldAccountant",
    "compute_yield_delta",
    "YieldMonitor",
    # Stores
    "InMemorySpendStore",
    "JsonFileSpendStore",
    "RedisSpendStore",
    "InMemorySnapshotStore",
    "JsonFileSnapshotStore",
    # Models
    "AuthorizationDecision",
    "MerchantRecord",
    "OnChainPolicy",
    "SpendAccumulator",
    "WalletSnapshot",
    "YieldDelta",
    "DecisionOutcome",
    "ReasonCode",
    "LimitScope",
    # Exceptions
    "GatewayException",
    "ConfigurationError",
    "NotRegisteredError",
    "PolicyFrozenError",
    "LimitExceededError",
    "SsrfBlockedError",
    "UpstreamChainError",
    "PolicyWriteForbiddenError",
    "InvalidSnapshotOrderError",
    "SerializationError",
]
