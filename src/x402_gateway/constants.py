"""
Centralized constants and configuration defaults for the x402 gateway.

Usage:
    from x402_gateway.constants import RetryDefaults, ReasonCode, ZERO_ADDRESS

All values are organized into logical namespaces using classes.
"""
from __future__ import annotations

from enum import Enum
from typing import Final

# Python 3.10 compatibility for StrEnum
try:
    from enum import StrEnum
except ImportError:
    class StrEnum(str, Enum):
        """String enum for Python < 3.11 compatibility."""
        pass


ZERO_ADDRESS: Final[str] = "0x0000000000000000000000000000000000000000"

# Vault exchange rates are 18-decimal fixed point (Compound-style cTokens).
EXCHANGE_RATE_SCALE: Final[int] = 10**18


# =============================================================================
# Timeout Constants (in seconds unless specified)
# =============================================================================

class Timeouts:
    """Network and operation timeout configuration."""

    AUTHORIZATION: Final[float] = 15.0
    DNS_LOOKUP: Final[float] = 5.0
    TX_RECEIPT: Final[float] = 120.0


# =============================================================================
# Retry Configuration
# =============================================================================

class RetryDefaults:
    """Retry configuration for chain access."""

    MAX_ATTEMPTS: Final[int] = 3
    BASE_DELAY_MS: Final[int] = 1000
    JITTER_MS: Final[int] = 200


# =============================================================================
# Yield Accounting
# =============================================================================

class SnapshotDefaults:
    """Snapshot history retention and cadence."""

    HISTORY_LIMIT: Final[int] = 100
    INTERVAL_SECONDS: Final[int] = 5 * 60
    SCHEMA_VERSION: Final[int] = 1


class SpendDefaults:
    """Off-chain spend accumulator settings."""

    REDIS_PREFIX: Final[str] = "x402:spend"
    # Accumulators only matter for the current UTC day; keep one spare day.
    REDIS_TTL_SECONDS: Final[int] = 86400 * 2


# =============================================================================
# Logging Configuration
# =============================================================================

class LoggingConfig:
    """Logging-related constants."""

    SENSITIVE_FIELDS: Final[frozenset[str]] = frozenset({
        "private_key",
        "privateKey",
        "signer_private_key",
        "secret",
        "api_key",
        "authorization",
        "redis_url",
    })

    MASK_PATTERN: Final[str] = "***REDACTED***"


# =============================================================================
# Decision outcomes and reason codes
# =============================================================================

class DecisionOutcome(StrEnum):
    ALLOW = "ALLOW"
    DENY = "DENY"


class ReasonCode(StrEnum):
    """Machine-readable reason attached to every authorization decision."""

    OK = "OK"
    NOT_REGISTERED = "NotRegistered"
    POLICY_FROZEN = "PolicyFrozen"
    POLICY_HASH_MISMATCH = "PolicyHashMismatch"
    LIMIT_EXCEEDED = "LimitExceeded"
    SSRF_BLOCKED = "SsrfBlocked"
    UPSTREAM_CHAIN_ERROR = "UpstreamChainError"
    TIMEOUT = "Timeout"


class LimitScope(StrEnum):
    PER_TRANSACTION = "per_transaction"
    DAILY = "daily"
