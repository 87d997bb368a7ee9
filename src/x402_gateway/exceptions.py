"""Unified exception hierarchy for the x402 gateway.

All gateway-specific exceptions inherit from GatewayException, enabling:
- Consistent error handling across the authorization and yield subsystems
- HTTP status code mapping for whichever transport embeds the gateway
- Structured error responses with machine-readable error codes

Policy and identity denials are business outcomes: RequestAuthorizer turns
them into AuthorizationDecision values instead of letting them escape.

All exceptions have:
- error_code: Machine-readable error code (e.g., "NotRegistered")
- http_status: Appropriate HTTP status code for API responses
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to API response format
"""
from __future__ import annotations

from typing import Any, Optional


class GatewayException(Exception):
    """Base exception for all gateway errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        details: Optional additional context
    """

    error_code: str = "GATEWAY_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ConfigurationError(GatewayException):
    """Gateway settings are missing or inconsistent."""

    error_code = "CONFIGURATION_ERROR"
    http_status = 500


# =============================================================================
# Authorization denials (terminal, never retried)
# =============================================================================

class NotRegisteredError(GatewayException):
    """Merchant id does not resolve to an active on-chain wallet."""

    error_code = "NotRegistered"
    http_status = 404

    def __init__(self, merchant_id: str, reason: str = "unregistered") -> None:
        super().__init__(
            f"Merchant '{merchant_id}' is not registered on-chain ({reason})",
            details={"merchant_id": merchant_id, "reason": reason},
        )
        self.merchant_id = merchant_id


class PolicyFrozenError(GatewayException):
    """Agent policy is frozen on-chain."""

    error_code = "PolicyFrozen"
    http_status = 403


class LimitExceededError(GatewayException):
    """Requested amount exceeds the per-transaction or daily limit."""

    error_code = "LimitExceeded"
    http_status = 402

    def __init__(
        self,
        message: str,
        scope: str,
        limit: int,
        requested: int,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["scope"] = scope
        # Decimal strings: limits are uint256 and may not fit a JSON number.
        details["limit"] = str(limit)
        details["requested"] = str(requested)
        super().__init__(message, details=details)


class SsrfBlockedError(GatewayException):
    """Proxy target resolves to an internal or otherwise untrusted address."""

    error_code = "SsrfBlocked"
    http_status = 403


# =============================================================================
# Infrastructure errors
# =============================================================================

class UpstreamChainError(GatewayException):
    """Chain read or write failed after the retry budget was exhausted."""

    error_code = "UpstreamChainError"
    http_status = 502

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        attempts: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        if attempts is not None:
            details["attempts"] = attempts
        super().__init__(message, details=details)
        self.operation = operation
        self.attempts = attempts


class PolicyWriteForbiddenError(GatewayException):
    """A state-changing policy transaction was attempted outside the admin path."""

    error_code = "POLICY_WRITE_FORBIDDEN"
    http_status = 403


# =============================================================================
# Yield accounting errors
# =============================================================================

class InvalidSnapshotOrderError(GatewayException):
    """'to' snapshot is not strictly later than 'from' (or the stored tail)."""

    error_code = "InvalidSnapshotOrder"
    http_status = 400

    def __init__(self, from_timestamp: int, to_timestamp: int) -> None:
        super().__init__(
            "Invalid snapshot order: 'to' must be later than 'from' "
            f"({to_timestamp} <= {from_timestamp})",
            details={"from_timestamp": from_timestamp, "to_timestamp": to_timestamp},
        )


class SerializationError(GatewayException):
    """Persisted snapshot history or spend state is malformed."""

    error_code = "SerializationError"
    http_status = 500


__all__ = [
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
