"""Tests for decision records and their exception mapping."""
from __future__ import annotations

from x402_gateway.constants import ReasonCode
from x402_gateway.exceptions import (
    LimitExceededError,
    NotRegisteredError,
    PolicyFrozenError,
    SsrfBlockedError,
    UpstreamChainError,
)
from x402_gateway.models import AuthorizationDecision, MerchantRecord

AGENT = "0x1234567890123456789012345678901234567890"


def deny(reason: ReasonCode, **detail) -> AuthorizationDecision:
    return AuthorizationDecision.deny("weather-api", AGENT, 150, reason, **detail)


class TestAuthorizationDecision:
    def test_allow_has_no_exception(self):
        decision = AuthorizationDecision.allow("weather-api", AGENT, 10)
        assert decision.allowed
        assert decision.to_exception() is None

    def test_to_dict_serializes_amounts_as_strings(self):
        decision = AuthorizationDecision.allow("weather-api", AGENT, 2**80)
        data = decision.to_dict()

        assert data["amount"] == str(2**80)
        assert data["outcome"] == "ALLOW"
        assert data["reason_code"] == "OK"

    def test_exception_mapping(self):
        assert isinstance(deny(ReasonCode.NOT_REGISTERED).to_exception(), NotRegisteredError)
        assert isinstance(deny(ReasonCode.POLICY_FROZEN).to_exception(), PolicyFrozenError)
        assert isinstance(deny(ReasonCode.SSRF_BLOCKED).to_exception(), SsrfBlockedError)
        assert isinstance(deny(ReasonCode.UPSTREAM_CHAIN_ERROR).to_exception(), UpstreamChainError)
        assert isinstance(deny(ReasonCode.TIMEOUT).to_exception(), UpstreamChainError)

    def test_limit_exceeded_details(self):
        err = deny(ReasonCode.LIMIT_EXCEEDED, scope="per_transaction", limit="100").to_exception()

        assert isinstance(err, LimitExceededError)
        assert err.http_status == 402
        assert err.to_dict()["details"] == {
            "scope": "per_transaction",
            "limit": "100",
            "requested": "150",
        }

    def test_hash_mismatch_keeps_its_code(self):
        err = deny(ReasonCode.POLICY_HASH_MISMATCH).to_exception()
        assert err.error_code == "PolicyHashMismatch"


class TestMerchantRecord:
    def test_zero_wallet_is_unregistered(self):
        assert not MerchantRecord("m", "0x" + "0" * 40, True).is_registered
        assert MerchantRecord("m", AGENT, False).is_registered
