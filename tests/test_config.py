"""Tests for GatewaySettings."""
from __future__ import annotations

import pytest
from pydantic import ValidationError
from web3 import Web3

from x402_gateway.config import GatewaySettings, load_settings


def settings(**kwargs) -> GatewaySettings:
    return GatewaySettings(_env_file=None, **kwargs)


class TestGatewaySettings:
    def test_defaults(self):
        s = settings()
        assert s.retry_max_attempts == 3
        assert s.retry_base_delay_ms == 1000
        assert s.retry_jitter_ms == 200
        assert s.snapshot_history_limit == 100
        assert s.snapshot_interval_seconds == 300

    def test_https_enforced_in_prod_by_default(self):
        assert settings(environment="prod").enforce_https is True
        assert settings(environment="dev").enforce_https is False
        assert settings(environment="dev", require_https=True).enforce_https is True

    def test_prod_without_https_warns(self):
        with pytest.warns(RuntimeWarning):
            s = settings(environment="prod", require_https=False)
        assert s.enforce_https is False

    def test_addresses_are_checksummed(self):
        s = settings(policy_registry_address="0x" + "ab" * 20)
        assert s.policy_registry_address == Web3.to_checksum_address("0x" + "ab" * 20)

    def test_invalid_address_rejected(self):
        with pytest.raises(ValidationError):
            settings(merchant_registry_address="0x1234")

    def test_redis_store_requires_url(self):
        with pytest.raises(ValidationError):
            settings(spend_store="redis")
        assert settings(spend_store="redis", redis_url="redis://localhost:6379/0").redis_url

    def test_watched_addresses_parsed(self):
        s = settings(watched_addresses=" 0x" + "01" * 20 + ", ,0x" + "02" * 20)
        assert len(s.watched_address_list) == 2

    def test_bad_watched_address(self):
        with pytest.raises(ValueError):
            settings(watched_addresses="0xdeadbeef").watched_address_list

    def test_log_level_normalized(self):
        assert settings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            settings(log_level="chatty")

    def test_signer_key_hidden_from_repr(self):
        secret = "0x" + "4f" * 32
        assert secret not in repr(settings(signer_private_key=secret))

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("X402_CHAIN_ID", "25")
        monkeypatch.setenv("X402_AUTHORIZATION_TIMEOUT_SECONDS", "2.5")
        s = load_settings()
        assert s.chain_id == 25
        assert s.authorization_timeout_seconds == 2.5
