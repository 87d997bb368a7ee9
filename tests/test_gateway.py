"""Tests for gateway wiring and structured logging setup."""
from __future__ import annotations

import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from x402_gateway.chain.connection import ChainConnection
from x402_gateway.config import GatewaySettings
from x402_gateway.gateway import build_gateway
from x402_gateway.logging_config import RequestContextFilter, StructuredFormatter, log_context
from x402_gateway.policy_gate import LocalPolicyHashVerifier
from x402_gateway.spend_store import InMemorySpendStore, JsonFileSpendStore, RedisSpendStore


@pytest.fixture
def connection():
    w3 = MagicMock()
    w3.provider.disconnect = AsyncMock()
    return ChainConnection(w3=w3, chain_id=338)


def settings(tmp_path, **kwargs) -> GatewaySettings:
    params = {
        "spend_store": "memory",
        "snapshot_history_path": str(tmp_path / "history.json"),
        "spend_state_path": str(tmp_path / "spend.json"),
    }
    params.update(kwargs)
    return GatewaySettings(_env_file=None, **params)


class TestBuildGateway:
    @pytest.mark.asyncio
    async def test_components_share_settings(self, tmp_path, connection):
        gw = build_gateway(
            settings(tmp_path, environment="prod", authorization_timeout_seconds=3, retry_max_attempts=5),
            connection=connection,
        )

        assert isinstance(gw.spend_store, InMemorySpendStore)
        assert gw.authorizer.timeout == 3
        assert gw.upstream_guard.require_https is True
        assert gw.chain.policy.max_attempts == 5
        assert gw.accountant.limit == 100

        await gw.close()
        connection.w3.provider.disconnect.assert_awaited_once()

    @pytest.mark.parametrize(
        "store,kwargs,expected",
        [
            ("file", {}, JsonFileSpendStore),
            ("redis", {"redis_url": "redis://localhost:6379/0"}, RedisSpendStore),
        ],
    )
    def test_spend_store_selection(self, tmp_path, connection, store, kwargs, expected):
        gw = build_gateway(settings(tmp_path, spend_store=store, **kwargs), connection=connection)
        assert isinstance(gw.spend_store, expected)

    def test_hash_verification_opt_in(self, tmp_path, connection):
        plain = build_gateway(settings(tmp_path), connection=connection)
        verified = build_gateway(settings(tmp_path, verify_policy_hash=True), connection=connection)

        assert plain.policy_gate._hash_verifier is None
        assert isinstance(verified.policy_gate._hash_verifier, LocalPolicyHashVerifier)

    def test_signer_configured_from_key(self, tmp_path, connection):
        key = "0x" + "4f" * 32
        gw = build_gateway(settings(tmp_path, signer_private_key=key), connection=connection)
        assert gw.administrator._signing is not None
        assert gw.administrator._signing.address.startswith("0x")

    def test_yield_monitor_uses_watched_addresses(self, tmp_path, connection):
        addr = "0x" + "01" * 20
        gw = build_gateway(
            settings(tmp_path, watched_addresses=addr, snapshot_interval_seconds=60),
            connection=connection,
        )
        monitor = gw.yield_monitor()
        assert [a.lower() for a in monitor.addresses] == [addr]
        assert monitor.interval_seconds == 60


class TestStructuredLogging:
    def _format(self, record: logging.LogRecord) -> dict:
        RequestContextFilter().filter(record)
        return json.loads(StructuredFormatter().format(record))

    def test_context_fields_and_masking(self):
        record = logging.LogRecord("x402_gateway.test", logging.INFO, __file__, 1, "hello", None, None)
        record.signer_private_key = "0xsecret"
        record.attempt = 2

        with log_context(request_id="req_abc", merchant_id="weather-api") as rid:
            data = self._format(record)

        assert rid == "req_abc"
        assert data["request_id"] == "req_abc"
        assert data["merchant_id"] == "weather-api"
        assert data["signer_private_key"] == "***REDACTED***"
        assert data["attempt"] == 2

    def test_context_is_reset(self):
        with log_context(merchant_id="m"):
            pass
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        assert "merchant_id" not in self._format(record)
