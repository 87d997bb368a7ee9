"""Tests for the operator CLI."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from x402_gateway.cli import cli
from x402_gateway.exceptions import NotRegisteredError, PolicyWriteForbiddenError
from x402_gateway.models import MerchantRecord, WalletSnapshot, YieldDelta

AGENT = "0x" + "01" * 20
VAULT = "0x" + "ab" * 20


@pytest.fixture
def gateway():
    gw = MagicMock()
    gw.close = AsyncMock()
    return gw


@pytest.fixture
def run_cli(gateway):
    def invoke(*args, input=None):
        with patch("x402_gateway.cli.build_gateway", return_value=gateway), patch(
            "x402_gateway.cli.setup_logging"
        ):
            return CliRunner().invoke(cli, list(args), input=input)

    return invoke


def snap(ts: int, underlying: int) -> WalletSnapshot:
    return WalletSnapshot(AGENT, VAULT, shares=100, underlying_value=underlying, timestamp=ts)


class TestCli:
    def test_verify_merchant(self, gateway, run_cli):
        gateway.identity.verify = AsyncMock(
            return_value=MerchantRecord("weather-api", "0x" + "11" * 20, True, "ipfs://meta")
        )

        result = run_cli("verify-merchant", "weather-api")

        assert result.exit_code == 0
        assert "is registered" in result.output
        gateway.close.assert_awaited_once()

    def test_verify_unknown_merchant_exits_nonzero(self, gateway, run_cli):
        gateway.identity.verify = AsyncMock(side_effect=NotRegisteredError("ghost"))

        result = run_cli("verify-merchant", "ghost")

        assert result.exit_code == 1
        assert "NotRegistered" in result.output
        gateway.close.assert_awaited_once()

    def test_set_policy_requires_confirmation(self, gateway, run_cli):
        gateway.administrator.set_policy = AsyncMock()

        result = run_cli("set-policy", "--daily-limit", "1000", "--max-per-tx", "100", input="n\n")

        assert result.exit_code != 0
        gateway.administrator.set_policy.assert_not_called()

    def test_set_policy(self, gateway, run_cli):
        gateway.administrator.set_policy = AsyncMock(
            return_value={"status": 1, "blockNumber": 42, "transactionHash": b"\xab" * 32}
        )

        result = run_cli("set-policy", "--daily-limit", "1000", "--max-per-tx", "100", "--yes")

        assert result.exit_code == 0
        assert "block 42" in result.output
        gateway.administrator.set_policy.assert_awaited_once_with(1000, 100, None)

    def test_set_policy_forbidden(self, gateway, run_cli):
        gateway.administrator.set_policy = AsyncMock(
            side_effect=PolicyWriteForbiddenError("policy writes are disabled")
        )

        result = run_cli("set-policy", "--daily-limit", "1", "--max-per-tx", "1", "--yes")

        assert result.exit_code == 1
        assert "disabled" in result.output

    def test_yield_report(self, gateway, run_cli):
        first, second = snap(100, 1000), snap(400, 1030)
        delta = YieldDelta(first, second, 30, 0, 300)
        gateway.accountant.history = AsyncMock(return_value=[first, second])
        gateway.accountant.latest_delta = AsyncMock(return_value=delta)
        gateway.accountant.total_delta = AsyncMock(return_value=delta)

        result = run_cli("yield-report", AGENT, "--vault", VAULT)

        assert result.exit_code == 0
        assert "30" in result.output
        assert "2 snapshot(s) kept" in result.output

    def test_yield_report_needs_two_snapshots(self, gateway, run_cli):
        gateway.accountant.history = AsyncMock(return_value=[snap(100, 1000)])
        gateway.accountant.latest_delta = AsyncMock(return_value=None)
        gateway.accountant.total_delta = AsyncMock(return_value=None)

        result = run_cli("yield-report", AGENT, "--vault", VAULT)

        assert result.exit_code == 0
        assert "need at least 2" in result.output

    def test_snapshot_records_history(self, gateway, run_cli):
        gateway.watcher.snapshot = AsyncMock(return_value=snap(1_700_000_000, 10**17))
        gateway.accountant.record = AsyncMock()

        result = run_cli("snapshot", AGENT)

        assert result.exit_code == 0
        gateway.accountant.record.assert_awaited_once()
        assert str(10**17) in result.output
