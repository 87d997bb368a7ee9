"""Tests for the stateless chain adapters against a mocked web3 client."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import InvalidAddress

from x402_gateway.chain import balances, registry
from x402_gateway.chain.connection import ChainConnection, SigningContext, checksum
from x402_gateway.exceptions import ConfigurationError, PolicyWriteForbiddenError

MERCHANT_REGISTRY = "0x" + "aa" * 20
POLICY_REGISTRY = "0x" + "bb" * 20
AGENT = "0x" + "22" * 20
SIGNER = "0x" + "33" * 20


def contract_returning(function_name: str, value):
    """Contract mock whose ``functions.<name>(...).call()`` returns ``value``."""
    contract = MagicMock()
    bound = MagicMock()
    bound.call = AsyncMock(return_value=value)
    getattr(contract.functions, function_name).return_value = bound
    return contract


def make_connection(contract=None, **overrides) -> ChainConnection:
    w3 = MagicMock()
    if contract is not None:
        w3.eth.contract.return_value = contract
    params = {
        "w3": w3,
        "chain_id": 338,
        "merchant_registry": MERCHANT_REGISTRY,
        "policy_registry": POLICY_REGISTRY,
    }
    params.update(overrides)
    return ChainConnection(**params)


class TestRegistryReads:
    @pytest.mark.asyncio
    async def test_get_merchant(self):
        contract = contract_returning("getMerchant", (SIGNER, True, "ipfs://merchant"))
        conn = make_connection(contract)

        record = await registry.get_merchant(conn, "weather-api")

        assert record.wallet == SIGNER
        assert record.is_active is True
        assert record.metadata_uri == "ipfs://merchant"
        contract.functions.getMerchant.assert_called_once_with("weather-api")
        assert conn.w3.eth.contract.call_args.kwargs["address"] == checksum(MERCHANT_REGISTRY)

    @pytest.mark.asyncio
    async def test_get_policy_keeps_uint256_exact(self):
        huge = 2**255 + 11
        contract = contract_returning("getPolicy", (huge, 100, b"\x01" * 32, False, 1_700_000_000))
        conn = make_connection(contract)

        policy = await registry.get_policy(conn, AGENT)

        assert policy.daily_spend_limit == huge
        assert policy.max_per_transaction == 100
        assert policy.policy_hash == "0x" + "01" * 32
        assert policy.is_frozen is False
        assert policy.last_updated == 1_700_000_000
        contract.functions.getPolicy.assert_called_once_with(checksum(AGENT))

    @pytest.mark.asyncio
    async def test_missing_registry_address(self):
        conn = make_connection(policy_registry="")
        with pytest.raises(ConfigurationError):
            await registry.get_policy(conn, AGENT)

    @pytest.mark.asyncio
    async def test_invalid_agent_address(self):
        conn = make_connection(contract_returning("getPolicy", None))
        with pytest.raises(InvalidAddress):
            await registry.get_policy(conn, "0xnot-an-address")


class TestBalanceReads:
    @pytest.mark.asyncio
    async def test_native_and_token_balances(self):
        conn = make_connection(contract_returning("balanceOf", 2**90))
        conn.w3.eth.get_balance = AsyncMock(return_value=5 * 10**18)

        assert await balances.get_native_balance(conn, AGENT) == 5 * 10**18
        assert await balances.get_token_balance(conn, MERCHANT_REGISTRY, AGENT) == 2**90

    @pytest.mark.asyncio
    async def test_exchange_rate(self):
        conn = make_connection(contract_returning("exchangeRateStored", 2 * 10**26))
        reader = balances.ConnectionBalanceReader(conn)

        assert await reader.exchange_rate(MERCHANT_REGISTRY) == 2 * 10**26


class TestSetPolicy:
    def _signing(self, conn: ChainConnection) -> SigningContext:
        account = MagicMock()
        account.address = SIGNER
        signed = MagicMock()
        signed.raw_transaction = b"\x02signed"
        account.sign_transaction.return_value = signed
        return SigningContext(connection=conn, account=account)

    @pytest.mark.asyncio
    async def test_submits_signed_transaction(self):
        contract = MagicMock()
        built = {"to": POLICY_REGISTRY, "data": "0x"}
        contract.functions.setPolicy.return_value.build_transaction = AsyncMock(return_value=built)
        conn = make_connection(contract)
        conn.w3.eth.get_transaction_count = AsyncMock(return_value=7)
        conn.w3.eth.send_raw_transaction = AsyncMock(return_value=b"\xcd" * 32)
        conn.w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 1, "blockNumber": 99})
        signing = self._signing(conn)
        policy_hash = "0x" + "5a" * 32

        receipt = await registry.set_policy(signing, 1000, 100, policy_hash)

        assert receipt == {"status": 1, "blockNumber": 99}
        contract.functions.setPolicy.assert_called_once_with(1000, 100, bytes.fromhex("5a" * 32))
        tx_params = contract.functions.setPolicy.return_value.build_transaction.await_args.args[0]
        assert tx_params == {"from": SIGNER, "nonce": 7, "chainId": 338}
        signing.account.sign_transaction.assert_called_once_with(built)
        conn.w3.eth.send_raw_transaction.assert_awaited_once_with(b"\x02signed")

    @pytest.mark.asyncio
    async def test_blocked_during_authorization(self):
        conn = make_connection(MagicMock())
        conn.w3.eth.send_raw_transaction = AsyncMock()
        signing = self._signing(conn)

        with registry.read_only_chain_access():
            assert registry.chain_writes_blocked()
            with pytest.raises(PolicyWriteForbiddenError):
                await registry.set_policy(signing, 1000, 100, "0x" + "00" * 32)

        assert not registry.chain_writes_blocked()
        conn.w3.eth.send_raw_transaction.assert_not_called()

    def test_policy_hash_must_be_32_bytes(self):
        with pytest.raises(ValueError):
            registry.policy_hash_bytes("0x1234")

    def test_signing_context_repr_masks_account(self):
        signing = self._signing(make_connection())
        assert SIGNER not in repr(signing)
