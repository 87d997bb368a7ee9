"""Merchant and agent-policy registry adapters.

Stateless functions: every call takes the connection (reads) or signing
context (writes) it should use and builds its contract object on the spot.

Chain writes are refused inside a ``read_only_chain_access()`` scope. The
authorization path runs entirely inside one, so request handling can never
trigger a state-changing transaction.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

from ..constants import Timeouts
from ..exceptions import PolicyWriteForbiddenError
from ..models import MerchantRecord, OnChainPolicy
from .abi import AGENT_POLICY_REGISTRY_ABI, MERCHANT_REGISTRY_ABI
from .connection import ChainConnection, SigningContext, checksum

logger = logging.getLogger(__name__)

_read_only_depth: ContextVar[int] = ContextVar("read_only_chain_access", default=0)


@contextmanager
def read_only_chain_access() -> Iterator[None]:
    """Refuse chain writes issued from the current task context."""
    token = _read_only_depth.set(_read_only_depth.get() + 1)
    try:
        yield
    finally:
        _read_only_depth.reset(token)


def chain_writes_blocked() -> bool:
    return _read_only_depth.get() > 0


def _hex32(value: Any) -> str:
    raw = bytes(value)
    return "0x" + raw.hex()


async def get_merchant(connection: ChainConnection, merchant_id: str) -> MerchantRecord:
    """Read ``getMerchant(merchantId)`` from the merchant registry."""
    contract = connection.w3.eth.contract(
        address=checksum(connection.require("merchant_registry")),
        abi=MERCHANT_REGISTRY_ABI,
    )
    wallet, is_active, metadata_uri = await contract.functions.getMerchant(merchant_id).call()
    return MerchantRecord(
        merchant_id=merchant_id,
        wallet=str(wallet),
        is_active=bool(is_active),
        metadata_uri=str(metadata_uri),
    )


async def get_policy(connection: ChainConnection, agent_address: str) -> OnChainPolicy:
    """Read ``getPolicy(agentAddress)`` from the agent policy registry."""
    contract = connection.w3.eth.contract(
        address=checksum(connection.require("policy_registry")),
        abi=AGENT_POLICY_REGISTRY_ABI,
    )
    daily, per_tx, policy_hash, frozen, updated = await contract.functions.getPolicy(
        checksum(agent_address)
    ).call()
    return OnChainPolicy(
        daily_spend_limit=int(daily),
        max_per_transaction=int(per_tx),
        policy_hash=_hex32(policy_hash),
        is_frozen=bool(frozen),
        last_updated=int(updated),
    )


def policy_hash_bytes(policy_hash: str) -> bytes:
    raw = bytes.fromhex(policy_hash.removeprefix("0x"))
    if len(raw) != 32:
        raise ValueError(f"policy hash must be 32 bytes, got {len(raw)}")
    return raw


async def set_policy(
    signing: SigningContext,
    daily_spend_limit: int,
    max_per_transaction: int,
    policy_hash: str,
) -> dict[str, Any]:
    """Submit ``setPolicy`` for the signer's own address and wait for the receipt.

    Gas-consuming. Intended for setup and recovery tooling only.

    Raises:
        PolicyWriteForbiddenError: called from inside the authorization path.
    """
    if chain_writes_blocked():
        raise PolicyWriteForbiddenError(
            "setPolicy refused: chain writes are not permitted during request authorization"
        )

    connection = signing.connection
    w3 = connection.w3
    contract = w3.eth.contract(
        address=checksum(connection.require("policy_registry")),
        abi=AGENT_POLICY_REGISTRY_ABI,
    )

    nonce = await w3.eth.get_transaction_count(signing.address, "pending")
    tx = await contract.functions.setPolicy(
        daily_spend_limit,
        max_per_transaction,
        policy_hash_bytes(policy_hash),
    ).build_transaction({
        "from": signing.address,
        "nonce": nonce,
        "chainId": connection.chain_id,
    })
    signed = signing.account.sign_transaction(tx)
    tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
    logger.info(f"setPolicy submitted by {signing.address}: {_hex32(tx_hash)}")

    receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=Timeouts.TX_RECEIPT)
    logger.info(
        f"setPolicy confirmed in block {receipt['blockNumber']} (status={receipt['status']})"
    )
    return dict(receipt)
