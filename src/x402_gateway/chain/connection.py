"""Explicit connection and signing contexts passed to every chain call.

Adapters never hold contract handles. Each call receives the connection it
should use, so concurrent requests share no hidden mutable client state.
"""
from __future__ import annotations

from dataclasses import dataclass

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import InvalidAddress

from ..config import GatewaySettings
from ..exceptions import ConfigurationError
from ..logging_config import mask_value


@dataclass(frozen=True)
class ChainConnection:
    """Read-only access to one chain plus the registry addresses on it."""

    w3: AsyncWeb3
    chain_id: int
    merchant_registry: str = ""
    policy_registry: str = ""

    def require(self, name: str) -> str:
        address = getattr(self, name)
        if not address:
            raise ConfigurationError(f"{name} address is not configured")
        return address


@dataclass(frozen=True)
class SigningContext:
    """A connection paired with the local account that signs policy writes."""

    connection: ChainConnection
    account: LocalAccount

    @property
    def address(self) -> str:
        return self.account.address

    def __repr__(self) -> str:
        return f"SigningContext(address={mask_value(self.account.address, 6)}, chain_id={self.connection.chain_id})"

    @classmethod
    def from_private_key(cls, connection: ChainConnection, private_key: str) -> "SigningContext":
        if not private_key:
            raise ConfigurationError("signer private key is not configured")
        return cls(connection=connection, account=Account.from_key(private_key))


def create_connection(settings: GatewaySettings) -> ChainConnection:
    """Build a ChainConnection from settings."""
    w3 = AsyncWeb3(AsyncHTTPProvider(settings.rpc_url))
    return ChainConnection(
        w3=w3,
        chain_id=settings.chain_id,
        merchant_registry=settings.merchant_registry_address,
        policy_registry=settings.policy_registry_address,
    )


def checksum(address: str) -> str:
    if not Web3.is_address(address):
        raise InvalidAddress(f"not a valid EVM address: {address!r}")
    return Web3.to_checksum_address(address)
