"""Balance reads used by the wallet watcher."""
from __future__ import annotations

from dataclasses import dataclass

from .abi import ERC20_BALANCE_ABI, VAULT_TOKEN_ABI
from .connection import ChainConnection, checksum


async def get_native_balance(connection: ChainConnection, address: str) -> int:
    return int(await connection.w3.eth.get_balance(checksum(address)))


async def get_token_balance(connection: ChainConnection, token: str, address: str) -> int:
    contract = connection.w3.eth.contract(address=checksum(token), abi=ERC20_BALANCE_ABI)
    return int(await contract.functions.balanceOf(checksum(address)).call())


async def get_vault_shares(connection: ChainConnection, vault: str, address: str) -> int:
    contract = connection.w3.eth.contract(address=checksum(vault), abi=VAULT_TOKEN_ABI)
    return int(await contract.functions.balanceOf(checksum(address)).call())


async def get_exchange_rate(connection: ChainConnection, vault: str) -> int:
    """Stored shares-to-underlying rate, scaled by EXCHANGE_RATE_SCALE."""
    contract = connection.w3.eth.contract(address=checksum(vault), abi=VAULT_TOKEN_ABI)
    return int(await contract.functions.exchangeRateStored().call())


@dataclass(frozen=True)
class ConnectionBalanceReader:
    """Binds the balance functions to one connection for WalletWatcher."""

    connection: ChainConnection

    async def native_balance(self, address: str) -> int:
        return await get_native_balance(self.connection, address)

    async def token_balance(self, token: str, address: str) -> int:
        return await get_token_balance(self.connection, token, address)

    async def vault_shares(self, vault: str, address: str) -> int:
        return await get_vault_shares(self.connection, vault, address)

    async def exchange_rate(self, vault: str) -> int:
        return await get_exchange_rate(self.connection, vault)
