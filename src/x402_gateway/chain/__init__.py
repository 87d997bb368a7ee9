"""Chain adapters: connection contexts, registry reads/writes and balance reads."""

from .balances import (
    ConnectionBalanceReader,
    get_exchange_rate,
    get_native_balance,
    get_token_balance,
    get_vault_shares,
)
from .connection import ChainConnection, SigningContext, create_connection
from .registry import (
    chain_writes_blocked,
    get_merchant,
    get_policy,
    read_only_chain_access,
    set_policy,
)

__all__ = [
    "ChainConnection",
    "SigningContext",
    "create_connection",
    "ConnectionBalanceReader",
    "get_native_balance",
    "get_token_balance",
    "get_vault_shares",
    "get_exchange_rate",
    "get_merchant",
    "get_policy",
    "set_policy",
    "read_only_chain_access",
    "chain_writes_blocked",
]
