"""Minimal ABIs for the contracts the gateway reads and writes."""
from __future__ import annotations

MERCHANT_REGISTRY_ABI = [
    {
        "type": "function",
        "name": "getMerchant",
        "stateMutability": "view",
        "inputs": [{"name": "merchantId", "type": "string"}],
        "outputs": [
            {"name": "wallet", "type": "address"},
            {"name": "isActive", "type": "bool"},
            {"name": "metadataURI", "type": "string"},
        ],
    },
]

AGENT_POLICY_REGISTRY_ABI = [
    {
        "type": "function",
        "name": "getPolicy",
        "stateMutability": "view",
        "inputs": [{"name": "agentAddress", "type": "address"}],
        "outputs": [
            {"name": "dailySpendLimit", "type": "uint256"},
            {"name": "maxPerTransaction", "type": "uint256"},
            {"name": "policyHash", "type": "bytes32"},
            {"name": "isFrozen", "type": "bool"},
            {"name": "lastUpdated", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "setPolicy",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "dailySpendLimit", "type": "uint256"},
            {"name": "maxPerTransaction", "type": "uint256"},
            {"name": "policyHash", "type": "bytes32"},
        ],
        "outputs": [],
    },
    {
        "type": "event",
        "name": "PolicySet",
        "anonymous": False,
        "inputs": [
            {"name": "agent", "type": "address", "indexed": True},
            {"name": "dailySpendLimit", "type": "uint256", "indexed": False},
            {"name": "maxPerTransaction", "type": "uint256", "indexed": False},
            {"name": "policyHash", "type": "bytes32", "indexed": False},
            {"name": "timestamp", "type": "uint256", "indexed": False},
        ],
    },
]

ERC20_BALANCE_ABI = [
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

# Compound-style interest-bearing token (Tectonic tUSDC)
VAULT_TOKEN_ABI = ERC20_BALANCE_ABI + [
    {
        "type": "function",
        "name": "exchangeRateStored",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]
