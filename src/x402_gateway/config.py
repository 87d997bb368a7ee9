"""Canonical configuration surface for the x402 gateway."""
from __future__ import annotations

import warnings
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings
from web3 import Web3

from .constants import RetryDefaults, SnapshotDefaults, Timeouts


class GatewaySettings(BaseSettings):
    """Main gateway configuration."""

    # Environment
    environment: Literal["dev", "sandbox", "prod"] = "dev"

    # Chain access
    rpc_url: str = "https://evm-t3.cronos.org"
    chain_id: int = 338
    merchant_registry_address: str = ""
    policy_registry_address: str = ""
    stable_asset_address: str = ""
    vault_address: str = ""

    # Privileged policy writes (setup / recovery tooling only)
    signer_private_key: str = Field(default="", repr=False)
    allow_policy_writes: bool = False

    # Upstream guard; None means "enforce HTTPS only in prod"
    require_https: Optional[bool] = None
    dns_timeout_seconds: float = Timeouts.DNS_LOOKUP

    # Retry policy for every chain call
    retry_max_attempts: int = Field(default=RetryDefaults.MAX_ATTEMPTS, ge=1)
    retry_base_delay_ms: int = Field(default=RetryDefaults.BASE_DELAY_MS, ge=0)
    retry_jitter_ms: int = Field(default=RetryDefaults.JITTER_MS, ge=0)

    # Caller patience for a single authorization
    authorization_timeout_seconds: float = Field(default=Timeouts.AUTHORIZATION, gt=0)

    # Spend accumulator persistence
    spend_store: Literal["memory", "file", "redis"] = "file"
    spend_state_path: str = "./data/spend_state.json"
    redis_url: str = Field(default="", repr=False)

    # Yield accounting
    snapshot_history_path: str = "./data/yield_snapshots.json"
    snapshot_history_limit: int = Field(default=SnapshotDefaults.HISTORY_LIMIT, ge=1)
    snapshot_interval_seconds: int = Field(default=SnapshotDefaults.INTERVAL_SECONDS, ge=1)
    # Comma-separated list of wallets the yield monitor snapshots
    watched_addresses: str = ""

    # Optional on-chain policy hash verification
    verify_policy_hash: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        env_prefix = "X402_"
        env_file = ".env"
        extra = "ignore"

    @field_validator(
        "merchant_registry_address",
        "policy_registry_address",
        "stable_asset_address",
        "vault_address",
    )
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Checksum contract addresses; empty means "not configured"."""
        v = v.strip()
        if not v:
            return v
        if not Web3.is_address(v):
            raise ValueError(f"not a valid EVM address: {v!r}")
        return Web3.to_checksum_address(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v!r}")
        return level

    @model_validator(mode="after")
    def check_production_profile(self) -> "GatewaySettings":
        if self.environment == "prod" and self.require_https is False:
            warnings.warn(
                "X402_REQUIRE_HTTPS=false in prod lets the gateway forward "
                "agent traffic over plaintext HTTP.",
                RuntimeWarning,
            )
        if self.spend_store == "redis" and not self.redis_url:
            raise ValueError("X402_REDIS_URL is required when X402_SPEND_STORE=redis")
        return self

    @property
    def enforce_https(self) -> bool:
        if self.require_https is None:
            return self.environment == "prod"
        return self.require_https

    @property
    def watched_address_list(self) -> List[str]:
        addresses = [a.strip() for a in self.watched_addresses.split(",") if a.strip()]
        for address in addresses:
            if not Web3.is_address(address):
                raise ValueError(f"watched address is not a valid EVM address: {address!r}")
        return [Web3.to_checksum_address(a) for a in addresses]


@lru_cache
def load_settings(env_file: str | None = None) -> GatewaySettings:
    """Load GatewaySettings once per process to keep components consistent."""
    env_path = Path(env_file) if env_file else None
    return GatewaySettings(_env_file=env_path)
