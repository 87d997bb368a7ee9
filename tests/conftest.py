"""
Pytest configuration for x402-gateway tests.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(package_src))

# Set test environment
os.environ.setdefault("X402_ENVIRONMENT", "dev")
os.environ.setdefault("X402_SPEND_STORE", "memory")
os.environ.setdefault("X402_LOG_JSON", "false")

from x402_gateway.config import load_settings  # noqa: E402


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Each test sees settings built from its own environment."""
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


@pytest.fixture
def agent_address():
    """Valid agent address for testing."""
    return "0x1234567890123456789012345678901234567890"


@pytest.fixture
def vault_address():
    """Valid vault (tUSDC) address for testing."""
    return "0x" + "ab" * 20


@pytest.fixture
def merchant_id():
    return "weather-api"
