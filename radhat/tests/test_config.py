"""Tests for radhat.core.config: settings loading and validation."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError as PydanticValidationError
from web3 import Web3

from radhat.core.config import Settings, get_settings
from radhat.core.types import ChainBackend


class TestSettings:
    """Verify settings defaults and environment overrides."""

    def test_default_app_env(self):
        s = Settings(_env_file=None)
        assert s.app_env == "development"

    def test_default_port(self):
        assert Settings(_env_file=None).port == 3001

    def test_default_database_url(self):
        s = Settings(_env_file=None)
        assert s.database_url.startswith("sqlite+aiosqlite")

    def test_default_backend_is_simulated(self):
        s = Settings(_env_file=None)
        assert s.chain_backend is ChainBackend.SIMULATED

    def test_routing_defaults(self):
        s = Settings(_env_file=None)
        assert s.balance_query_concurrency == 8
        assert s.balance_query_retries == 2
        assert "routed to treasury" in s.deposit_note

    def test_env_override(self):
        env = {
            "RADHAT_CHAIN_BACKEND": "web3",
            "RADHAT_RPC_URL": "https://rpc.example.org",
            "RADHAT_PORT": "9000",
        }
        with patch.dict(os.environ, env):
            s = Settings(_env_file=None)
        assert s.chain_backend is ChainBackend.WEB3
        assert s.rpc_url == "https://rpc.example.org"
        assert s.port == 9000

    def test_invalid_backend(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, chain_backend="ganache")

    def test_port_range(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, port=70000)


class TestAddressFields:
    def test_checksummed(self):
        s = Settings(_env_file=None, treasury_address="0x" + "ab" * 20)
        assert s.treasury_address == Web3.to_checksum_address("0x" + "ab" * 20)

    def test_empty_allowed(self):
        assert Settings(_env_file=None, factory_address="").factory_address == ""

    def test_malformed_rejected(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, router_address="0x1234")

    def test_init_code_hash_normalised(self):
        s = Settings(_env_file=None, init_code_hash="AB" * 32)
        assert s.init_code_hash == "0x" + "ab" * 32

    def test_init_code_hash_length(self):
        with pytest.raises(PydanticValidationError):
            Settings(_env_file=None, init_code_hash="0x1234")


class TestGetSettings:
    def test_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()
