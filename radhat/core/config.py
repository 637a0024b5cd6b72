"""Core configuration for the RADHAT service."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from radhat.core.derivation import format_address, parse_bytes32
from radhat.core.types import ChainBackend


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="RADHAT_",
        case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "RADHAT Router"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = Field(default=3001, ge=1, le=65535)
    cors_allowed_origins: str = "http://localhost:5173,http://localhost:3000"
    deposit_note: str = "Send ETH to this address. Funds will be routed to treasury."

    # ── Database ─────────────────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./radhat.db"
    database_echo: bool = False

    # ── Chain ────────────────────────────────────────────────────────────
    chain_backend: ChainBackend = ChainBackend.SIMULATED
    rpc_url: str = "http://127.0.0.1:8545"
    chain_id: int = 11155111
    factory_address: str = ""  # DeterministicProxyDeployer
    router_address: str = ""  # FundRouter
    registry_address: str = ""  # FundRouterStorage
    treasury_address: str = ""
    init_code_hash: str = ""
    operator_private_key: str = ""  # REQUIRED for the web3 backend

    # ── Routing cycle ────────────────────────────────────────────────────
    balance_query_concurrency: int = Field(default=8, ge=1)
    balance_query_retries: int = Field(default=2, ge=0)
    balance_query_retry_delay: float = 0.5
    receipt_timeout_seconds: float = 120.0

    @field_validator("factory_address", "router_address", "registry_address", "treasury_address")
    @classmethod
    def _checksum(cls, value: str) -> str:
        return format_address(value) if value else value

    @field_validator("init_code_hash")
    @classmethod
    def _bytes32(cls, value: str) -> str:
        return "0x" + parse_bytes32(value).hex() if value else value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
