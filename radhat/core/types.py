"""Shared enums and schemas used across the service."""

from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class DepositStatus(str, enum.Enum):
    """Lifecycle status of a deposit address."""

    PENDING = "pending"
    FUNDED = "funded"
    DEPLOYED = "deployed"
    ROUTED = "routed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DepositStatus.ROUTED, DepositStatus.FAILED)

    def can_transition_to(self, target: "DepositStatus") -> bool:
        """Return True if moving from this status to ``target`` is allowed."""
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[DepositStatus, frozenset[DepositStatus]] = {
    DepositStatus.PENDING: frozenset({DepositStatus.FUNDED}),
    DepositStatus.FUNDED: frozenset({DepositStatus.DEPLOYED, DepositStatus.FAILED}),
    DepositStatus.DEPLOYED: frozenset({DepositStatus.ROUTED, DepositStatus.FAILED}),
    DepositStatus.ROUTED: frozenset(),
    DepositStatus.FAILED: frozenset(),
}

NON_TERMINAL_STATUSES = (DepositStatus.PENDING, DepositStatus.FUNDED, DepositStatus.DEPLOYED)


class Capability(enum.IntFlag):
    """Permission bits stored per address in the registry.

    A registry write replaces the whole set, so an address that needs both
    capabilities must be written with ``CALLER | TREASURY`` in one call.
    """

    NONE = 0
    CALLER = 0x01
    TREASURY = 0x02


ALL_CAPABILITIES = Capability.CALLER | Capability.TREASURY


class ChainBackend(str, enum.Enum):
    """Which chain client the service drives."""

    WEB3 = "web3"
    SIMULATED = "simulated"


# ── Service schemas ──────────────────────────────────────────────────────────


class CreateDepositRequest(BaseModel):
    """Request for a new deposit address."""

    user: str = Field(..., min_length=1, description="Requester address, 0x-prefixed")


class CreateDepositResponse(BaseModel):
    """A freshly allocated deposit address."""

    deposit_address: str
    salt: str
    user_salt: str
    nonce: int
    note: str


class DepositInfo(BaseModel):
    """A persisted deposit record."""

    id: int
    user_address: str
    deposit_address: str
    user_salt: str
    salt: str
    nonce: int
    status: DepositStatus
    last_error: str | None = None
    deploy_tx_hash: str | None = None
    route_tx_hash: str | None = None
    routed_amount: int | None = None
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class ListDepositsResponse(BaseModel):
    """All deposits, oldest first."""

    deposits: list[DepositInfo] = Field(default_factory=list)
    total: int = 0


class RouteTransaction(BaseModel):
    """One successful settlement inside a routing cycle."""

    deposit_address: str
    tx_hash: str
    amount: int


class RouteBatchResult(BaseModel):
    """Outcome of one routing cycle."""

    checked: int = 0
    funded: int = 0
    deployed: int = 0
    routed: int = 0
    deploy_tx_hash: str | None = None
    route_transactions: list[RouteTransaction] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class HealthResponse(BaseModel):
    """Liveness payload."""

    status: str
    version: str
    factory_address: str
    chain_backend: str
