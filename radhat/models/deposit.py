"""Deposit address records and the store-wide nonce counter."""

from __future__ import annotations

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from radhat.models.base import Base, TimestampMixin


class Deposit(Base, TimestampMixin):
    """One deterministic deposit address issued to a requester.

    Rows are append-only: the orchestrator only ever advances ``status`` and
    fills in the bookkeeping columns, nothing deletes them.
    """

    __tablename__ = "deposits"
    __table_args__ = (
        Index("idx_deposits_user_address", "user_address"),
        Index("idx_deposits_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_address: Mapped[str] = mapped_column(String(42), nullable=False)
    user_salt: Mapped[str] = mapped_column(String(66), nullable=False)
    salt: Mapped[str] = mapped_column(String(66), nullable=False)  # namespaced, used for CREATE2
    deposit_address: Mapped[str] = mapped_column(String(42), nullable=False, unique=True)
    nonce: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Chain bookkeeping
    deploy_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    route_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    routed_amount: Mapped[str | None] = mapped_column(String(78), nullable=True)  # uint256 as decimal


class DepositNonce(Base):
    """Nonce allocator; AUTOINCREMENT guarantees a value is never handed out twice."""

    __tablename__ = "deposit_nonces"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
