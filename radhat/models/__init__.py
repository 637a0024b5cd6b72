"""Database models package."""

from radhat.models.base import Base, TimestampMixin  # noqa: F401
from radhat.models.deposit import Deposit, DepositNonce  # noqa: F401

__all__ = [
    "Base",
    "TimestampMixin",
    "Deposit",
    "DepositNonce",
]
