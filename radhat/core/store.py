"""Persistence for deposit records.

The orchestrator is the only writer. Each method runs in its own session and
commits before returning, so one record's transition is durable before the
next one starts and concurrent readers never see half-applied cycles.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from radhat.core.errors import InvalidTransition, NotFoundError
from radhat.core.types import DepositInfo, DepositStatus
from radhat.models.deposit import Deposit, DepositNonce

logger = logging.getLogger(__name__)


class DepositStore(Protocol):
    """Storage operations the orchestrator depends on."""

    async def allocate_nonce(self) -> int: ...

    async def insert(
        self,
        *,
        user_address: str,
        user_salt: str,
        salt: str,
        deposit_address: str,
        nonce: int,
    ) -> DepositInfo: ...

    async def update_status(
        self,
        deposit_address: str,
        status: DepositStatus,
        *,
        error: str | None = None,
        deploy_tx_hash: str | None = None,
        route_tx_hash: str | None = None,
        routed_amount: int | None = None,
    ) -> DepositInfo: ...

    async def list(
        self, *, status: DepositStatus | None = None, user_address: str | None = None
    ) -> list[DepositInfo]: ...

    async def list_by_status(self, statuses: Iterable[DepositStatus]) -> list[DepositInfo]: ...

    async def get_by_address(self, deposit_address: str) -> DepositInfo | None: ...


class SqlDepositStore:
    """``DepositStore`` backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def allocate_nonce(self) -> int:
        """Hand out the next store-wide nonce (0, 1, 2, ...)."""
        async with self._session_factory() as session:
            row = DepositNonce()
            session.add(row)
            await session.flush()
            nonce = row.id - 1
            await session.commit()
        return nonce

    async def insert(
        self,
        *,
        user_address: str,
        user_salt: str,
        salt: str,
        deposit_address: str,
        nonce: int,
    ) -> DepositInfo:
        async with self._session_factory() as session:
            deposit = Deposit(
                user_address=user_address,
                user_salt=user_salt,
                salt=salt,
                deposit_address=deposit_address,
                nonce=nonce,
                status=DepositStatus.PENDING.value,
            )
            session.add(deposit)
            await session.flush()
            await session.refresh(deposit)
            info = DepositInfo.model_validate(deposit)
            await session.commit()
        return info

    async def update_status(
        self,
        deposit_address: str,
        status: DepositStatus,
        *,
        error: str | None = None,
        deploy_tx_hash: str | None = None,
        route_tx_hash: str | None = None,
        routed_amount: int | None = None,
    ) -> DepositInfo:
        """Advance one record; refuses anything but a forward transition."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Deposit).where(Deposit.deposit_address == deposit_address)
            )
            deposit = result.scalar_one_or_none()
            if deposit is None:
                raise NotFoundError(f"deposit {deposit_address} not found")

            current = DepositStatus(deposit.status)
            if not current.can_transition_to(status):
                raise InvalidTransition(deposit_address, current.value, status.value)

            deposit.status = status.value
            if error is not None:
                deposit.last_error = error
            if deploy_tx_hash is not None:
                deposit.deploy_tx_hash = deploy_tx_hash
            if route_tx_hash is not None:
                deposit.route_tx_hash = route_tx_hash
            if routed_amount is not None:
                deposit.routed_amount = str(routed_amount)

            await session.flush()
            await session.refresh(deposit)
            info = DepositInfo.model_validate(deposit)
            await session.commit()

        logger.debug(
            "Deposit %s: %s -> %s", deposit_address, current.value, status.value,
            extra={"deposit_address": deposit_address, "status": status.value},
        )
        return info

    async def list(
        self, *, status: DepositStatus | None = None, user_address: str | None = None
    ) -> list[DepositInfo]:
        """All deposits in nonce order, optionally filtered."""
        stmt = select(Deposit).order_by(Deposit.nonce.asc())
        if status is not None:
            stmt = stmt.where(Deposit.status == status.value)
        if user_address is not None:
            stmt = stmt.where(Deposit.user_address == user_address)
        return await self._fetch(stmt)

    async def list_by_status(self, statuses: Iterable[DepositStatus]) -> list[DepositInfo]:
        values = [s.value for s in statuses]
        if not values:
            return []
        stmt = select(Deposit).where(Deposit.status.in_(values)).order_by(Deposit.nonce.asc())
        return await self._fetch(stmt)

    async def get_by_address(self, deposit_address: str) -> DepositInfo | None:
        rows = await self._fetch(
            select(Deposit).where(Deposit.deposit_address == deposit_address)
        )
        return rows[0] if rows else None

    async def _fetch(self, stmt) -> list[DepositInfo]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows: Sequence[Deposit] = result.scalars().all()
            return [DepositInfo.model_validate(row) for row in rows]
