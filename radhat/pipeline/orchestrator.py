"""Deposit lifecycle orchestrator.

Drives every deposit record through:

    pending ─(balance > 0)─▶ funded ─(deployMultiple)─▶ deployed ─(transferFunds)─▶ routed
                                  └──────────────▶ failed ◀──────────────┘

The orchestrator is the only writer of the record store. A routing cycle is
a fold over the non-terminal records: every per-record outcome becomes a
status update plus, on failure, one entry in the result's error list. An
unreachable chain aborts the rest of the cycle; transitions already
committed stay committed.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import defaultdict
from contextlib import AsyncExitStack
from typing import Any

from eth_account import Account

from radhat.chain.client import SETTLE_METHOD, ChainClient
from radhat.chain.simulated import SimulatedChainClient, bootstrap_local_chain
from radhat.core.config import Settings
from radhat.core.derivation import (
    compute_deposit_address,
    format_address,
    format_bytes32,
    is_zero_address,
    parse_bytes32,
)
from radhat.core.errors import (
    ConfigError,
    InfrastructureError,
    NotFoundError,
    ZeroAddress,
)
from radhat.core.store import DepositStore, SqlDepositStore
from radhat.core.types import (
    NON_TERMINAL_STATUSES,
    ChainBackend,
    CreateDepositResponse,
    DepositInfo,
    DepositStatus,
    RouteBatchResult,
    RouteTransaction,
)

logger = logging.getLogger(__name__)

# ── Retry helpers ────────────────────────────────────────────────────────────
# Only read-only balance queries are retried. Deployments and settlements are
# never resubmitted automatically.

_TRANSIENT_MESSAGES = (
    "connection reset",
    "connection refused",
    "broken pipe",
    "timed out",
    "timeout",
    "temporarily unavailable",
    "service unavailable",
    "too many requests",
    "throttl",
    "rate limit",
)


def _is_transient(exc: Exception) -> bool:
    """Return True if the exception looks transient (network / RPC limits)."""
    msg = str(exc).lower()
    return any(t in msg for t in _TRANSIENT_MESSAGES)


async def _retry_async(
    coro_factory,  # callable returning a coroutine
    *,
    max_retries: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    label: str = "operation",
):
    """Retry an async operation with exponential back-off on transient errors."""
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except Exception as exc:
            if attempt >= max_retries or not _is_transient(exc):
                raise
            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(
                "Transient error in %s (attempt %d/%d), retrying in %.1fs: %s",
                label, attempt + 1, max_retries, delay, exc,
            )
            await asyncio.sleep(delay)


class _CycleAborted(Exception):
    """Internal: the chain became unreachable mid-cycle."""


# ── Orchestrator ─────────────────────────────────────────────────────────────


class DepositOrchestrator:
    """Allocates deposit addresses and runs routing cycles."""

    def __init__(
        self,
        store: DepositStore,
        chain: ChainClient,
        *,
        treasury: str,
        content_hash: bytes | str,
        note: str = "Send ETH to this address. Funds will be routed to treasury.",
        balance_concurrency: int = 8,
        balance_retries: int = 2,
        balance_retry_delay: float = 0.5,
    ) -> None:
        if is_zero_address(treasury):
            raise ZeroAddress("treasury is the zero address")
        self.store = store
        self.chain = chain
        self.treasury = format_address(treasury)
        self.content_hash = parse_bytes32(content_hash)
        self.note = note
        self.balance_concurrency = balance_concurrency
        self.balance_retries = balance_retries
        self.balance_retry_delay = balance_retry_delay
        self._cycle_lock = asyncio.Lock()
        self._address_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def factory_address(self) -> str:
        return self.chain.factory_address

    # ── Startup ──────────────────────────────────────────────────────────

    async def verify_content_hash(self) -> None:
        """Fail if the chain's forwarder content differs from ours.

        Every address handed out so far was derived from ``content_hash``; a
        deployer with different content would deploy somewhere else.
        """
        on_chain = await self.chain.content_hash()
        if on_chain != self.content_hash:
            raise ConfigError(
                f"init code hash mismatch: configured {format_bytes32(self.content_hash)}, "
                f"deployer reports {format_bytes32(on_chain)}"
            )

    # ── Service surface ──────────────────────────────────────────────────

    async def create_deposit(self, requester: str) -> CreateDepositResponse:
        """Allocate the next nonce and persist a pending record. No chain I/O."""
        requester = format_address(requester)
        if is_zero_address(requester):
            raise ZeroAddress("requester is the zero address")

        nonce = await self.store.allocate_nonce()
        address, user_salt, salt = compute_deposit_address(
            self.factory_address, self.content_hash, requester, nonce
        )
        record = await self.store.insert(
            user_address=requester,
            user_salt=format_bytes32(user_salt),
            salt=format_bytes32(salt),
            deposit_address=address,
            nonce=nonce,
        )
        logger.info(
            "Created deposit %s for %s (nonce %d)", address, requester, nonce,
            extra={"deposit_address": address},
        )
        return CreateDepositResponse(
            deposit_address=record.deposit_address,
            salt=record.salt,
            user_salt=record.user_salt,
            nonce=record.nonce,
            note=self.note,
        )

    async def list_deposits(
        self, status: DepositStatus | None = None, user_address: str | None = None
    ) -> list[DepositInfo]:
        if user_address is not None:
            user_address = format_address(user_address)
        return await self.store.list(status=status, user_address=user_address)

    async def get_deposit(self, address: str) -> DepositInfo:
        address = format_address(address)
        record = await self.store.get_by_address(address)
        if record is None:
            raise NotFoundError(f"deposit {address} not found")
        return record

    # ── Routing cycle ────────────────────────────────────────────────────

    async def run_routing_cycle(self) -> RouteBatchResult:
        """Advance every non-terminal record as far as it can go.

        Cycles never overlap. Re-running without new funding changes nothing.
        """
        async with self._cycle_lock:
            cycle_id = uuid.uuid4().hex[:12]
            ctx = {"cycle_id": cycle_id}
            start = time.monotonic()
            result = RouteBatchResult()

            records = await self.store.list_by_status(NON_TERMINAL_STATUSES)
            result.checked = len(records)
            logger.info("Routing cycle started: %d open records", len(records), extra=ctx)

            try:
                if records:
                    balances = await self._query_balances(records, result, ctx)
                    records = await self._mark_funded(records, balances, result, ctx)
                    records = await self._deploy_funded(records, result, ctx)
                    await self._settle_deployed(records, balances, result, ctx)
            except _CycleAborted as exc:
                result.errors.append(f"cycle aborted: {exc}")
                logger.error("Routing cycle aborted: %s", exc, extra=ctx)
            finally:
                # Address locks only live inside a cycle.
                self._address_locks.clear()

            logger.info(
                "Routing cycle finished: checked=%d funded=%d deployed=%d routed=%d errors=%d",
                result.checked, result.funded, result.deployed, result.routed, len(result.errors),
                extra={**ctx, "duration_ms": round((time.monotonic() - start) * 1000, 1)},
            )
            return result

    async def _query_balances(
        self, records: list[DepositInfo], result: RouteBatchResult, ctx: dict[str, Any]
    ) -> dict[str, int]:
        semaphore = asyncio.Semaphore(self.balance_concurrency)

        async def one(address: str) -> int:
            async with semaphore:
                return await self._read_balance(address)

        addresses = [r.deposit_address for r in records]
        outcomes = await asyncio.gather(*(one(a) for a in addresses), return_exceptions=True)

        balances: dict[str, int] = {}
        for address, outcome in zip(addresses, outcomes):
            if isinstance(outcome, InfrastructureError):
                raise _CycleAborted(f"balance query failed: {outcome}")
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                result.errors.append(f"{address}: balance query failed: {outcome}")
                logger.warning(
                    "Balance query failed for %s: %s", address, outcome,
                    extra={**ctx, "deposit_address": address},
                )
                continue
            balances[address] = outcome
        return balances

    async def _read_balance(self, address: str) -> int:
        return await _retry_async(
            lambda: self.chain.get_balance(address),
            max_retries=self.balance_retries,
            base_delay=self.balance_retry_delay,
            label=f"get_balance({address})",
        )

    async def _mark_funded(
        self,
        records: list[DepositInfo],
        balances: dict[str, int],
        result: RouteBatchResult,
        ctx: dict[str, Any],
    ) -> list[DepositInfo]:
        """Pending records holding value become funded."""
        updated: list[DepositInfo] = []
        for record in records:
            address = record.deposit_address
            if record.status is DepositStatus.PENDING and balances.get(address, 0) > 0:
                async with self._address_locks[address]:
                    record = await self._transition(
                        record, DepositStatus.FUNDED, result, ctx, amount=balances[address]
                    )
                if record.status is DepositStatus.FUNDED:
                    result.funded += 1
            updated.append(record)
        return updated

    async def _deploy_funded(
        self, records: list[DepositInfo], result: RouteBatchResult, ctx: dict[str, Any]
    ) -> list[DepositInfo]:
        """One batched deployment for every funded record."""
        funded = [r for r in records if r.status is DepositStatus.FUNDED]
        if not funded:
            return records

        by_address: dict[str, DepositInfo] = {}
        async with AsyncExitStack() as stack:
            for address in sorted(r.deposit_address for r in funded):
                await stack.enter_async_context(self._address_locks[address])

            try:
                batch = await self.chain.deploy_batch([parse_bytes32(r.salt) for r in funded])
            except InfrastructureError as exc:
                raise _CycleAborted(f"deployment batch failed: {exc}") from exc
            except Exception as exc:
                logger.error("Deployment batch reverted: %s", exc, extra=ctx)
                for record in funded:
                    by_address[record.deposit_address] = await self._fail(
                        record, f"deployment batch failed: {exc}", result, ctx
                    )
            else:
                if batch.tx_hash is not None:
                    result.deploy_tx_hash = batch.tx_hash
                outcomes = {o.address: o for o in batch.outcomes}
                for record in funded:
                    outcome = outcomes.get(record.deposit_address)
                    if outcome is None:
                        by_address[record.deposit_address] = await self._fail(
                            record, "deployment batch returned no outcome for this address",
                            result, ctx,
                        )
                    elif outcome.collision is not None:
                        by_address[record.deposit_address] = await self._fail(
                            record, str(outcome.collision), result, ctx
                        )
                    else:
                        updated = await self._transition(
                            record, DepositStatus.DEPLOYED, result, ctx,
                            deploy_tx_hash=batch.tx_hash,
                        )
                        if updated.status is DepositStatus.DEPLOYED:
                            result.deployed += 1
                        by_address[record.deposit_address] = updated

        return [by_address.get(r.deposit_address, r) for r in records]

    async def _settle_deployed(
        self,
        records: list[DepositInfo],
        balances: dict[str, int],
        result: RouteBatchResult,
        ctx: dict[str, Any],
    ) -> None:
        """Settle each deployed record that holds value, one address at a time.

        The amount is read again under the address lock: value may have
        arrived after the balances in ``balances`` were taken.
        """
        for record in records:
            address = record.deposit_address
            if record.status is not DepositStatus.DEPLOYED or address not in balances:
                continue

            async with self._address_locks[address]:
                try:
                    amount = await self._read_balance(address)
                except InfrastructureError as exc:
                    raise _CycleAborted(f"balance query failed: {exc}") from exc
                except Exception as exc:
                    # Still deployed; the next cycle reads it again.
                    result.errors.append(f"{address}: balance query failed: {exc}")
                    continue
                if amount <= 0:
                    continue

                try:
                    tx_hash = await self.chain.call_contract(
                        SETTLE_METHOD,
                        {
                            "source": address,
                            "value_amount": amount,
                            "tokens": [],
                            "amounts": [],
                            "treasury": self.treasury,
                        },
                    )
                except InfrastructureError as exc:
                    raise _CycleAborted(f"settlement of {address} failed: {exc}") from exc
                except Exception as exc:
                    await self._fail(record, f"settlement failed: {exc}", result, ctx)
                    continue

                updated = await self._transition(
                    record, DepositStatus.ROUTED, result, ctx,
                    route_tx_hash=tx_hash, routed_amount=amount,
                )
                if updated.status is DepositStatus.ROUTED:
                    result.routed += 1
                    result.route_transactions.append(
                        RouteTransaction(deposit_address=address, tx_hash=tx_hash, amount=amount)
                    )

    # ── Record updates ───────────────────────────────────────────────────

    async def _transition(
        self,
        record: DepositInfo,
        status: DepositStatus,
        result: RouteBatchResult,
        ctx: dict[str, Any],
        *,
        error: str | None = None,
        deploy_tx_hash: str | None = None,
        route_tx_hash: str | None = None,
        routed_amount: int | None = None,
        amount: int | None = None,
    ) -> DepositInfo:
        """Persist one transition; a store failure is recorded, not raised."""
        address = record.deposit_address
        try:
            updated = await self.store.update_status(
                address,
                status,
                error=error,
                deploy_tx_hash=deploy_tx_hash,
                route_tx_hash=route_tx_hash,
                routed_amount=routed_amount,
            )
        except Exception as exc:
            result.errors.append(f"{address}: could not record {status.value}: {exc}")
            logger.exception(
                "Failed to record %s for %s", status.value, address,
                extra={**ctx, "deposit_address": address},
            )
            return record

        logger.info(
            "Deposit %s -> %s", address, status.value,
            extra={
                **ctx,
                "deposit_address": address,
                "status": status.value,
                "tx_hash": deploy_tx_hash or route_tx_hash,
                "amount": routed_amount if routed_amount is not None else amount,
            },
        )
        return updated

    async def _fail(
        self, record: DepositInfo, reason: str, result: RouteBatchResult, ctx: dict[str, Any]
    ) -> DepositInfo:
        result.errors.append(f"{record.deposit_address}: {reason}")
        logger.warning(
            "Deposit %s failed: %s", record.deposit_address, reason,
            extra={**ctx, "deposit_address": record.deposit_address},
        )
        return await self._transition(record, DepositStatus.FAILED, result, ctx, error=reason)


# ── Factory ──────────────────────────────────────────────────────────────────

# Hardhat's first default account; only used by the simulated backend.
DEV_OPERATOR_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def build_chain_client(settings: Settings) -> ChainClient:
    """Return the chain client selected by ``settings.chain_backend``."""
    if settings.chain_backend is ChainBackend.WEB3:
        from radhat.chain.web3_client import Web3ChainClient

        return Web3ChainClient.from_settings(settings)

    operator = DEV_OPERATOR_ADDRESS
    if settings.operator_private_key:
        operator = Account.from_key(settings.operator_private_key).address
    local = bootstrap_local_chain(operator, settings.treasury_address or operator)
    return SimulatedChainClient(local)


def build_orchestrator(
    settings: Settings,
    *,
    store: DepositStore | None = None,
    chain: ChainClient | None = None,
) -> DepositOrchestrator:
    """Wire store and chain client from settings."""
    if store is None:
        from radhat.core.database import get_session_factory

        store = SqlDepositStore(get_session_factory())
    if chain is None:
        chain = build_chain_client(settings)

    treasury = settings.treasury_address
    content_hash = settings.init_code_hash
    if isinstance(chain, SimulatedChainClient):
        treasury = treasury or chain.chain.treasury
        content_hash = content_hash or chain.chain.deployer.template.content_hash_hex

    if not treasury:
        raise ConfigError("RADHAT_TREASURY_ADDRESS is required")
    if not content_hash:
        raise ConfigError("RADHAT_INIT_CODE_HASH is required")

    return DepositOrchestrator(
        store,
        chain,
        treasury=treasury,
        content_hash=content_hash,
        note=settings.deposit_note,
        balance_concurrency=settings.balance_query_concurrency,
        balance_retries=settings.balance_query_retries,
        balance_retry_delay=settings.balance_query_retry_delay,
    )
