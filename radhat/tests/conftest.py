"""Shared fixtures for the RADHAT test suite.

Chain fixtures run against a freshly bootstrapped in-process ledger; store
fixtures against an in-memory SQLite database created per test.
"""

from __future__ import annotations

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Reset engine BEFORE importing the app so nothing binds to a file database.
from radhat.core import database as _db_mod

_db_mod.reset_engine()

from radhat.api.main import create_app
from radhat.chain.ledger import Ledger
from radhat.chain.simulated import LocalChain, SimulatedChainClient, bootstrap_local_chain
from radhat.core.database import get_db
from radhat.core.store import SqlDepositStore
from radhat.models.base import Base
from radhat.pipeline.orchestrator import DepositOrchestrator

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

OPERATOR = "0x" + "a1" * 20
TREASURY = "0x" + "b2" * 20
OUTSIDER = "0x" + "c3" * 20
FUNDER = "0x" + "d4" * 20
USER_A = "0x" + "e5" * 20
USER_B = "0x" + "f6" * 20

ONE_ETH = 10**18


# ── Chain ────────────────────────────────────────────────────────────────────


@pytest.fixture
def ledger() -> Ledger:
    return Ledger()


@pytest.fixture
def local_chain(ledger: Ledger) -> LocalChain:
    """Registry, router and deployer; operator is CALLER, treasury is TREASURY."""
    chain = bootstrap_local_chain(OPERATOR, TREASURY, ledger=ledger)
    ledger.credit(FUNDER, 100 * ONE_ETH)
    return chain


@pytest.fixture
def chain_client(local_chain: LocalChain) -> SimulatedChainClient:
    return SimulatedChainClient(local_chain)


# ── Database ─────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory database with all tables created."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> SqlDepositStore:
    return SqlDepositStore(session_factory)


# ── Orchestrator & API ───────────────────────────────────────────────────────


@pytest.fixture
def orchestrator(
    store: SqlDepositStore, chain_client: SimulatedChainClient, local_chain: LocalChain
) -> DepositOrchestrator:
    return DepositOrchestrator(
        store,
        chain_client,
        treasury=TREASURY,
        content_hash=local_chain.deployer.init_code_hash(),
        balance_retry_delay=0.0,
    )


@pytest_asyncio.fixture
async def api_client(
    orchestrator: DepositOrchestrator,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """httpx client bound to an app wired to the test orchestrator and database."""
    app = create_app(orchestrator)

    async def _override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    app.dependency_overrides.clear()
