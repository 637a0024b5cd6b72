"""HTTP tests for the RADHAT API, against an in-memory database and ledger."""

from __future__ import annotations

import logging

import pytest
from httpx import AsyncClient

from radhat.api.main import create_app
from radhat.chain.simulated import LocalChain, SimulatedChainClient
from radhat.core.derivation import format_address

from radhat.tests.conftest import FUNDER, ONE_ETH, TREASURY, USER_A, USER_B


# ── Health ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(api_client: AsyncClient, local_chain: LocalChain):
    resp = await api_client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["factory_address"] == local_chain.deployer.address
    assert data["chain_backend"] == "simulated"


@pytest.mark.asyncio
async def test_readiness_healthy(api_client: AsyncClient):
    resp = await api_client.get("/api/health/ready")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["checks"]["database"]["status"] == "up"
    assert data["checks"]["chain"]["status"] == "up"


@pytest.mark.asyncio
async def test_readiness_degraded_when_chain_down(
    api_client: AsyncClient, chain_client: SimulatedChainClient
):
    chain_client.online = False
    resp = await api_client.get("/api/health/ready")
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["checks"]["chain"]["status"] == "down"
    assert "offline" in data["checks"]["chain"]["error"]


# ── Deposits ─────────────────────────────────────────────────────────────────


class TestCreateDeposit:
    @pytest.mark.asyncio
    async def test_created(self, api_client: AsyncClient, local_chain: LocalChain):
        resp = await api_client.post("/api/deposit", json={"user": USER_A})
        assert resp.status_code == 201
        data = resp.json()
        assert data["nonce"] == 0
        assert data["deposit_address"] == local_chain.deployer.compute_address(data["salt"])
        assert data["note"]
        assert data["salt"].startswith("0x") and len(data["salt"]) == 66

    @pytest.mark.asyncio
    async def test_missing_user_is_422(self, api_client: AsyncClient):
        resp = await api_client.post("/api/deposit", json={})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"][0]["field"] == "user"

    @pytest.mark.asyncio
    async def test_malformed_user_is_400(self, api_client: AsyncClient):
        resp = await api_client.post("/api/deposit", json={"user": "0xnope"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_zero_user_is_400(self, api_client: AsyncClient):
        resp = await api_client.post("/api/deposit", json={"user": "0x" + "00" * 20})
        assert resp.status_code == 400
        assert "zero address" in resp.json()["error"]["message"]


class TestQueries:
    @pytest.mark.asyncio
    async def test_list(self, api_client: AsyncClient):
        await api_client.post("/api/deposit", json={"user": USER_A})
        await api_client.post("/api/deposit", json={"user": USER_B})

        resp = await api_client.get("/api/deposits")
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 2
        assert [d["nonce"] for d in data["deposits"]] == [0, 1]
        assert all(d["status"] == "pending" for d in data["deposits"])

    @pytest.mark.asyncio
    async def test_list_filters(self, api_client: AsyncClient):
        await api_client.post("/api/deposit", json={"user": USER_A})
        await api_client.post("/api/deposit", json={"user": USER_B})

        resp = await api_client.get("/api/deposits", params={"user": USER_B})
        [only] = resp.json()["deposits"]
        assert only["user_address"] == format_address(USER_B)

        resp = await api_client.get("/api/deposits", params={"status": "routed"})
        assert resp.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_unknown_status_is_422(self, api_client: AsyncClient):
        resp = await api_client.get("/api/deposits", params={"status": "lost"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_get_one(self, api_client: AsyncClient):
        created = (await api_client.post("/api/deposit", json={"user": USER_A})).json()
        resp = await api_client.get(f"/api/deposits/{created['deposit_address']}")
        assert resp.status_code == 200
        assert resp.json()["salt"] == created["salt"]

    @pytest.mark.asyncio
    async def test_get_unknown_is_404(self, api_client: AsyncClient):
        resp = await api_client.get("/api/deposits/0x" + "99" * 20)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"


# ── Router ───────────────────────────────────────────────────────────────────


class TestRouter:
    @pytest.mark.asyncio
    async def test_routes_funded_deposit(self, api_client: AsyncClient, local_chain: LocalChain):
        created = (await api_client.post("/api/deposit", json={"user": USER_A})).json()
        local_chain.ledger.send(FUNDER, created["deposit_address"], ONE_ETH)

        resp = await api_client.post("/api/router")

        assert resp.status_code == 200
        data = resp.json()
        assert data["routed"] == 1
        assert data["errors"] == []
        assert data["route_transactions"][0]["amount"] == ONE_ETH
        assert local_chain.ledger.balance_of(TREASURY) == ONE_ETH

        record = (await api_client.get(f"/api/deposits/{created['deposit_address']}")).json()
        assert record["status"] == "routed"
        assert record["routed_amount"] == ONE_ETH

    @pytest.mark.asyncio
    async def test_chain_outage_reported_in_body(
        self, api_client: AsyncClient, chain_client: SimulatedChainClient
    ):
        await api_client.post("/api/deposit", json={"user": USER_A})
        chain_client.online = False

        resp = await api_client.post("/api/router")

        assert resp.status_code == 200
        assert resp.json()["errors"][0].startswith("cycle aborted")


# ── Envelope & middleware ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_request_id_echoed(api_client: AsyncClient):
    resp = await api_client.get("/api/health", headers={"X-Request-ID": "req-42"})
    assert resp.headers["X-Request-ID"] == "req-42"


@pytest.mark.asyncio
async def test_request_id_generated(api_client: AsyncClient):
    resp = await api_client.get("/api/health")
    assert resp.headers.get("X-Request-ID")


@pytest.mark.asyncio
async def test_error_carries_request_id(api_client: AsyncClient):
    resp = await api_client.get(
        "/api/deposits/0x" + "99" * 20, headers={"X-Request-ID": "req-404"}
    )
    assert resp.json()["error"]["request_id"] == "req-404"


@pytest.mark.asyncio
async def test_unknown_route_is_404(api_client: AsyncClient):
    resp = await api_client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_missing_orchestrator_is_config_error():
    from httpx import ASGITransport

    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        resp = await client.get("/api/health")
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "CONFIG_ERROR"


@pytest.mark.asyncio
async def test_access_log_carries_request_id(api_client: AsyncClient, caplog):
    with caplog.at_level(logging.INFO, logger="radhat.api.main"):
        await api_client.get("/api/health", headers={"X-Request-ID": "req-log"})
    [record] = [r for r in caplog.records if getattr(r, "path", None) == "/api/health"]
    assert record.request_id == "req-log"
