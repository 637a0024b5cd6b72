"""Tests for radhat.chain.web3_client with a mocked provider."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from radhat.chain.client import SETTLE_METHOD
from radhat.chain.web3_client import Web3ChainClient
from radhat.core.config import Settings
from radhat.core.derivation import compute_address
from radhat.core.errors import ConfigError, InfrastructureError, ValidationError

KEY = "0x" + "11" * 32
FACTORY = "0x" + "a1" * 20
ROUTER = "0x" + "b2" * 20
CONTENT_HASH = b"\x07" * 32


@pytest.fixture
def w3() -> MagicMock:
    w3 = MagicMock()
    w3.eth.get_balance = AsyncMock(return_value=123)
    w3.eth.get_code = AsyncMock(return_value=b"")
    return w3


@pytest.fixture
def client(w3: MagicMock) -> Web3ChainClient:
    c = Web3ChainClient(w3, KEY, FACTORY, ROUTER, chain_id=31337)
    c._content_hash = CONTENT_HASH
    return c


class TestFromSettings:
    def test_missing_settings(self):
        settings = Settings(_env_file=None, chain_backend="web3")
        with pytest.raises(ConfigError, match="factory_address"):
            Web3ChainClient.from_settings(settings)

    def test_complete_settings(self):
        settings = Settings(
            _env_file=None,
            chain_backend="web3",
            factory_address=FACTORY,
            router_address=ROUTER,
            operator_private_key=KEY,
        )
        client = Web3ChainClient.from_settings(settings)
        assert client.factory_address == settings.factory_address
        assert client.operator_address.startswith("0x")


class TestReads:
    @pytest.mark.asyncio
    async def test_balance(self, client: Web3ChainClient):
        assert await client.get_balance("0x" + "cc" * 20) == 123

    @pytest.mark.asyncio
    async def test_transport_error_is_infrastructure(self, client: Web3ChainClient, w3: MagicMock):
        w3.eth.get_balance = AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))
        with pytest.raises(InfrastructureError):
            await client.get_balance("0x" + "cc" * 20)


class TestDeployBatch:
    @pytest.mark.asyncio
    async def test_occupied_addresses_reported_not_sent(
        self, client: Web3ChainClient, w3: MagicMock
    ):
        salts = [b"\x01" * 32, b"\x02" * 32]
        occupied = compute_address(FACTORY, salts[0], CONTENT_HASH)
        w3.eth.get_code = AsyncMock(side_effect=lambda a: b"\x60" if a == occupied else b"")
        client._transact = AsyncMock(return_value="0xdead")

        result = await client.deploy_batch(salts)

        assert result.tx_hash == "0xdead"
        assert [o.deployed for o in result.outcomes] == [False, True]
        client._deployer.functions.deployMultiple.assert_called_once_with([salts[1]])

    @pytest.mark.asyncio
    async def test_nothing_left_to_deploy(self, client: Web3ChainClient, w3: MagicMock):
        w3.eth.get_code = AsyncMock(return_value=b"\x60")
        client._transact = AsyncMock()
        result = await client.deploy_batch([b"\x01" * 32])
        assert result.tx_hash is None
        client._transact.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty(self, client: Web3ChainClient):
        with pytest.raises(ValidationError, match="no salts provided"):
            await client.deploy_batch([])


class TestCallContract:
    @pytest.mark.asyncio
    async def test_unknown_method(self, client: Web3ChainClient):
        with pytest.raises(ValidationError):
            await client.call_contract("selfdestruct", {})

    @pytest.mark.asyncio
    async def test_flush_then_settle(self, client: Web3ChainClient):
        source = "0x" + "cc" * 20
        client._transact_raw = AsyncMock(return_value="0x01")
        client._transact = AsyncMock(return_value="0x02")

        tx = await client.call_contract(
            SETTLE_METHOD,
            {"source": source, "value_amount": 9, "tokens": [], "amounts": [], "treasury": ROUTER},
        )

        assert tx == "0x02"
        flush = client._transact_raw.await_args.args[0]
        assert flush["value"] == 0
        assert flush["to"].lower() == source
        args = client._router.functions.transferFunds.call_args.args
        assert args[0] == 9 and args[1] == [] and args[2] == []
