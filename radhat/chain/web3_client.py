"""Chain client for a real EVM network, over web3.py's async API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

import aiohttp
from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from radhat.chain.client import SETTLE_METHOD
from radhat.chain.types import DeployBatchResult, DeploymentOutcome
from radhat.core.config import Settings
from radhat.core.derivation import compute_address, format_address, parse_bytes32
from radhat.core.errors import (
    ConfigError,
    DeploymentCollision,
    InfrastructureError,
    TransactionReverted,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEPLOYER_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "deployMultiple",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "salts", "type": "bytes32[]"}],
        "outputs": [{"name": "proxies", "type": "address[]"}],
    },
    {
        "type": "function",
        "name": "getInitCodeHash",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
]

ROUTER_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "transferFunds",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "valueAmount", "type": "uint256"},
            {"name": "tokens", "type": "address[]"},
            {"name": "amounts", "type": "uint256[]"},
            {"name": "treasury", "type": "address"},
        ],
        "outputs": [],
    },
]

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError, TimeExhausted)


class Web3ChainClient:
    """Signs with the operator key and waits for every receipt."""

    def __init__(
        self,
        w3: AsyncWeb3,
        private_key: str,
        factory_address: str,
        router_address: str,
        *,
        chain_id: int,
        receipt_timeout: float = 120.0,
    ) -> None:
        self.w3 = w3
        self.account = Account.from_key(private_key)
        self.factory_address = format_address(factory_address)
        self.router_address = format_address(router_address)
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self._deployer = w3.eth.contract(address=self.factory_address, abi=DEPLOYER_ABI)
        self._router = w3.eth.contract(address=self.router_address, abi=ROUTER_ABI)
        self._content_hash: bytes | None = None
        self._send_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Web3ChainClient":
        missing = [
            name
            for name in ("rpc_url", "factory_address", "router_address", "operator_private_key")
            if not getattr(settings, name)
        ]
        if missing:
            raise ConfigError(f"web3 backend requires: {', '.join(missing)}")
        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings.rpc_url))
        return cls(
            w3,
            settings.operator_private_key,
            settings.factory_address,
            settings.router_address,
            chain_id=settings.chain_id,
            receipt_timeout=settings.receipt_timeout_seconds,
        )

    @property
    def operator_address(self) -> str:
        return self.account.address

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_balance(self, address: str) -> int:
        try:
            return int(await self.w3.eth.get_balance(format_address(address)))
        except _TRANSPORT_ERRORS as exc:
            raise InfrastructureError(f"get_balance({address}) failed: {exc}") from exc

    async def content_hash(self) -> bytes:
        if self._content_hash is None:
            try:
                raw = await self._deployer.functions.getInitCodeHash().call()
            except _TRANSPORT_ERRORS as exc:
                raise InfrastructureError(f"getInitCodeHash failed: {exc}") from exc
            self._content_hash = bytes(raw)
        return self._content_hash

    # ── Writes ───────────────────────────────────────────────────────────

    async def deploy_batch(self, salts: Sequence[bytes]) -> DeployBatchResult:
        """Deploy every salt whose address is still empty in one ``deployMultiple``.

        The contract reverts the whole batch on a single occupied address, so
        occupied addresses are detected first and reported as collisions.
        """
        if not salts:
            raise ValidationError("no salts provided")
        content_hash = await self.content_hash()

        outcomes: list[DeploymentOutcome] = []
        to_deploy: list[bytes] = []
        for salt in salts:
            salt = parse_bytes32(salt)
            target = compute_address(self.factory_address, salt, content_hash)
            try:
                code = await self.w3.eth.get_code(target)
            except _TRANSPORT_ERRORS as exc:
                raise InfrastructureError(f"get_code({target}) failed: {exc}") from exc
            if len(code) > 0:
                outcomes.append(DeploymentOutcome(salt, target, DeploymentCollision(target)))
            else:
                outcomes.append(DeploymentOutcome(salt, target))
                to_deploy.append(salt)

        if not to_deploy:
            return DeployBatchResult(None, outcomes)

        tx_hash = await self._transact(self._deployer.functions.deployMultiple(to_deploy))
        logger.info("deployMultiple confirmed for %d salts", len(to_deploy), extra={"tx_hash": tx_hash})
        return DeployBatchResult(tx_hash, outcomes)

    async def call_contract(self, method: str, args: Mapping[str, Any]) -> str:
        if method != SETTLE_METHOD:
            raise ValidationError(f"unsupported contract method: {method}")

        source = args.get("source")
        if source:
            # Value that reached the address before deployment is still held there.
            await self._transact_raw({"to": format_address(source), "value": 0})

        call = self._router.functions.transferFunds(
            int(args["value_amount"]),
            [format_address(t) for t in args.get("tokens", [])],
            [int(a) for a in args.get("amounts", [])],
            format_address(args["treasury"]),
        )
        tx_hash = await self._transact(call)
        logger.info("transferFunds confirmed", extra={"tx_hash": tx_hash, "deposit_address": source})
        return tx_hash

    async def _transact(self, call) -> str:
        try:
            tx = await call.build_transaction({"from": self.account.address, "chainId": self.chain_id})
        except ContractLogicError as exc:
            raise TransactionReverted(str(exc)) from exc
        except _TRANSPORT_ERRORS as exc:
            raise InfrastructureError(f"build_transaction failed: {exc}") from exc
        return await self._transact_raw(tx)

    async def _transact_raw(self, tx: dict[str, Any]) -> str:
        # Nonce allocation and submission must not interleave.
        async with self._send_lock:
            try:
                tx.setdefault("from", self.account.address)
                tx.setdefault("chainId", self.chain_id)
                tx["nonce"] = await self.w3.eth.get_transaction_count(self.account.address, "pending")
                if "gas" not in tx:
                    tx["gas"] = await self.w3.eth.estimate_gas(tx)
                if "gasPrice" not in tx and "maxFeePerGas" not in tx:
                    tx["gasPrice"] = await self.w3.eth.gas_price
                signed = self.account.sign_transaction(tx)
                raw_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except ContractLogicError as exc:
                raise TransactionReverted(str(exc)) from exc
            except _TRANSPORT_ERRORS as exc:
                raise InfrastructureError(f"send failed: {exc}") from exc
            except Web3Exception as exc:
                raise TransactionReverted(str(exc)) from exc

        tx_hash = "0x" + bytes(raw_hash).hex()
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                raw_hash, timeout=self.receipt_timeout
            )
        except _TRANSPORT_ERRORS as exc:
            raise InfrastructureError(f"no receipt for {tx_hash}: {exc}") from exc
        if receipt["status"] != 1:
            raise TransactionReverted(f"transaction {tx_hash} reverted", tx_hash=tx_hash)
        return tx_hash
