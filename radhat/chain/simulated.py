"""Chain client backed by the in-process ledger.

``bootstrap_local_chain`` lays out the same system the deployment script
does on a real network: a registry owned by the operator, a router reading
it, a deployer whose forwarders point at the router, and the capability
writes that let the operator settle to the treasury.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from radhat.chain.client import SETTLE_METHOD
from radhat.chain.deployer import DeterministicDeployer
from radhat.chain.ledger import Ledger
from radhat.chain.registry import PermissionRegistry
from radhat.chain.router import RoutingEngine
from radhat.chain.types import DeployBatchResult
from radhat.core.derivation import format_address
from radhat.core.errors import InfrastructureError, ValidationError
from radhat.core.types import Capability

logger = logging.getLogger(__name__)


@dataclass
class LocalChain:
    """Handles onto a bootstrapped ledger."""

    ledger: Ledger
    registry: PermissionRegistry
    router: RoutingEngine
    deployer: DeterministicDeployer
    operator: str
    treasury: str


def bootstrap_local_chain(
    operator: str,
    treasury: str,
    *,
    owner: str | None = None,
    ledger: Ledger | None = None,
) -> LocalChain:
    """Deploy registry, router and deployer, then grant capabilities.

    ``owner`` defaults to the operator. When the operator is also the
    treasury it gets ``CALLER | TREASURY`` in one write, since a second
    write would replace the first.
    """
    ledger = ledger or Ledger()
    operator = format_address(operator)
    treasury = format_address(treasury)
    owner = format_address(owner) if owner else operator

    registry = PermissionRegistry.deploy(ledger, owner)
    router = RoutingEngine.deploy(ledger, owner, registry)
    deployer = DeterministicDeployer.deploy(ledger, owner, router.address)

    if operator == treasury:
        registry.set_permissions(owner, operator, Capability.CALLER | Capability.TREASURY)
    else:
        registry.set_permissions(owner, operator, Capability.CALLER)
        registry.set_permissions(owner, treasury, Capability.TREASURY)

    logger.info(
        "Local chain ready: registry=%s router=%s deployer=%s init_code_hash=%s",
        registry.address, router.address, deployer.address, deployer.template.content_hash_hex,
    )
    return LocalChain(ledger, registry, router, deployer, operator, treasury)


class SimulatedChainClient:
    """``ChainClient`` over a ``LocalChain``.

    Set ``online = False`` to make every call fail as if the RPC endpoint
    were unreachable.
    """

    def __init__(self, chain: LocalChain) -> None:
        self.chain = chain
        self.online = True

    @property
    def factory_address(self) -> str:
        return self.chain.deployer.address

    @property
    def operator_address(self) -> str:
        return self.chain.operator

    @property
    def ledger(self) -> Ledger:
        return self.chain.ledger

    async def get_balance(self, address: str) -> int:
        self._ensure_online()
        return self.chain.ledger.balance_of(address)

    async def deploy_batch(self, salts: Sequence[bytes]) -> DeployBatchResult:
        self._ensure_online()
        return self.chain.deployer.deploy_batch(self.chain.operator, salts)

    async def call_contract(self, method: str, args: Mapping[str, Any]) -> str:
        self._ensure_online()
        if method != SETTLE_METHOD:
            raise ValidationError(f"unsupported contract method: {method}")

        ledger = self.chain.ledger
        operator = self.chain.operator
        with ledger.transaction(operator) as tx_hash:
            source = args.get("source")
            if source:
                # Zero-value call makes the forwarder push its balance to the router.
                ledger.call(operator, source)
            self.chain.router.transfer_funds(
                operator,
                int(args["value_amount"]),
                list(args.get("tokens", [])),
                list(args.get("amounts", [])),
                args["treasury"],
            )
        return tx_hash

    async def content_hash(self) -> bytes:
        self._ensure_online()
        return self.chain.deployer.init_code_hash()

    def _ensure_online(self) -> None:
        if not self.online:
            raise InfrastructureError("connection refused: simulated chain is offline")
