"""Deterministic forwarder deployer (CREATE2 factory)."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from radhat.chain.forwarder import Forwarder, ForwarderTemplate
from radhat.chain.ledger import Ledger
from radhat.chain.types import DeployBatchResult, DeploymentOutcome
from radhat.core.derivation import compute_address, derive_salt, format_address, parse_bytes32
from radhat.core.errors import DeploymentCollision, ValidationError

logger = logging.getLogger(__name__)

DEPLOYER_CODE = b"radhat:DeterministicProxyDeployer"


class DeterministicDeployer:
    """Deploys forwarders at CREATE2 addresses derived from namespaced salts.

    The deployer takes salts that are already namespaced (see
    ``radhat.core.derivation.derive_salt``). The sender of a deployment is the
    operator, not the requester, so namespacing has to happen before the
    salt reaches the chain for off-chain precomputation to match.
    """

    def __init__(self, ledger: Ledger, address: str, template: ForwarderTemplate) -> None:
        self.ledger = ledger
        self.address = format_address(address)
        self.template = template

    @classmethod
    def deploy(
        cls,
        ledger: Ledger,
        deployer: str,
        forward_to: str,
        *,
        address: str | None = None,
    ) -> "DeterministicDeployer":
        template = ForwarderTemplate.for_destination(forward_to)
        address = format_address(address) if address else ledger.new_address("deployer")
        factory = cls(ledger, address, template)
        with ledger.transaction(deployer):
            ledger.install(address, DEPLOYER_CODE, factory)
        return factory

    def receive(self, ledger: Ledger, this: str, sender: str, amount: int) -> None:
        if amount:
            raise ValidationError("deployer does not accept value")

    @property
    def forward_to(self) -> str:
        return self.template.destination

    def init_code_hash(self) -> bytes:
        return self.template.content_hash

    def compute_address(self, salt: bytes | str) -> str:
        return compute_address(self.address, salt, self.template.content_hash)

    def calculate_destination_addresses(
        self, user_salts: Sequence[bytes | str], requester: str
    ) -> list[str]:
        """Addresses ``requester``'s raw salts map to, before any deployment."""
        return [self.compute_address(derive_salt(s, requester)) for s in user_salts]

    def deploy_batch(self, sender: str, salts: Sequence[bytes | str]) -> DeployBatchResult:
        """Deploy one forwarder per salt in a single invocation.

        Salts whose address already holds code come back as collisions;
        the remaining salts are still deployed.
        """
        if not salts:
            raise ValidationError("no salts provided")
        parsed = [parse_bytes32(s) for s in salts]

        outcomes: list[DeploymentOutcome] = []
        with self.ledger.transaction(sender) as tx_hash:
            for salt in parsed:
                target = self.compute_address(salt)
                if self.ledger.has_code(target):
                    outcomes.append(DeploymentOutcome(salt, target, DeploymentCollision(target)))
                    continue
                self.ledger.install(target, self.template.runtime_code, Forwarder(self.forward_to))
                self.ledger.emit("ProxyDeployed", self.address, proxy=target, salt="0x" + salt.hex())
                outcomes.append(DeploymentOutcome(salt, target))

        result = DeployBatchResult(tx_hash, outcomes)
        logger.info(
            "Deployed %d forwarders, %d collisions", len(result.deployed), len(result.collisions),
            extra={"tx_hash": tx_hash},
        )
        return result

    def deploy_one(self, sender: str, salt: bytes | str) -> str:
        """Deploy a single forwarder; raises ``DeploymentCollision`` if occupied."""
        result = self.deploy_batch(sender, [salt])
        outcome = result.outcomes[0]
        if outcome.collision is not None:
            raise outcome.collision
        return outcome.address
