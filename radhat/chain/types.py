"""Values returned by chain clients."""

from __future__ import annotations

from dataclasses import dataclass, field

from radhat.core.errors import DeploymentCollision


@dataclass
class DeploymentOutcome:
    """Result for one salt inside a deployment batch.

    A collision is an expected outcome, carried as a value rather than raised
    so that it cannot abort the rest of the batch.
    """

    salt: bytes
    address: str
    collision: DeploymentCollision | None = None

    @property
    def deployed(self) -> bool:
        return self.collision is None


@dataclass
class DeployBatchResult:
    """One batched deployment; ``tx_hash`` is None if nothing was submitted."""

    tx_hash: str | None
    outcomes: list[DeploymentOutcome] = field(default_factory=list)

    @property
    def deployed(self) -> list[DeploymentOutcome]:
        return [o for o in self.outcomes if o.deployed]

    @property
    def collisions(self) -> list[DeploymentOutcome]:
        return [o for o in self.outcomes if not o.deployed]

