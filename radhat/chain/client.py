"""Chain client interface consumed by the orchestrator."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from radhat.chain.types import DeployBatchResult

# Settlement of one deposit address. Arguments:
#   source        deposit address whose forwarder is flushed first
#   value_amount  native value the router moves to the treasury
#   tokens        token addresses (may be empty)
#   amounts       token amounts, same length as ``tokens``
#   treasury      destination; must hold the TREASURY capability
SETTLE_METHOD = "transferFunds"


class ChainClient(Protocol):
    """What the orchestrator needs from a chain.

    Implementations raise ``InfrastructureError`` when the chain cannot be
    reached and a domain error (``AuthorizationError``, ``TransferFailure``,
    ``TransactionReverted``, ...) when an invocation itself fails.
    """

    factory_address: str
    operator_address: str

    async def get_balance(self, address: str) -> int: ...

    async def deploy_batch(self, salts: Sequence[bytes]) -> DeployBatchResult: ...

    async def call_contract(self, method: str, args: Mapping[str, Any]) -> str: ...

    async def content_hash(self) -> bytes: ...
