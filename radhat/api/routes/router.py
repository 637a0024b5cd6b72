"""Routing cycle trigger."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from radhat.api.deps import get_orchestrator
from radhat.core.types import RouteBatchResult
from radhat.pipeline.orchestrator import DepositOrchestrator

router = APIRouter()


@router.post("/router", response_model=RouteBatchResult)
async def run_router(
    orchestrator: DepositOrchestrator = Depends(get_orchestrator),
) -> RouteBatchResult:
    """Run one routing cycle: fund, deploy and settle every open deposit.

    Per-record failures are reported in ``errors`` with a 200; the request
    only fails if the cycle itself could not start.
    """
    return await orchestrator.run_routing_cycle()
