"""Deposit address endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status

from radhat.api.deps import get_orchestrator
from radhat.core.types import (
    CreateDepositRequest,
    CreateDepositResponse,
    DepositInfo,
    DepositStatus,
    ListDepositsResponse,
)
from radhat.pipeline.orchestrator import DepositOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/deposit", response_model=CreateDepositResponse, status_code=status.HTTP_201_CREATED)
async def create_deposit(
    body: CreateDepositRequest,
    orchestrator: DepositOrchestrator = Depends(get_orchestrator),
) -> CreateDepositResponse:
    """Allocate a new deposit address for ``body.user``.

    The address is computed, not deployed; its forwarder is deployed by the
    first routing cycle that sees it funded.
    """
    return await orchestrator.create_deposit(body.user)


@router.get("/deposits", response_model=ListDepositsResponse)
async def list_deposits(
    status_filter: DepositStatus | None = Query(default=None, alias="status"),
    user: str | None = Query(default=None, description="Only deposits of this requester"),
    orchestrator: DepositOrchestrator = Depends(get_orchestrator),
) -> ListDepositsResponse:
    deposits = await orchestrator.list_deposits(status=status_filter, user_address=user)
    return ListDepositsResponse(deposits=deposits, total=len(deposits))


@router.get("/deposits/{address}", response_model=DepositInfo)
async def get_deposit(
    address: str,
    orchestrator: DepositOrchestrator = Depends(get_orchestrator),
) -> DepositInfo:
    return await orchestrator.get_deposit(address)
