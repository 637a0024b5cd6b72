"""Health check endpoints."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from radhat import __version__
from radhat.api.deps import get_orchestrator
from radhat.core.config import get_settings
from radhat.core.database import get_db
from radhat.core.errors import RadhatError
from radhat.core.types import HealthResponse
from radhat.pipeline.orchestrator import DepositOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(
    orchestrator: DepositOrchestrator = Depends(get_orchestrator),
) -> HealthResponse:
    """Quick liveness probe."""
    return HealthResponse(
        status="ok",
        version=__version__,
        factory_address=orchestrator.factory_address,
        chain_backend=get_settings().chain_backend.value,
    )


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    orchestrator: DepositOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Deep readiness check: database and chain client."""
    checks: dict[str, dict] = {}
    overall = True
    start = time.perf_counter()

    # ── Database ─────────────────────────────────────────────────────
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        checks["database"] = {"status": "up"}
    except Exception as e:
        checks["database"] = {"status": "down", "error": str(e)}
        overall = False

    # ── Chain ────────────────────────────────────────────────────────
    try:
        await orchestrator.verify_content_hash()
        checks["chain"] = {"status": "up"}
    except RadhatError as e:
        checks["chain"] = {"status": "down", "error": e.message}
        overall = False

    elapsed = round((time.perf_counter() - start) * 1000, 1)

    return {
        "status": "healthy" if overall else "degraded",
        "checks": checks,
        "latency_ms": elapsed,
    }
