"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from radhat import __version__
from radhat.api.errors import register_error_handlers
from radhat.api.middleware import RequestIDMiddleware
from radhat.api.routes import deposits, health
from radhat.api.routes import router as routing
from radhat.core.config import get_settings
from radhat.core.database import init_models
from radhat.core.logging import setup_logging
from radhat.pipeline.orchestrator import DepositOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup and shutdown events."""
    settings = get_settings()
    setup_logging(env=settings.app_env, log_level="DEBUG" if settings.debug else "INFO")

    if app.state.orchestrator is None:
        await init_models()
        app.state.orchestrator = build_orchestrator(settings)

    # Refuse to hand out addresses the deployer would not deploy to.
    await app.state.orchestrator.verify_content_hash()

    logger.info(
        "Starting %s in %s mode (backend=%s, factory=%s)",
        settings.app_name,
        settings.app_env,
        settings.chain_backend.value,
        app.state.orchestrator.factory_address,
    )
    yield
    logger.info("Shutting down %s", settings.app_name)


def create_app(orchestrator: DepositOrchestrator | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass ``orchestrator`` to skip building one from settings at startup.
    """
    settings = get_settings()

    app = FastAPI(
        title="RADHAT Router API",
        description=(
            "Deterministic deposit addresses with permissioned settlement to a treasury.\n\n"
            "Addresses are derived with CREATE2 before anything is deployed; a routing "
            "cycle deploys forwarders for funded addresses and settles their balances."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url=None if settings.app_env == "production" else "/api/docs",
        redoc_url=None if settings.app_env == "production" else "/api/redoc",
        openapi_url=None if settings.app_env == "production" else "/api/openapi.json",
        openapi_tags=[
            {"name": "health", "description": "Liveness and readiness probes"},
            {"name": "deposits", "description": "Deposit address allocation and lookup"},
            {"name": "router", "description": "Routing cycle: fund, deploy, settle"},
        ],
    )
    app.state.orchestrator = orchestrator

    # ── CORS ─────────────────────────────────────────────────────────
    allowed_origins = [o.strip() for o in settings.cors_allowed_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID", "Accept"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestIDMiddleware)

    # ── Access logging middleware ────────────────────────────────────
    @app.middleware("http")
    async def access_log(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed,
            extra={"method": request.method, "path": request.url.path,
                   "status_code": response.status_code, "duration_ms": round(elapsed, 1),
                   "request_id": response.headers.get("X-Request-ID")},
        )
        return response

    # ── Routes ───────────────────────────────────────────────────────
    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(deposits.router, prefix="/api", tags=["deposits"])
    app.include_router(routing.router, prefix="/api", tags=["router"])

    # ── Structured error handlers ──────────────────────────────────
    register_error_handlers(app)

    return app


app = create_app()
