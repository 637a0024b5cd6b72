"""FastAPI dependencies."""

from __future__ import annotations

from fastapi import Request

from radhat.core.errors import ConfigError
from radhat.pipeline.orchestrator import DepositOrchestrator


def get_orchestrator(request: Request) -> DepositOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise ConfigError("orchestrator is not initialised")
    return orchestrator
