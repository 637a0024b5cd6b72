"""Deposit lifecycle pipeline."""

from radhat.pipeline.orchestrator import DepositOrchestrator

__all__ = ["DepositOrchestrator"]
