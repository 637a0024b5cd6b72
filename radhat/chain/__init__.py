"""Chain-side units and the clients the orchestrator drives them through."""
