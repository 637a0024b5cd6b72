"""RADHAT: deterministic deposit addresses routed to a single treasury."""

__version__ = "0.3.0"
