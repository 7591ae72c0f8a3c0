"""Multi-engine prompt execution orchestrator."""

__version__ = "0.1.0"
