"""Feed Orchestrator - XML feed sync and product categorization jobs."""

__version__ = "0.1.0"
