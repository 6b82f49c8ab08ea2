"""Streaming assistant orchestrator -- event processing core."""

__version__ = "1.0.0"
