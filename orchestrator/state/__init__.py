# orchestrator/state/__init__.py
"""Optional Redis persistence for event records."""
from .event_log import EventLog
from .redis_client import RedisClient

__all__ = ["EventLog", "RedisClient"]
