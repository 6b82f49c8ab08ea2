# orchestrator/dependencies.py
"""FastAPI dependency injection. Instances live on app.state (set in main.py lifespan)."""
from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from .core.scheduler import Scheduler
from .llm import ProviderGateway
from .state.event_log import EventLog


def get_scheduler(request: Request) -> Scheduler:
    """Get the Scheduler. Raises 503 if the lifespan has not initialized it."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    return scheduler


def get_gateway(request: Request) -> ProviderGateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="Provider gateway not initialized")
    return gateway


def get_event_log(request: Request) -> Optional[EventLog]:
    """Event log is optional (REDIS_HOST unset) -- None is a valid answer."""
    return getattr(request.app.state, "event_log", None)
