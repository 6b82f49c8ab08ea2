# orchestrator/routes/__init__.py
"""API routes for the orchestrator."""
from .admin import router as admin_router
from .agents import router as agents_router
from .events import router as events_router
from .status import router as status_router

__all__ = [
    "admin_router",
    "agents_router",
    "events_router",
    "status_router",
]
