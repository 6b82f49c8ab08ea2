# orchestrator/routes/admin.py
# @ai-rules:
# 1. [Pattern]: POST /admin/cleanup drops operation-tracking entries and kills coding agents older than max_age.
# 2. [Constraint]: Killed agents fail their events through the normal ProviderError path; nothing is written here.
"""Operator maintenance endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_gateway
from ..llm import DEFAULT_OPERATION_MAX_AGE, ProviderGateway
from ..models import CleanupResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/cleanup", response_model=CleanupResult)
async def cleanup(
    max_age: float = Query(DEFAULT_OPERATION_MAX_AGE, ge=0, description="Age in seconds considered hanging"),
    gateway: ProviderGateway = Depends(get_gateway),
) -> CleanupResult:
    """Clear hanging operations and stale coding-agent processes."""
    removed = gateway.cleanup_hanging_operations(max_age)
    agent = gateway.coding_agent
    killed = await agent.cleanup_stale(max_age) if agent is not None else 0
    remaining = len(agent.list_instances()) if agent is not None else 0
    logger.info(f"Admin cleanup: {removed} operations removed, {killed} agents killed, {remaining} remaining")
    return CleanupResult(removedOperations=removed, killedInstances=killed, remainingInstances=remaining)
