# orchestrator/routes/status.py
"""Status surface: queue depths, history size, provider availability."""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from ..core.scheduler import Scheduler
from ..dependencies import get_gateway, get_scheduler
from ..llm import ProviderGateway
from ..models import ProviderStatus, StatusResponse

router = APIRouter(tags=["status"])


@router.get("/status", response_model=StatusResponse)
async def get_status(scheduler: Scheduler = Depends(get_scheduler)) -> StatusResponse:
    """Never blocks either queue."""
    return scheduler.status()


@router.get("/providers", response_model=List[ProviderStatus])
async def list_providers(gateway: ProviderGateway = Depends(get_gateway)) -> List[ProviderStatus]:
    """Every known provider with configured / available / known-bad flags."""
    return gateway.provider_statuses()
