# orchestrator/routes/agents.py
# @ai-rules:
# 1. [Pattern]: Read-only view of running coding-agent processes. No coding backend -> empty list / 404.
"""Coding-agent instance listing."""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import get_gateway
from ..llm import ProviderGateway
from ..models import AgentInstanceView

router = APIRouter(prefix="/agents", tags=["agents"])


@router.get("", response_model=List[AgentInstanceView])
async def list_agents(gateway: ProviderGateway = Depends(get_gateway)) -> List[AgentInstanceView]:
    agent = gateway.coding_agent
    if agent is None:
        return []
    return [AgentInstanceView(**i) for i in agent.list_instances()]


@router.get("/{instance_id}", response_model=AgentInstanceView)
async def get_agent(instance_id: str, gateway: ProviderGateway = Depends(get_gateway)) -> AgentInstanceView:
    agent = gateway.coding_agent
    instance = agent.get_instance(instance_id) if agent is not None else None
    if instance is None:
        raise HTTPException(status_code=404, detail=f"Agent instance {instance_id} not found")
    return AgentInstanceView(**instance)
