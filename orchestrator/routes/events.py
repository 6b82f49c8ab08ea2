# orchestrator/routes/events.py
# @ai-rules:
# 1. [Pattern]: POST /events and POST /event are the same handler (legacy monitors post to /event).
# 2. [Pattern]: Error mapping: DuplicateEventError -> 409, QueueClosedError -> 503, unknown id -> 404.
# 3. [Gotcha]: GET /events/{id} falls back to the Redis event log for ids evicted from in-memory history.
# 4. [Gotcha]: /events/stats is declared before /events/{event_id} so "stats" is never read as an id.
"""
Event ingestion and lookup.

Monitors and dashboards POST events here; the response carries the assigned
id plus the routing decision so callers can poll GET /events/{id}.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.errors import DuplicateEventError, QueueClosedError
from ..core.scheduler import Scheduler
from ..dependencies import get_event_log, get_scheduler
from ..models import EventAccepted, EventInput, EventStats, EventView
from ..state.event_log import EventLog

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


@router.post("/events", response_model=EventAccepted, status_code=202)
@router.post("/event", response_model=EventAccepted, status_code=202, include_in_schema=False)
async def ingest_event(
    body: EventInput,
    scheduler: Scheduler = Depends(get_scheduler),
) -> EventAccepted:
    """Accept an event for asynchronous processing."""
    event = body.to_event()
    try:
        routing = scheduler.queue_event(event)
    except DuplicateEventError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except QueueClosedError:
        raise HTTPException(status_code=503, detail="Orchestrator is shutting down")
    except Exception as e:
        logger.exception(f"Failed to queue event {event.id}")
        raise HTTPException(status_code=500, detail=f"Failed to queue event: {e}")

    return EventAccepted(
        eventId=event.id,
        queue=routing.queue,
        provider=routing.provider,
        useCase=routing.use_case,
    )


@router.get("/events", response_model=List[EventView])
async def list_events(
    limit: int = Query(50, ge=1, le=1000, description="Max events to return"),
    scheduler: Scheduler = Depends(get_scheduler),
) -> List[EventView]:
    """Recent events, newest first."""
    return [record.to_view() for record in scheduler.list_events(limit)]


@router.get("/events/stats", response_model=EventStats)
async def event_stats(scheduler: Scheduler = Depends(get_scheduler)) -> EventStats:
    """Counts by status and queue over the retained history."""
    return scheduler.stats()


@router.get("/events/{event_id}", response_model=EventView)
async def get_event(
    event_id: str,
    scheduler: Scheduler = Depends(get_scheduler),
    event_log: Optional[EventLog] = Depends(get_event_log),
) -> EventView:
    """Current status/response/error of one event."""
    record = scheduler.get_event(event_id)
    if record is not None:
        return record.to_view()
    if event_log is not None:
        view = await event_log.get(event_id)
        if view is not None:
            return view
    raise HTTPException(status_code=404, detail=f"Event {event_id} not found")
