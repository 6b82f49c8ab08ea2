# orchestrator/state/event_log.py
# @ai-rules:
# 1. [Pattern]: Key schema: orchestrator:event:{id} (JSON EventView, TTL) + orchestrator:events:recent (LPUSH ids, LTRIM cap).
# 2. [Constraint]: Writes are best-effort. A Redis failure is logged "(non-fatal)" and never reaches the Scheduler.
# 3. [Gotcha]: The recent list is pushed only on the first (pending) write, so ids appear once.
"""Redis mirror of event records. Serves lookups for ids evicted from memory."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from pydantic import ValidationError

from ..models import EventRecord, EventStatus, EventView

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

EVENT_KEY = "orchestrator:event:{event_id}"
RECENT_KEY = "orchestrator:events:recent"


class EventLog:
    """Persists EventRecord snapshots on every status transition."""

    def __init__(self, redis: "Redis", ttl_seconds: int = 86400, recent_limit: int = 1000):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.recent_limit = recent_limit

    async def record(self, record: EventRecord) -> None:
        key = EVENT_KEY.format(event_id=record.id)
        try:
            await self.redis.set(key, record.to_view().model_dump_json(), ex=self.ttl_seconds)
            if record.status is EventStatus.PENDING:
                await self.redis.lpush(RECENT_KEY, record.id)
                await self.redis.ltrim(RECENT_KEY, 0, self.recent_limit - 1)
        except Exception as e:
            logger.warning(f"Event log write failed for {record.id} (non-fatal): {e}")

    async def get(self, event_id: str) -> Optional[EventView]:
        try:
            raw = await self.redis.get(EVENT_KEY.format(event_id=event_id))
        except Exception as e:
            logger.warning(f"Event log read failed for {event_id} (non-fatal): {e}")
            return None
        if not raw:
            return None
        try:
            return EventView.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Corrupt event log entry for {event_id}: {e}")
            return None

    async def recent(self, limit: int = 50) -> list[EventView]:
        """Newest first. Entries whose TTL expired are skipped."""
        try:
            ids = await self.redis.lrange(RECENT_KEY, 0, limit - 1)
        except Exception as e:
            logger.warning(f"Event log list failed (non-fatal): {e}")
            return []
        views = []
        for event_id in ids:
            view = await self.get(event_id)
            if view is not None:
                views.append(view)
        return views
