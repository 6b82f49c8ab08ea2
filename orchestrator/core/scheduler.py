# orchestrator/core/scheduler.py
# @ai-rules:
# 1. [Constraint]: Scheduler is the ONLY writer of EventRecord status. One task per event id -> single writer.
# 2. [Pattern]: useCase chat|tools|social -> voice queue (serialized); everything else -> general queue.
# 3. [Pattern]: _process() never raises. Failures become status=error + "failed" notification; the queue slot is freed.
# 4. [Gotcha]: subscribe() registers immediately (not on first iteration) so callers never miss the "queued" change.
# 5. [Constraint]: History eviction removes the oldest TERMINAL records only. In-flight records are never evicted.
# 6. [Constraint]: Event-log snapshots go through one FIFO drained by a single writer task, so Redis sees them in order.
"""
Dual Queue Scheduler.

Owns the general and voice WorkQueues plus the in-memory event history.
Constructed once in the FastAPI lifespan and handed to routes via app.state.

    scheduler = Scheduler(router, executor, gateway)
    decision = scheduler.queue_event(event)
    async for change in scheduler.subscribe():
        ...
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional, Protocol

from ..llm import ProviderGateway
from ..models import (
    Event,
    EventRecord,
    EventStats,
    EventStatus,
    QueueName,
    RoutingDecision,
    StatusChange,
    StatusResponse,
)
from ..state.event_log import EventLog
from .errors import DuplicateEventError, QueueClosedError, TaskError
from .executor import ExecutionResult
from .router import EventRouter
from .work_queue import WorkQueue

logger = logging.getLogger(__name__)

SUBSCRIBER_BUFFER = 256


class TaskRunner(Protocol):
    async def run(self, event: Event, routing: RoutingDecision) -> ExecutionResult: ...


class Subscription:
    """Async iterator of StatusChange. Registered on creation; close() to detach."""

    def __init__(self, scheduler: "Scheduler"):
        self._scheduler = scheduler
        self._queue: asyncio.Queue[Optional[StatusChange]] = asyncio.Queue(maxsize=SUBSCRIBER_BUFFER)
        self._closed = False

    def _offer(self, change: Optional[StatusChange]) -> None:
        if self._queue.full():
            # Slow consumer: drop the oldest change rather than block the scheduler.
            self._queue.get_nowait()
            logger.debug("Subscriber buffer full, dropped oldest status change")
        self._queue.put_nowait(change)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> StatusChange:
        if self._closed:
            raise StopAsyncIteration
        change = await self._queue.get()
        if change is None:
            self.close()
            raise StopAsyncIteration
        return change

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._scheduler._subscribers.discard(self)


class Scheduler:
    """General + voice queues, event history, lifecycle notifications."""

    def __init__(
        self,
        router: EventRouter,
        executor: TaskRunner,
        gateway: ProviderGateway,
        general_concurrency: int = 5,
        voice_concurrency: int = 1,
        max_history: int = 1000,
        event_log: Optional[EventLog] = None,
    ):
        self.router = router
        self.executor = executor
        self.gateway = gateway
        self.general = WorkQueue(QueueName.GENERAL.value, general_concurrency)
        self.voice = WorkQueue(QueueName.VOICE.value, voice_concurrency)
        self.max_history = max(1, max_history)
        self.event_log = event_log
        self._history: dict[str, EventRecord] = {}
        self._subscribers: set[Subscription] = set()
        self._log_queue: asyncio.Queue[Optional[EventRecord]] = asyncio.Queue()
        self._log_writer: Optional[asyncio.Task] = None
        self._accepting = True

    @property
    def accepting(self) -> bool:
        return self._accepting

    def _queue_for(self, name: QueueName) -> WorkQueue:
        return self.voice if name is QueueName.VOICE else self.general

    # =========================================================================
    # Submission
    # =========================================================================

    def queue_event(self, event: Event) -> RoutingDecision:
        """Record, route and enqueue. Non-blocking. Raises DuplicateEventError / QueueClosedError."""
        if not self._accepting:
            raise QueueClosedError("scheduler")
        if event.id in self._history:
            raise DuplicateEventError(event.id)

        routing = self.router.route(event, self.gateway.available_providers())
        record = EventRecord(
            event=event,
            queue=routing.queue,
            provider=routing.provider,
            use_case=routing.use_case,
            metadata={"routing_reason": routing.reason},
        )
        self._history[event.id] = record
        self._evict()

        self._queue_for(routing.queue).add(lambda: self._process(record, routing))
        logger.info(
            f"Queued {event.id} ({event.source}/{event.type}) -> {routing.queue.value} queue, "
            f"{routing.provider.value}/{routing.use_case.value}"
        )
        self._publish(record, "queued")
        return routing

    async def _process(self, record: EventRecord, routing: RoutingDecision) -> Optional[str]:
        record.transition(EventStatus.PROCESSING)
        record.started_at = time.time()
        self._publish(record, "processing")

        try:
            result = await self.executor.run(record.event, routing)
        except Exception as e:
            error = TaskError.from_exception(e)
            self._finish(record)
            record.error = error.message
            record.metadata["error_kind"] = error.kind.value
            record.transition(EventStatus.ERROR)
            logger.error(f"Event {record.id} failed ({error.kind.value}): {error.message}")
            self._publish(record, "failed")
            self._evict()
            return None

        self._finish(record)
        record.response = result.response
        record.metadata.update(result.metadata)
        record.transition(EventStatus.COMPLETED)
        logger.info(f"Event {record.id} completed in {record.duration_ms}ms")
        self._publish(record, "processed")
        self._evict()
        return result.response

    @staticmethod
    def _finish(record: EventRecord) -> None:
        record.completed_at = time.time()
        record.duration_ms = int((record.completed_at - (record.started_at or record.completed_at)) * 1000)

    def _evict(self) -> None:
        excess = len(self._history) - self.max_history
        if excess <= 0:
            return
        for event_id, record in list(self._history.items()):
            if excess <= 0:
                break
            if record.status.is_terminal:
                del self._history[event_id]
                excess -= 1

    # =========================================================================
    # Notifications
    # =========================================================================

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        self._subscribers.add(subscription)
        return subscription

    def _publish(self, record: EventRecord, kind: str) -> None:
        change = StatusChange(
            kind=kind,
            event_id=record.id,
            status=record.status,
            queue=record.queue,
            provider=record.provider,
            use_case=record.use_case,
            error=record.error,
            duration_ms=record.duration_ms,
        )
        for subscription in list(self._subscribers):
            subscription._offer(change)
        if self.event_log is not None:
            self._log_queue.put_nowait(record.model_copy(deep=True))
            if self._log_writer is None:
                self._log_writer = asyncio.create_task(self._write_event_log())

    async def _write_event_log(self) -> None:
        while True:
            snapshot = await self._log_queue.get()
            if snapshot is None:
                return
            try:
                await self.event_log.record(snapshot)
            except Exception as e:
                logger.warning(f"Event log write for {snapshot.id} failed (non-fatal): {e}")

    # =========================================================================
    # Queries
    # =========================================================================

    def status(self) -> StatusResponse:
        return StatusResponse(
            queueSize=self.general.size,
            queuePending=self.general.pending,
            voiceQueueSize=self.voice.size,
            voiceQueuePending=self.voice.pending,
            eventHistorySize=len(self._history),
            availableProviders=self.gateway.available_providers(),
            activeOperations=self.gateway.active_operations(),
        )

    def get_event(self, event_id: str) -> Optional[EventRecord]:
        return self._history.get(event_id)

    def list_events(self, limit: int = 50) -> list[EventRecord]:
        """Newest first."""
        records = list(self._history.values())
        records.reverse()
        return records[:limit]

    def stats(self) -> EventStats:
        by_status = {s: 0 for s in EventStatus}
        by_queue = {q: 0 for q in QueueName}
        for record in self._history.values():
            by_status[record.status] += 1
            if record.queue is not None:
                by_queue[record.queue] += 1
        return EventStats(total=len(self._history), byStatus=by_status, byQueue=by_queue)

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self) -> None:
        """Stop accepting work, wait for queued and in-flight tasks, end subscriptions."""
        self._accepting = False
        self.general.close()
        self.voice.close()
        await asyncio.gather(self.general.on_idle(), self.voice.on_idle())
        if self._log_writer is not None:
            self._log_queue.put_nowait(None)
            await self._log_writer
        for subscription in list(self._subscribers):
            subscription._offer(None)
        logger.info(f"Scheduler stopped ({len(self._history)} events in history)")
