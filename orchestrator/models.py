# orchestrator/models.py
# @ai-rules:
# 1. [Constraint]: All models are Pydantic BaseModel. Use Field() for defaults and descriptions.
# 2. [Pattern]: Event is frozen -- core fields never change after ingestion. Mutable state lives on EventRecord.
# 3. [Pattern]: EventRecord.transition() is the only way to change status. Enforces pending -> processing -> completed|error.
# 4. [Gotcha]: StatusResponse / EventAccepted use camelCase field names -- dashboards and monitors read them as-is.
"""Pydantic schemas for the orchestrator event core."""
from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .core.errors import InvalidTransition


# =============================================================================
# Enums
# =============================================================================

class EventPriority(str, Enum):
    """Advisory priority. Influences provider choice, never queue order."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    EventPriority.LOW: 0,
    EventPriority.MEDIUM: 1,
    EventPriority.HIGH: 2,
    EventPriority.CRITICAL: 3,
}


class EventStatus(str, Enum):
    """Event lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (EventStatus.COMPLETED, EventStatus.ERROR)


_ALLOWED_TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.PENDING: frozenset({EventStatus.PROCESSING}),
    EventStatus.PROCESSING: frozenset({EventStatus.COMPLETED, EventStatus.ERROR}),
    EventStatus.COMPLETED: frozenset(),
    EventStatus.ERROR: frozenset(),
}


class UseCase(str, Enum):
    """Routing tag. Decides backend choice and queue assignment."""
    CODING = "coding"
    CHAT = "chat"
    TOOLS = "tools"
    SOCIAL = "social"
    FAST = "fast"

    @property
    def is_spoken(self) -> bool:
        return self in SPOKEN_USE_CASES


SPOKEN_USE_CASES = frozenset({UseCase.CHAT, UseCase.TOOLS, UseCase.SOCIAL})


class Provider(str, Enum):
    """Configured LLM backends."""
    CLAUDE_CODE = "claude-code"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    GROK = "grok"
    GROQ = "groq"
    CEREBRAS = "cerebras"

    @property
    def is_coding_agent(self) -> bool:
        return self is Provider.CLAUDE_CODE


class QueueName(str, Enum):
    GENERAL = "general"
    VOICE = "voice"


# =============================================================================
# Event (immutable core)
# =============================================================================

def new_event_id() -> str:
    return f"evt-{uuid.uuid4().hex[:12]}"


class Event(BaseModel):
    """The unit of inbound work. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_event_id, description="Opaque unique id assigned at ingestion")
    type: str = Field(..., description="Free-form tag, e.g. chat_message, code_request")
    source: str = Field(..., description="Origin platform tag: twitch, discord, twitter, dashboard ...")
    priority: EventPriority = EventPriority.MEDIUM
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict[str, Any] = Field(default_factory=dict, description="Payload: message, user, channel ...")
    context: Optional[dict[str, Any]] = Field(None, description="Opaque supplementary payload")

    @property
    def message(self) -> str:
        value = self.data.get("message")
        return value.strip() if isinstance(value, str) else ""

    @property
    def user(self) -> Optional[str]:
        value = self.data.get("user") or self.data.get("username")
        return str(value) if value else None

    def flag(self, key: str) -> bool:
        """Read a boolean hint from the payload (requiresVoice, requiresTools ...)."""
        return self.data.get(key) is True


# =============================================================================
# Routing
# =============================================================================

class RoutingDecision(BaseModel):
    """Derived routing result. Never stored except as record metadata."""
    model_config = ConfigDict(frozen=True)

    provider: Provider
    use_case: UseCase
    reason: str = ""

    @property
    def queue(self) -> QueueName:
        return QueueName.VOICE if self.use_case.is_spoken else QueueName.GENERAL


# =============================================================================
# Event Record (history entry with mutable processing state)
# =============================================================================

class EventRecord(BaseModel):
    """History entry. The Scheduler is the only writer."""
    event: Event
    status: EventStatus = EventStatus.PENDING
    queue: Optional[QueueName] = None
    provider: Optional[Provider] = None
    use_case: Optional[UseCase] = None
    response: Optional[str] = None
    error: Optional[str] = None
    queued_at: float = Field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    duration_ms: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.event.id

    def transition(self, to_status: EventStatus) -> None:
        """Move forward through the lifecycle. Raises InvalidTransition otherwise."""
        if to_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Event {self.id}: {self.status.value} -> {to_status.value} not allowed"
            )
        self.status = to_status

    def to_view(self) -> "EventView":
        return EventView(
            id=self.event.id,
            type=self.event.type,
            source=self.event.source,
            priority=self.event.priority,
            timestamp=self.event.timestamp,
            data=self.event.data,
            context=self.event.context,
            status=self.status,
            queue=self.queue,
            provider=self.provider,
            useCase=self.use_case,
            response=self.response,
            error=self.error,
            duration=self.duration_ms,
            completedAt=self.completed_at,
            metadata=self.metadata,
        )


# =============================================================================
# Notifications
# =============================================================================

class StatusChange(BaseModel):
    """Published on every lifecycle transition."""
    kind: Literal["queued", "processing", "processed", "failed"]
    event_id: str
    status: EventStatus
    queue: Optional[QueueName] = None
    provider: Optional[Provider] = None
    use_case: Optional[UseCase] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    timestamp: float = Field(default_factory=time.time)


# =============================================================================
# API Request / Response Models
# =============================================================================

class EventInput(BaseModel):
    """Ingestion request body."""
    source: str = Field(..., min_length=1, description="Origin platform")
    type: str = Field(..., min_length=1, description="Event type tag")
    priority: EventPriority = EventPriority.MEDIUM
    data: dict[str, Any] = Field(..., description="Event payload")
    context: Optional[dict[str, Any]] = None
    id: Optional[str] = Field(None, description="Caller-supplied id (dedup key). Generated when omitted.")

    def to_event(self) -> Event:
        kwargs: dict[str, Any] = {
            "source": self.source,
            "type": self.type,
            "priority": self.priority,
            "data": self.data,
            "context": self.context,
        }
        if self.id:
            kwargs["id"] = self.id
        return Event(**kwargs)


class EventAccepted(BaseModel):
    """Ingestion response."""
    eventId: str
    status: str = "accepted"
    queue: QueueName
    provider: Provider
    useCase: UseCase


class EventView(BaseModel):
    """Per-event lookup response."""
    id: str
    type: str
    source: str
    priority: EventPriority
    timestamp: datetime
    data: dict[str, Any] = Field(default_factory=dict)
    context: Optional[dict[str, Any]] = None
    status: EventStatus
    queue: Optional[QueueName] = None
    provider: Optional[Provider] = None
    useCase: Optional[UseCase] = None
    response: Optional[str] = None
    error: Optional[str] = None
    duration: Optional[int] = Field(None, description="Processing time in milliseconds")
    completedAt: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class StatusResponse(BaseModel):
    """Queue depths and availability for external polling."""
    queueSize: int
    queuePending: int
    voiceQueueSize: int
    voiceQueuePending: int
    eventHistorySize: int
    availableProviders: list[Provider] = Field(default_factory=list)
    activeOperations: list[dict[str, Any]] = Field(default_factory=list)


class EventStats(BaseModel):
    """Counts over the in-memory history."""
    total: int
    byStatus: dict[EventStatus, int]
    byQueue: dict[QueueName, int]


class AgentInstanceView(BaseModel):
    id: str
    event_id: Optional[str] = None
    role: str
    pid: Optional[int] = None
    status: str
    duration_ms: int


class CleanupResult(BaseModel):
    removedOperations: int
    killedInstances: int
    remainingInstances: int


class ProviderStatus(BaseModel):
    provider: Provider
    configured: bool
    available: bool
    known_bad: bool = False
    last_probe: Optional[float] = None
    last_error: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: float = Field(default_factory=time.time)
