# orchestrator/core/errors.py
# @ai-rules:
# 1. [Constraint]: Only ProviderError and TaskError(kind=INTERNAL) may mark an event "error".
# 2. [Pattern]: ToolExecutionError and SidecarError are caught where raised and logged. They never reach the Scheduler.
# 3. [Pattern]: TaskError.from_exception() is the single mapping from arbitrary exceptions to task failures.
"""Error taxonomy for the event processing core."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""
    pass


class RoutingError(OrchestratorError):
    """Reserved for event validation failures. The router itself is total."""
    pass


class ProviderError(OrchestratorError):
    """Transport, timeout, or authentication failure calling an LLM backend."""

    def __init__(self, provider: str, cause: str | BaseException):
        self.provider = provider
        self.cause = cause
        super().__init__(f"{provider}: {cause}")


class ToolExecutionError(OrchestratorError):
    """A tool call failed. Degrades to a text-only response."""

    def __init__(self, tool: str, cause: str | BaseException):
        self.tool = tool
        self.cause = cause
        super().__init__(f"Tool {tool} failed: {cause}")


class SidecarError(OrchestratorError):
    """Memory or audio sidecar failure. Always non-fatal."""

    def __init__(self, sidecar: str, cause: str | BaseException):
        self.sidecar = sidecar
        self.cause = cause
        super().__init__(f"{sidecar} sidecar failed: {cause}")


class TaskErrorKind(str, Enum):
    PROVIDER_FAILURE = "provider_failure"
    INTERNAL = "internal"


class TaskError(OrchestratorError):
    """Terminal failure of a single event's processing."""

    def __init__(
        self,
        kind: TaskErrorKind,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        self.kind = kind
        self.message = message
        self.cause = cause
        super().__init__(message)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "TaskError":
        if isinstance(exc, TaskError):
            return exc
        if isinstance(exc, ProviderError):
            return cls(TaskErrorKind.PROVIDER_FAILURE, str(exc), exc)
        return cls(TaskErrorKind.INTERNAL, f"{type(exc).__name__}: {exc}", exc)


class DuplicateEventError(OrchestratorError):
    """An event with this id is already in the history."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} already submitted")


class InvalidTransition(OrchestratorError):
    """Attempted a status change that is not pending->processing->terminal."""
    pass


class QueueClosedError(OrchestratorError):
    """Submission after shutdown began."""

    def __init__(self, queue: str):
        self.queue = queue
        super().__init__(f"Queue {queue} is closed")
