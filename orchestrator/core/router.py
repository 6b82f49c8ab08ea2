# orchestrator/core/router.py
# @ai-rules:
# 1. [Constraint]: Pure and total. No I/O, no clock, no randomness. Same (event, available) -> same decision.
# 2. [Pattern]: Rule order: coding -> interactive (social|tools|chat) -> fast. First match wins.
# 3. [Gotcha]: Coding events with no coding provider available fall through to FAST, never to interactive.
# 4. [Pattern]: Empty availability still returns the preference head; the Gateway then fails with ProviderError.
"""
Event Router: maps an inbound event to a {provider, use_case} decision.

Priority is advisory. High/critical social events borrow the chat preference
order (strongest models first); low-priority events without a message skip
the interactive rule and go to the fast tier.
"""
from __future__ import annotations

import re
from typing import Mapping, Sequence

from ..config import DEFAULT_PREFERENCES
from ..models import Event, EventPriority, Provider, RoutingDecision, UseCase

# =============================================================================
# Classification tables
# =============================================================================

CODING_TYPES = frozenset({"code_request", "coding", "code_review", "development", "dev_task"})
CODING_TOKENS = frozenset({"code", "coding", "dev"})

SOCIAL_SOURCES = frozenset({"twitter", "x", "reddit", "social", "bluesky"})
CHAT_SOURCES = frozenset({"twitch", "discord", "dashboard", "chat", "youtube"}) | SOCIAL_SOURCES
INTERACTIVE_TOKENS = frozenset({
    "chat", "message", "social", "mention", "reply", "dm", "comment", "post", "tweet", "voice", "speak",
})

TOOL_TYPES = frozenset({"browser_action", "avatar_expression"})
TOOL_FLAGS = ("requiresTools", "requiresBrowser", "requiresAvatar")

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


def _tokens(value: str) -> set[str]:
    return {t for t in _TOKEN_SPLIT.split(value.lower()) if t}


def is_coding_event(event: Event) -> bool:
    event_type = event.type.lower()
    return event_type in CODING_TYPES or bool(_tokens(event_type) & CODING_TOKENS)


def is_interactive_event(event: Event) -> bool:
    if event.message:
        return True
    if event.priority is EventPriority.LOW:
        return False
    source = event.source.lower()
    return source in CHAT_SOURCES or bool(_tokens(event.type) & INTERACTIVE_TOKENS)


def requires_tools(event: Event) -> bool:
    return event.type.lower() in TOOL_TYPES or any(event.flag(f) for f in TOOL_FLAGS)


def interactive_use_case(event: Event) -> UseCase:
    if event.source.lower() in SOCIAL_SOURCES:
        return UseCase.SOCIAL
    if requires_tools(event):
        return UseCase.TOOLS
    return UseCase.CHAT


# =============================================================================
# Router
# =============================================================================

class EventRouter:
    """Stateless apart from its (immutable) preference table."""

    def __init__(self, preferences: Mapping[UseCase, Sequence[Provider]]):
        self.preferences = {uc: tuple(order) for uc, order in preferences.items()}

    def _order_for(self, use_case: UseCase, event: Event) -> tuple[Provider, ...]:
        if use_case is UseCase.SOCIAL and event.priority.rank >= EventPriority.HIGH.rank:
            return self.preferences.get(UseCase.CHAT, ())
        return self.preferences.get(use_case, ())

    def _select(
        self,
        order: Sequence[Provider],
        available: Sequence[Provider],
    ) -> tuple[Provider, str]:
        available_set = set(available)
        for provider in order:
            if provider in available_set:
                return provider, "preferred"
        if available:
            return available[0], "first available"
        # Nothing usable at all. Still total: return the preference head.
        head = order[0] if order else next(iter(Provider))
        return head, "none available"

    def route(self, event: Event, available: Sequence[Provider]) -> RoutingDecision:
        available = list(available)

        # Rule 1: coding
        if is_coding_event(event):
            coding = [p for p in self.preferences.get(UseCase.CODING, ()) if p in available]
            if coding:
                return RoutingDecision(
                    provider=coding[0],
                    use_case=UseCase.CODING,
                    reason=f"coding type '{event.type}'",
                )
            # No coding provider: straight to rule 3.
            return self._decide(UseCase.FAST, event, available, "coding provider unavailable")

        # Rule 2: interactive
        if is_interactive_event(event):
            use_case = interactive_use_case(event)
            return self._decide(use_case, event, available, f"interactive from {event.source}")

        # Rule 3: fast
        return self._decide(UseCase.FAST, event, available, "background event")

    def _decide(
        self,
        use_case: UseCase,
        event: Event,
        available: Sequence[Provider],
        why: str,
    ) -> RoutingDecision:
        provider, how = self._select(self._order_for(use_case, event), available)
        return RoutingDecision(provider=provider, use_case=use_case, reason=f"{why}; {how}")


def route(
    event: Event,
    available: Sequence[Provider],
    preferences: Mapping[UseCase, Sequence[Provider]] | None = None,
) -> RoutingDecision:
    """Functional form of EventRouter.route()."""
    if preferences is None:
        preferences = DEFAULT_PREFERENCES
    return EventRouter(preferences).route(event, available)
