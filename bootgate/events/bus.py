"""Startup event stream — what the coordinator, gates and runner did, in order.

Topics:

  coordinator.transition   phase changes (from, to, reason, detail)
  gate.attempt             every probe attempt, ok or not
  migration.applied        every committed step

Patterns use shell wildcards: "gate.*" follows the probes, "*" follows
everything. The bus keeps a bounded tail of recent events so the health
endpoint and the CLI can show how startup went after the fact.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from collections import deque
from datetime import datetime
from typing import Any, Callable, Awaitable

from pydantic import BaseModel, Field

from bootgate.types import new_id, utcnow

_logger = logging.getLogger(__name__)

TRANSITION = "coordinator.transition"
GATE_ATTEMPT = "gate.attempt"
MIGRATION_APPLIED = "migration.applied"

EventHandler = Callable[["Event"], Awaitable[None]]


class Event(BaseModel):
    """One thing that happened during startup."""

    id: str = Field(default_factory=new_id)
    topic: str
    data: dict[str, Any] = Field(default_factory=dict)
    source: str = ""
    timestamp: datetime = Field(default_factory=utcnow)

    def matches(self, pattern: str) -> bool:
        return pattern == "*" or fnmatch.fnmatchcase(self.topic, pattern)


class EventBus:
    """Fan events out to pattern subscribers and remember the recent ones."""

    def __init__(self, history_limit: int = 500) -> None:
        self._handlers: list[tuple[str, EventHandler]] = []
        self._recent: deque[Event] = deque(maxlen=history_limit)

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        self._handlers.append((pattern, handler))

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        try:
            self._handlers.remove((pattern, handler))
        except ValueError:
            pass

    async def emit(self, topic: str, data: dict | None = None, source: str = "") -> Event:
        """Record an event and deliver it to every matching handler.

        Handlers run concurrently. One that raises is logged; the emitter
        (a gate or the runner) carries on regardless.
        """
        event = Event(topic=topic, data=data or {}, source=source)
        self._recent.append(event)

        targets = [h for pattern, h in self._handlers if event.matches(pattern)]
        if not targets:
            return event

        outcomes = await asyncio.gather(*(h(event) for h in targets), return_exceptions=True)
        for handler, outcome in zip(targets, outcomes):
            if isinstance(outcome, Exception):
                _logger.warning(
                    "Event handler %s failed on '%s': %s",
                    getattr(handler, "__qualname__", handler), topic, outcome,
                )
        return event

    def history(self, topic_filter: str = "*", limit: int = 50) -> list[Event]:
        """Up to ``limit`` recent events matching ``topic_filter``, newest first."""
        found: list[Event] = []
        for event in reversed(self._recent):
            if event.matches(topic_filter):
                found.append(event)
                if len(found) >= limit:
                    break
        return found

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def topics(self) -> list[str]:
        """Distinct topics seen so far, in first-seen order."""
        return list(dict.fromkeys(e.topic for e in self._recent))
