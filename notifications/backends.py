"""Real-time fan-out transports.

A backend exposes ``publish(room, event, payload)``. Rooms are user ids as
strings. The transport itself (websockets, a broker) lives outside this
service; the logging backend is the default for deployments that have none.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


class LoggingBackend:
    def publish(self, room: str, event: str, payload: dict[str, Any]) -> None:
        logger.info("realtime %s -> room %s", event, room, extra={"room": room, "event": event})


@dataclass
class PublishedEvent:
    room: str
    event: str
    payload: dict[str, Any]


@dataclass
class MemoryBackend:
    """Keeps published events in process; used by the test settings."""

    events: list[PublishedEvent] = field(default_factory=list)

    def publish(self, room: str, event: str, payload: dict[str, Any]) -> None:
        self.events.append(PublishedEvent(room=room, event=event, payload=dict(payload)))

    def for_event(self, event: str) -> list[PublishedEvent]:
        return [e for e in self.events if e.event == event]

    def clear(self) -> None:
        self.events.clear()
