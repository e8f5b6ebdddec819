"""
notifier.py — In-process event stream for the presentation layer.

Every state change (media session, position, places, notices, alert
lifecycle) is published as an AlertEvent. Subscribers each get their own
bounded queue; a slow subscriber loses its oldest events instead of
blocking the publisher.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Set

from backend.app.capture.models import utc_now

logger = logging.getLogger(__name__)


@dataclass
class AlertEvent:
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    alert_id: Optional[str] = None
    sequence: int = 0
    emitted_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "alert_id": self.alert_id,
            "sequence": self.sequence,
            "emitted_at": self.emitted_at.isoformat(),
            "payload": self.payload,
        }


class EventBus:
    """
    Usage:
        queue = bus.subscribe()
        try:
            event = await queue.get()
        finally:
            bus.unsubscribe(queue)
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscribers: Set["asyncio.Queue[AlertEvent]"] = set()
        self._sequence = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> "asyncio.Queue[AlertEvent]":
        queue: "asyncio.Queue[AlertEvent]" = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[AlertEvent]") -> None:
        self._subscribers.discard(queue)

    def publish(self, type: str, payload: Dict[str, Any], *, alert_id: Optional[str] = None) -> AlertEvent:
        self._sequence += 1
        event = AlertEvent(type=type, payload=payload, alert_id=alert_id, sequence=self._sequence)
        for queue in list(self._subscribers):
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                logger.debug("Event subscriber lagging; dropped oldest event")
            queue.put_nowait(event)
        return event
