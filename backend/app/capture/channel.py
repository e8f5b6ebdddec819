"""
channel.py — Ordered event channel between a recording and its session.

A recording primitive pushes ChunkReceived events as data becomes
available, followed by exactly one RecordingFinalized event. The owning
RecorderController consumes the channel in order. Anything pushed after
finalization is dropped, so a late producer can never append to a
session that has already been assembled or discarded.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Union


@dataclass(frozen=True)
class ChunkReceived:
    sequence: int
    data: bytes = field(repr=False)
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class RecordingFinalized:
    chunk_count: int
    reason: str = "stopped"  # stopped | aborted


RecordingEvent = Union[ChunkReceived, RecordingFinalized]


class RecordingChannel:
    """Single-consumer FIFO of recording events for one MediaSession."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._queue: "asyncio.Queue[RecordingEvent]" = asyncio.Queue()
        self._sequence = 0
        self._finalized = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def push_chunk(self, data: bytes) -> bool:
        """Queue a chunk. Empty chunks and late chunks are dropped."""
        if self._finalized or not data:
            return False
        self._queue.put_nowait(ChunkReceived(sequence=self._sequence, data=data))
        self._sequence += 1
        return True

    def finalize(self, reason: str = "stopped") -> bool:
        """Close the channel; only the first call emits an event."""
        if self._finalized:
            return False
        self._finalized = True
        self._queue.put_nowait(
            RecordingFinalized(chunk_count=self._sequence, reason=reason)
        )
        return True

    async def __aiter__(self) -> AsyncIterator[RecordingEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if isinstance(event, RecordingFinalized):
                return
