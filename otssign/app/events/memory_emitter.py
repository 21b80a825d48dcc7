from __future__ import annotations

import math
from typing import AsyncIterator

import anyio

from otssign.app.events.models import SigningEvent


class MemoryQueueEventEmitter:
    """
    In-memory event channel between a SigningSession and one consumer.

    - unbounded buffer, so emit() never blocks a sign operation
    - events are delivered in emission order
    - stream() ends once close() was called and the buffer is drained
    """

    def __init__(self) -> None:
        self._send, self._receive = anyio.create_memory_object_stream(math.inf)

    async def emit(self, event: SigningEvent) -> None:
        try:
            self._send.send_nowait(event)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            # Closed channel or departed consumer
            return

    async def close(self) -> None:
        await self._send.aclose()

    async def stream(self) -> AsyncIterator[SigningEvent]:
        async with self._receive:
            async for event in self._receive:
                yield event
