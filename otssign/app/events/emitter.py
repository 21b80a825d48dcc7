from __future__ import annotations

from typing import Protocol

from otssign.app.events.models import SigningEvent


class SigningEventEmitter(Protocol):
    """
    Interface for broadcasting signing observations.

    Implementations must be:
    - non-blocking (or minimally blocking)
    - fail-safe (emission failures must not break a sign operation)
    - observational only
    """

    async def emit(self, event: SigningEvent) -> None:
        ...


class NullEventEmitter:
    """
    A safe no-op emitter.

    Used when nobody is listening (CLI use, background jobs, tests that do
    not care about events).
    """

    async def emit(self, event: SigningEvent) -> None:
        return
