from .models import SigningEvent, SigningEventType
from .emitter import SigningEventEmitter, NullEventEmitter
from .memory_emitter import MemoryQueueEventEmitter

__all__ = [
    "SigningEvent",
    "SigningEventType",
    "SigningEventEmitter",
    "NullEventEmitter",
    "MemoryQueueEventEmitter",
]
