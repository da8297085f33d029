"""
Core system components.
"""

from .event_bus import EventBus, EventType, Event
from .persistence import PersistenceError, JsonStateFile, PositionStore, KnownTokenStore

__all__ = [
    "EventBus", "EventType", "Event",
    "PersistenceError", "JsonStateFile", "PositionStore", "KnownTokenStore",
]
