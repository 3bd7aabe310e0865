"""
Core components of the presence-sync kernel.

This package contains:
- bus: Event Bus implementation
- room: Room dataclass
- manager: RoomManager for rooms and config
- transport: Transport contract and channel event types
"""

from presence_sync.core.room import Room
from presence_sync.core.bus import Event, EventBus, EventFilter
from presence_sync.core.manager import RoomManager
from presence_sync.core.transport import OutgoingMessage, Transport, connect_params

__all__ = [
    "Room",
    "Event",
    "EventBus",
    "EventFilter",
    "RoomManager",
    "OutgoingMessage",
    "Transport",
    "connect_params",
]
