"""
presence-sync: Room presence reconciliation for channel-based chat clients.

This library provides the bookkeeping between a raw presence feed and a view:
- Full-state snapshots and join/leave diffs reconciled per room
- Device deduplication by stable fingerprint
- Room-aware Event Bus for change notifications
- Single-flight outbound message dispatch
"""

from presence_sync.core.room import Room
from presence_sync.core.bus import Event, EventBus, EventFilter
from presence_sync.core.manager import RoomManager
from presence_sync.core.transport import OutgoingMessage, Transport, connect_params

__version__ = "0.1.0"

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
