"""
Modules package for presence-sync.

Modules are plug-ins that add behavior to rooms.
"""

from presence_sync.modules.base import RoomModule

__all__ = ["RoomModule"]
