"""
RoomManager for room registry and configuration management.

The RoomManager owns the rooms and their config, not the behavior.
"""

from typing import Dict, List, Optional
import logging

from presence_sync.core.room import Room

logger = logging.getLogger(__name__)


class RoomManager:
    """
    Manages the set of rooms and per-room module configuration.

    Responsibilities:
    - Store the known rooms keyed by topic
    - Store per-room module config

    Does NOT implement presence or messaging logic.
    """

    def __init__(self) -> None:
        """Initialize an empty room manager."""
        self._rooms: Dict[str, Room] = {}

    def create_room(self, topic: str, name: Optional[str] = None) -> Room:
        """
        Register a new room.

        Args:
            topic: Channel topic (unique)
            name: Human-readable name (defaults to the topic)

        Returns:
            The created Room

        Raises:
            ValueError: If the topic is empty or already registered
        """
        if not topic:
            raise ValueError("Room topic must not be empty")

        if topic in self._rooms:
            raise ValueError(f"Room with topic '{topic}' already exists")

        room = Room(topic=topic, name=name or topic)
        self._rooms[topic] = room
        logger.info(f"Created room: {topic} ({room.name})")

        return room

    def delete_room(self, topic: str) -> None:
        """
        Remove a room.

        Args:
            topic: The room topic

        Raises:
            ValueError: If room doesn't exist
        """
        if topic not in self._rooms:
            raise ValueError(f"Room '{topic}' does not exist")

        del self._rooms[topic]
        logger.info(f"Deleted room: {topic}")

    def get_room(self, topic: str) -> Optional[Room]:
        """
        Get a room by topic.

        Args:
            topic: The room topic

        Returns:
            The Room or None if not found
        """
        return self._rooms.get(topic)

    def all_rooms(self) -> List[Room]:
        """
        Get all rooms.

        Returns:
            List of all rooms
        """
        return list(self._rooms.values())

    def set_module_config(
        self,
        topic: str,
        module_id: str,
        config: Dict,
    ) -> None:
        """
        Set module configuration for a room.

        Args:
            topic: The room topic
            module_id: The module ID
            config: Module configuration dict

        Raises:
            ValueError: If room doesn't exist
        """
        room = self.get_room(topic)
        if not room:
            raise ValueError(f"Room '{topic}' does not exist")

        room.modules[module_id] = config
        logger.debug(f"Set config for module '{module_id}' on room '{topic}'")

    def get_module_config(
        self,
        topic: str,
        module_id: str,
    ) -> Optional[Dict]:
        """
        Get module configuration for a room.

        Args:
            topic: The room topic
            module_id: The module ID

        Returns:
            Module configuration dict or None if not set
        """
        room = self.get_room(topic)
        if not room:
            return None

        return room.modules.get(module_id)
