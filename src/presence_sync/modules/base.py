"""
Base classes and protocols for presence-sync modules.

Modules are plug-ins that add behavior to rooms.
"""

from abc import ABC, abstractmethod
from typing import Dict


class RoomModule(ABC):
    """
    Base class for room modules.

    A module:
    - Receives channel events from the Event Bus
    - Uses the RoomManager to find rooms and their config
    - Maintains its own runtime state
    - Emits semantic events that the presentation layer consumes
    """

    @property
    @abstractmethod
    def id(self) -> str:
        """Unique identifier for this module type."""
        pass

    @property
    @abstractmethod
    def CURRENT_CONFIG_VERSION(self) -> int:
        """Current configuration version for this module."""
        pass

    @abstractmethod
    def attach(self, bus, room_manager) -> None:
        """
        Attach the module to the kernel.

        Register event subscriptions and capture references to bus and room manager.

        Args:
            bus: EventBus instance
            room_manager: RoomManager instance
        """
        pass

    @abstractmethod
    def detach(self) -> None:
        """
        Detach the module from the kernel.

        Unsubscribe every handler registered in attach(). Must be called
        before the module is discarded so no event reaches a dead module.
        """
        pass

    @abstractmethod
    def default_config(self) -> Dict:
        """
        Get default configuration for this module.

        Returns:
            Default configuration dict
        """
        pass

    @abstractmethod
    def room_config_schema(self) -> Dict:
        """
        Get JSON-schema-like definition for this module's room configuration.

        Returns:
            Schema dict
        """
        pass

    def migrate_config(self, config: Dict) -> Dict:
        """
        Migrate configuration to current version.

        Default implementation returns config unchanged.
        Override to handle version upgrades.

        Args:
            config: Configuration dict (potentially older version)

        Returns:
            Migrated configuration dict
        """
        return config

    def on_room_config_changed(self, topic: str, config: Dict) -> None:
        """
        React to configuration changes for a room.

        Args:
            topic: The room topic
            config: The new configuration
        """
        pass

    def resolve_config(self, room_manager, topic: str) -> Dict:
        """
        Merge a room's stored config over the module defaults.

        Args:
            room_manager: RoomManager holding the stored config
            topic: The room topic

        Returns:
            Effective configuration dict
        """
        config = self.default_config()
        stored = room_manager.get_module_config(topic, self.id)
        if stored:
            config.update(self.migrate_config(dict(stored)))
        return config
