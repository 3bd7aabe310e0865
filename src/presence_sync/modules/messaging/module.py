"""MessagingModule - Outbound chat messages per room."""

import logging
from typing import Dict, Optional

from presence_sync.modules.base import RoomModule
from presence_sync.core.bus import Event, EventBus
from presence_sync.core.manager import RoomManager
from presence_sync.core.transport import OutgoingMessage, Transport

from .dispatcher import MessageDispatcher
from .models import SendFailed

logger = logging.getLogger(__name__)

MESSAGE_SENT = "message.sent"
MESSAGE_SEND_FAILED = "message.send_failed"


class MessagingModule(RoomModule):
    """
    Messaging module.

    Owns one MessageDispatcher per enabled room, all sharing the injected
    transport.

    Events Emitted:
    - message.sent: A message was acknowledged
    - message.send_failed: A message failed; the composed text is kept for retry
    """

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self._bus: Optional[EventBus] = None
        self._room_manager: Optional[RoomManager] = None
        self._dispatchers: Dict[str, MessageDispatcher] = {}  # topic → dispatcher

    @property
    def id(self) -> str:
        return "messaging"

    @property
    def CURRENT_CONFIG_VERSION(self) -> int:
        return 1

    def attach(self, bus: EventBus, room_manager: RoomManager) -> None:
        """Attach to kernel components and build a dispatcher per enabled room."""
        self._bus = bus
        self._room_manager = room_manager

        for room in room_manager.all_rooms():
            self._build_dispatcher(room.topic)

        logger.info(f"MessagingModule attached to kernel ({len(self._dispatchers)} rooms)")

    def detach(self) -> None:
        """Drop all dispatchers; late transport callbacks no longer reach the bus."""
        self._dispatchers.clear()
        self._bus = None
        self._room_manager = None
        logger.info("MessagingModule detached")

    def default_config(self) -> Dict:
        """Return default configuration for a room."""
        return {
            "version": self.CURRENT_CONFIG_VERSION,
            "enabled": True,
            "event": "new:msg",
            "body_key": "body",
        }

    def room_config_schema(self) -> Dict:
        """Return JSON schema for room configuration."""
        return {
            "type": "object",
            "properties": {
                "version": {"type": "integer", "default": 1},
                "enabled": {"type": "boolean", "default": True},
                "event": {"type": "string", "default": "new:msg"},
                "body_key": {"type": "string", "default": "body"},
            },
        }

    def on_room_config_changed(self, topic: str, config: Dict) -> None:
        """Rebuild the room's dispatcher unless a send is in flight."""
        if not self._room_manager:
            raise RuntimeError("MessagingModule not attached to RoomManager")

        current = self._dispatchers.get(topic)
        if current and current.in_flight:
            raise RuntimeError(f"Cannot reconfigure {topic} while a send is in flight")

        self._room_manager.set_module_config(topic, self.id, config)
        self._dispatchers.pop(topic, None)
        self._build_dispatcher(topic)

    def _build_dispatcher(self, topic: str) -> None:
        assert self._room_manager is not None
        config = self.resolve_config(self._room_manager, topic)

        if not config.get("enabled", True):
            logger.debug(f"Skipping disabled room: {topic}")
            return

        self._dispatchers[topic] = MessageDispatcher(
            self._transport,
            topic,
            event=config["event"],
            body_key=config["body_key"],
            on_sent=self._emit_sent,
            on_failed=self._emit_failed,
        )

    # Sending

    def dispatcher_for(self, topic: str) -> Optional[MessageDispatcher]:
        """Get the dispatcher for a room (None if unknown or disabled)."""
        return self._live_dispatcher(topic)

    def set_text(self, topic: str, text: str) -> None:
        """Update a room's composed text."""
        dispatcher = self._require_dispatcher(topic)
        dispatcher.set_text(text)

    def can_send(self, topic: str, text: Optional[str] = None) -> bool:
        """Whether a send to this room would be accepted."""
        dispatcher = self._live_dispatcher(topic)
        return dispatcher.can_send(text) if dispatcher else False

    def send(self, topic: str, text: Optional[str] = None) -> bool:
        """
        Send a message to a room.

        Args:
            topic: Room topic
            text: Text to send (defaults to the composed text)

        Returns:
            True if handed to the transport, False if rejected

        Raises:
            ValueError: If the room is unknown or messaging is disabled for it
        """
        return self._require_dispatcher(topic).send(text)

    def _live_dispatcher(self, topic: str) -> Optional[MessageDispatcher]:
        """Dispatcher for a room that is still registered; forgets deleted rooms."""
        if topic not in self._dispatchers:
            return None

        if self._room_manager and not self._room_manager.get_room(topic):
            del self._dispatchers[topic]
            logger.info(f"Room {topic} was deleted, dropped its dispatcher")
            return None

        return self._dispatchers[topic]

    def _require_dispatcher(self, topic: str) -> MessageDispatcher:
        dispatcher = self._live_dispatcher(topic)
        if not dispatcher:
            raise ValueError(f"No messaging for room '{topic}'")
        return dispatcher

    # Emission

    def _emit_sent(self, message: OutgoingMessage) -> None:
        if not self._bus:
            return

        self._bus.publish(
            Event(
                type=MESSAGE_SENT,
                source=self.id,
                topic=message.topic,
                payload={"ref": message.ref, "event": message.event, "payload": message.payload},
            )
        )

    def _emit_failed(self, error: SendFailed) -> None:
        if not self._bus:
            return

        self._bus.publish(
            Event(
                type=MESSAGE_SEND_FAILED,
                source=self.id,
                topic=error.message.topic,
                payload={"ref": error.message.ref, "reason": error.reason, "error": error},
            )
        )
