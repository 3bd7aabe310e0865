"""PresenceModule - Room membership reconciliation on the kernel.

This module wraps one ReconciliationEngine per room and integrates it with
the presence-sync kernel (EventBus, RoomManager).
"""

import logging
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from presence_sync.modules.base import RoomModule
from presence_sync.core.bus import Event, EventBus, EventFilter
from presence_sync.core.manager import RoomManager
from presence_sync.core.transport import (
    CHANNEL_CLOSED,
    CHANNEL_MESSAGE,
    CHANNEL_PRESENCE_DIFF,
    CHANNEL_PRESENCE_STATE,
)

from .engine import ReconciliationEngine
from .models import (
    ChatRecord,
    DeviceIdentity,
    MalformedBatch,
    MembershipChanged,
    OutOfOrderDiff,
    RecordAppended,
)

logger = logging.getLogger(__name__)

MEMBERSHIP_CHANGED = "presence.membership_changed"
RECORD_APPENDED = "chat.record_appended"


class PresenceModule(RoomModule):
    """
    Presence reconciliation module.

    Features:
    - Full-state snapshots replace a room's membership
    - Join/leave diffs applied on top (joins first, then leaves)
    - Device deduplication by fingerprint
    - Ordered chat record log per room
    - Membership reset on connection loss

    Events Consumed:
    - channel.presence_state: Full-state snapshot
    - channel.presence_diff: Incremental joins/leaves
    - channel.message: Custom channel message
    - channel.closed: Connection lost

    Events Emitted:
    - presence.membership_changed: After every membership mutation
    - chat.record_appended: After a chat record is appended

    Note: No error raised by the engine escapes this module. Bad input is
    logged and the last good membership is kept.
    """

    def __init__(self) -> None:
        self._bus: Optional[EventBus] = None
        self._room_manager: Optional[RoomManager] = None
        self._engines: Dict[str, ReconciliationEngine] = {}  # topic → engine
        self._configs: Dict[str, Dict] = {}  # topic → effective config

    @property
    def id(self) -> str:
        return "presence"

    @property
    def CURRENT_CONFIG_VERSION(self) -> int:
        return 1

    def attach(self, bus: EventBus, room_manager: RoomManager) -> None:
        """Attach to kernel components and build an engine per enabled room."""
        self._bus = bus
        self._room_manager = room_manager

        for room in room_manager.all_rooms():
            self._build_engine(room.topic)

        bus.subscribe(self._on_presence_state, EventFilter(event_type=CHANNEL_PRESENCE_STATE))
        bus.subscribe(self._on_presence_diff, EventFilter(event_type=CHANNEL_PRESENCE_DIFF))
        bus.subscribe(self._on_channel_message, EventFilter(event_type=CHANNEL_MESSAGE))
        bus.subscribe(self._on_channel_closed, EventFilter(event_type=CHANNEL_CLOSED))

        logger.info(f"PresenceModule attached to kernel ({len(self._engines)} rooms)")

    def detach(self) -> None:
        """Unsubscribe from the bus and drop all room state."""
        if self._bus:
            self._bus.unsubscribe(self._on_presence_state)
            self._bus.unsubscribe(self._on_presence_diff)
            self._bus.unsubscribe(self._on_channel_message)
            self._bus.unsubscribe(self._on_channel_closed)

        self._engines.clear()
        self._configs.clear()
        self._bus = None
        self._room_manager = None
        logger.info("PresenceModule detached")

    def default_config(self) -> Dict:
        """Return default configuration for a room."""
        return {
            "version": self.CURRENT_CONFIG_VERSION,
            "enabled": True,
            "require_uuid_fingerprint": True,
            "record_event": "new:msg",
            "body_key": "body",
        }

    def room_config_schema(self) -> Dict:
        """Return JSON schema for room configuration."""
        return {
            "type": "object",
            "properties": {
                "version": {"type": "integer", "default": 1},
                "enabled": {"type": "boolean", "default": True},
                "require_uuid_fingerprint": {"type": "boolean", "default": True},
                "record_event": {"type": "string", "default": "new:msg"},
                "body_key": {"type": "string", "default": "body"},
            },
        }

    def migrate_config(self, config: Dict) -> Dict:
        """Migrate configuration from older versions."""
        version = config.get("version", 1)
        if version == self.CURRENT_CONFIG_VERSION:
            return config

        # No migrations yet (v1 is first version)
        config["version"] = self.CURRENT_CONFIG_VERSION
        return config

    def on_room_config_changed(self, topic: str, config: Dict) -> None:
        """
        Rebuild the room's engine with the new config.

        Membership is cleared and resyncs on the next snapshot; the chat
        record log carries over. A membership change with reason "reset" is
        published so observers drop the old count.
        """
        if not self._room_manager:
            raise RuntimeError("PresenceModule not attached to RoomManager")

        self._room_manager.set_module_config(topic, self.id, config)
        previous = self._engines.pop(topic, None)
        self._build_engine(topic, previous.records if previous else ())

        if not previous:
            return

        engine = self._engines.get(topic)
        self._emit_membership_changed(engine.reset() if engine else previous.reset())

    def _build_engine(self, topic: str, records: Iterable[ChatRecord] = ()) -> None:
        assert self._room_manager is not None
        config = self.resolve_config(self._room_manager, topic)

        if not config.get("enabled", True):
            logger.debug(f"Skipping disabled room: {topic}")
            self._configs.pop(topic, None)
            return

        self._configs[topic] = config
        self._engines[topic] = ReconciliationEngine(
            topic,
            require_uuid_fingerprint=config["require_uuid_fingerprint"],
            initial_records=records,
        )
        logger.debug(f"Created engine for {topic}: {config}")

    # Queries

    def engine_for(self, topic: str) -> Optional[ReconciliationEngine]:
        """Get the engine for a room (None if unknown or disabled)."""
        return self._live_engine(topic)

    def current_membership(self, topic: str) -> Mapping[str, FrozenSet[DeviceIdentity]]:
        """
        Get the current membership snapshot of a room.

        Args:
            topic: Room topic

        Returns:
            Read-only mapping of identity key → devices (empty if room unknown)
        """
        engine = self._live_engine(topic)
        return engine.current_membership() if engine else {}

    def present_identity_count(self, topic: str) -> int:
        """Number of identities with at least one device in a room."""
        engine = self._live_engine(topic)
        return engine.present_identity_count if engine else 0

    def records(self, topic: str) -> Tuple[ChatRecord, ...]:
        """Chat records received in a room, oldest first."""
        engine = self._live_engine(topic)
        return engine.records if engine else ()

    # Channel operations

    def on_full_state(self, topic: str, snapshot: Any) -> bool:
        """
        Replace a room's membership with a full-state snapshot.

        Returns:
            True if applied, False if the room is unknown or the snapshot was rejected
        """
        engine = self._require_engine(topic)
        if not engine:
            return False

        try:
            result = engine.on_full_state(snapshot)
        except MalformedBatch as e:
            logger.error(f"Rejected presence state for {topic}: {e}")
            return False

        self._emit_membership_changed(result)
        return True

    def on_diff(self, topic: str, joins: Any, leaves: Any) -> bool:
        """
        Apply a presence diff to a room.

        Returns:
            True if applied, False if out of order, malformed or room unknown
        """
        engine = self._require_engine(topic)
        if not engine:
            return False

        try:
            result = engine.on_diff(joins, leaves)
        except OutOfOrderDiff as e:
            logger.error(f"Discarded presence diff: {e}")
            return False
        except MalformedBatch as e:
            logger.error(f"Rejected presence diff for {topic}: {e}")
            return False

        self._emit_membership_changed(result)
        return True

    def on_custom_event(self, topic: str, payload: Any) -> bool:
        """
        Append a custom message to a room's record log.

        Returns:
            True if a record was appended
        """
        engine = self._require_engine(topic)
        if not engine:
            return False

        result = engine.on_custom_event(payload, body_key=self._configs[topic]["body_key"])
        if not result:
            return False

        self._emit_record_appended(result)
        return True

    def on_connection_lost(self, topic: str) -> None:
        """Clear a room's membership until the next snapshot."""
        engine = self._require_engine(topic)
        if not engine:
            return

        self._emit_membership_changed(engine.reset())

    def _live_engine(self, topic: Optional[str]) -> Optional[ReconciliationEngine]:
        """Engine for a room that is still registered; forgets deleted rooms."""
        if not topic or topic not in self._engines:
            return None

        if self._room_manager and not self._room_manager.get_room(topic):
            del self._engines[topic]
            self._configs.pop(topic, None)
            logger.info(f"Room {topic} was deleted, dropped its engine")
            return None

        return self._engines[topic]

    def _require_engine(self, topic: Optional[str]) -> Optional[ReconciliationEngine]:
        engine = self._live_engine(topic)
        if not engine:
            logger.warning(f"Event for unknown or disabled room: {topic}")
        return engine

    # Event Handling

    def _on_presence_state(self, event: Event) -> None:
        """Handle a full-state snapshot from the channel."""
        if not self._live_engine(event.topic):
            return
        self.on_full_state(event.topic, event.payload)

    def _on_presence_diff(self, event: Event) -> None:
        """Handle a presence diff from the channel."""
        if not self._live_engine(event.topic):
            return
        if not isinstance(event.payload, Mapping):
            logger.error(
                f"Rejected presence diff for {event.topic}: payload must be a mapping, "
                f"got {type(event.payload).__name__}"
            )
            return
        self.on_diff(event.topic, event.payload.get("joins"), event.payload.get("leaves"))

    def _on_channel_message(self, event: Event) -> None:
        """Handle a custom channel message, keeping only record events."""
        if not self._live_engine(event.topic):
            return
        if not isinstance(event.payload, Mapping):
            logger.warning(
                f"Dropped channel message for {event.topic}: payload must be a mapping, "
                f"got {type(event.payload).__name__}"
            )
            return
        if event.payload.get("event") != self._configs[event.topic]["record_event"]:
            return
        self.on_custom_event(event.topic, event.payload.get("payload"))

    def _on_channel_closed(self, event: Event) -> None:
        """Handle connection loss for a room (or all rooms if no topic)."""
        topics = [event.topic] if event.topic else list(self._engines)
        for topic in topics:
            if self._live_engine(topic):
                self.on_connection_lost(topic)

    # Emission

    def _emit_membership_changed(self, result: MembershipChanged) -> None:
        if not self._bus:
            return

        self._bus.publish(
            Event(
                type=MEMBERSHIP_CHANGED,
                source=self.id,
                topic=result.topic,
                payload={
                    "count": result.count,
                    "members": result.table.members,
                    "identities": result.table.identities(),
                    "reason": result.reason,
                    "dropped": len(result.failures),
                },
            )
        )

    def _emit_record_appended(self, result: RecordAppended) -> None:
        if not self._bus:
            return

        self._bus.publish(
            Event(
                type=RECORD_APPENDED,
                source=self.id,
                topic=result.topic,
                payload={
                    "record": result.record,
                    "index": result.index,
                    "sender": result.record.sender,
                    "body": result.record.body,
                },
            )
        )
