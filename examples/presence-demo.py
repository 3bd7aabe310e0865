#!/usr/bin/env python3
"""
Example: PresenceModule + MessagingModule on one room

This example demonstrates:
1. Registering a room
2. Feeding a full-state snapshot and diffs through the EventBus
3. Listening to presence.membership_changed events
4. Receiving chat records
5. Sending a message with a transport that acknowledges or fails
"""

import logging
import uuid

from presence_sync import Event, EventBus, EventFilter, RoomManager, Transport, connect_params
from presence_sync.modules.messaging import MESSAGE_SEND_FAILED, MESSAGE_SENT, MessagingModule
from presence_sync.modules.presence import MEMBERSHIP_CHANGED, RECORD_APPENDED, PresenceModule

LOBBY = "chat:lobby"


class LoopbackTransport(Transport):
    """Acknowledges every push except those containing "fail"."""

    def push(self, message, on_ok, on_error):
        if "fail" in message.payload.get("body", ""):
            on_error("server rejected message")
        else:
            on_ok({"status": "ok"})


def print_section(title: str):
    """Print a section header."""
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


def meta(token: uuid.UUID, ref: str, online_at: int) -> dict:
    return {"device_token": str(token), "phx_ref": ref, "online_at": online_at}


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s - %(levelname)s - %(message)s")
    print_section("presence-sync: Room Presence Example")

    phone = uuid.uuid4()
    laptop = uuid.uuid4()
    tablet = uuid.uuid4()
    print(f"\nConnect params: {connect_params('alice', phone)}")

    # 1. Create kernel
    rooms = RoomManager()
    bus = EventBus()
    rooms.create_room(LOBBY, name="Lobby")

    presence = PresenceModule()
    messaging = MessagingModule(LoopbackTransport())
    presence.attach(bus, rooms)
    messaging.attach(bus, rooms)

    # 2. Presentation layer
    def on_membership(event: Event):
        print(f"  → {event.payload['count']} user(s) connected: {event.payload['identities']}")

    def on_record(event: Event):
        print(f"  → [{event.payload['sender']}] {event.payload['body']}")

    def on_send_result(event: Event):
        print(f"  → {event.type} (ref={event.payload['ref']})")

    bus.subscribe(on_membership, EventFilter(event_type=MEMBERSHIP_CHANGED, topic=LOBBY))
    bus.subscribe(on_record, EventFilter(event_type=RECORD_APPENDED, topic=LOBBY))
    bus.subscribe(on_send_result, EventFilter(event_type=MESSAGE_SENT))
    bus.subscribe(on_send_result, EventFilter(event_type=MESSAGE_SEND_FAILED))

    # 3. Transport delivers presence events
    print_section("Presence")
    print("\nDiff before snapshot (discarded):")
    bus.publish(
        Event(
            type="channel.presence_diff",
            source="transport",
            topic=LOBBY,
            payload={"joins": {"bob": [meta(tablet, "r0", 90)]}, "leaves": {}},
        )
    )

    print("\nSnapshot:")
    bus.publish(
        Event(
            type="channel.presence_state",
            source="transport",
            topic=LOBBY,
            payload={"alice": {"metas": [meta(phone, "r1", 100), meta(laptop, "r2", 101)]}},
        )
    )

    print("\nBob joins, alice's laptop leaves:")
    bus.publish(
        Event(
            type="channel.presence_diff",
            source="transport",
            topic=LOBBY,
            payload={
                "joins": {"bob": {"metas": [meta(tablet, "r3", 200)]}},
                "leaves": {"alice": {"metas": [meta(laptop, "r2", 101)]}},
            },
        )
    )

    for user, devices in presence.current_membership(LOBBY).items():
        print(f"  {user}: {sorted(str(d.fingerprint) for d in devices)}")

    # 4. Chat
    print_section("Chat")
    bus.publish(
        Event(
            type="channel.message",
            source="transport",
            topic=LOBBY,
            payload={"event": "new:msg", "payload": {"user_id": "bob", "body": "hi alice"}},
        )
    )

    messaging.set_text(LOBBY, "hello bob")
    messaging.send(LOBBY)
    messaging.send(LOBBY, "this will fail")
    print(f"  text kept for retry: {messaging.dispatcher_for(LOBBY).text!r}")

    # 5. Teardown
    print_section("Teardown")
    bus.publish(Event(type="channel.closed", source="transport", topic=LOBBY))
    presence.detach()
    messaging.detach()
    bus.unsubscribe(on_membership)
    bus.unsubscribe(on_record)
    bus.unsubscribe(on_send_result)


if __name__ == "__main__":
    main()
