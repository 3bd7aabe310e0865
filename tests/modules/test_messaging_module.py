"""Tests for MessageDispatcher and MessagingModule."""

import pytest

from presence_sync import EventBus, EventFilter, RoomManager, Transport
from presence_sync.modules.messaging import (
    MESSAGE_SEND_FAILED,
    MESSAGE_SENT,
    MessageDispatcher,
    MessagingModule,
    SendFailed,
)

LOBBY = "chat:lobby"


class FakeTransport(Transport):
    """Records pushes; tests resolve them by hand."""

    def __init__(self):
        self.pushes = []

    def push(self, message, on_ok, on_error):
        self.pushes.append((message, on_ok, on_error))

    def ack(self, index=-1, reply=None):
        self.pushes[index][1](reply or {})

    def fail(self, index=-1, reason="timeout"):
        self.pushes[index][2](reason)


class BrokenTransport(Transport):
    """Raises on every push."""

    def push(self, message, on_ok, on_error):
        raise ConnectionError("socket closed")


class TestMessageDispatcher:
    """Test single-flight dispatch."""

    @pytest.fixture
    def transport(self):
        return FakeTransport()

    @pytest.fixture
    def dispatcher(self, transport):
        return MessageDispatcher(transport, LOBBY)

    def test_can_send(self, dispatcher):
        """Empty text cannot be sent."""
        assert dispatcher.can_send("hi") is True
        assert dispatcher.can_send("") is False
        assert dispatcher.send_enabled is False

        dispatcher.set_text("hi")
        assert dispatcher.send_enabled is True

    def test_send_builds_message(self, dispatcher, transport):
        """Test the pushed message."""
        assert dispatcher.send("hi") is True

        message = transport.pushes[0][0]
        assert message.topic == LOBBY
        assert message.event == "new:msg"
        assert message.payload == {"body": "hi"}
        assert message.ref == "1"
        assert dispatcher.in_flight
        assert dispatcher.pending.message is message

    def test_second_send_rejected_while_in_flight(self, dispatcher, transport):
        """Only one send may be outstanding."""
        dispatcher.send("hi")

        assert dispatcher.can_send("there") is False
        assert dispatcher.send("there") is False
        assert len(transport.pushes) == 1
        assert dispatcher.text == "hi"

    def test_success_clears_text(self, dispatcher, transport):
        """An acknowledged send clears the buffer."""
        dispatcher.set_text("hi")
        dispatcher.send()

        transport.ack()

        assert dispatcher.text == ""
        assert not dispatcher.in_flight
        assert dispatcher.send_enabled is False

    def test_failure_keeps_text(self, dispatcher, transport):
        """A failed send keeps the text for retry."""
        dispatcher.send("hi")

        transport.fail(reason="timeout")

        assert not dispatcher.in_flight
        assert dispatcher.text == "hi"
        assert dispatcher.can_send() is True
        assert isinstance(dispatcher.last_error, SendFailed)
        assert dispatcher.last_error.reason == "timeout"

    def test_retry_after_failure(self, dispatcher, transport):
        """Retry uses a fresh ref."""
        dispatcher.send("hi")
        transport.fail()

        assert dispatcher.send() is True
        assert transport.pushes[-1][0].ref == "2"
        assert transport.pushes[-1][0].payload == {"body": "hi"}

    def test_exactly_once_resolution(self, transport):
        """Only the first callback resolves a send."""
        sent, failed = [], []
        dispatcher = MessageDispatcher(
            transport, LOBBY, on_sent=sent.append, on_failed=failed.append
        )
        dispatcher.send("hi")

        transport.ack()
        transport.fail()
        transport.ack()

        assert len(sent) == 1
        assert failed == []
        assert dispatcher.pending is None

    def test_stale_callback_does_not_touch_new_send(self, dispatcher, transport):
        """A late callback for an old send leaves the current one in flight."""
        dispatcher.send("one")
        transport.fail(0)
        dispatcher.send("two")

        transport.ack(0)

        assert dispatcher.in_flight
        assert dispatcher.text == "two"

    def test_failure_surfaces_send_failed(self, transport):
        """Failure listeners get a SendFailed."""
        failed = []
        dispatcher = MessageDispatcher(transport, LOBBY, on_failed=failed.append)
        dispatcher.send("hi")

        transport.fail(reason="rejected")

        assert len(failed) == 1
        assert failed[0].message.payload == {"body": "hi"}
        assert "rejected" in str(failed[0])

    def test_transport_error_resolves_as_failure(self, caplog):
        """A push that raises becomes a failed send."""
        dispatcher = MessageDispatcher(BrokenTransport(), LOBBY)

        assert dispatcher.send("hi") is True

        assert not dispatcher.in_flight
        assert dispatcher.text == "hi"
        assert dispatcher.last_error.reason == "socket closed"
        assert "socket closed" in caplog.text

    def test_custom_event_and_body_key(self, transport):
        """Event name and body key are configurable."""
        dispatcher = MessageDispatcher(transport, LOBBY, event="shout", body_key="text")
        dispatcher.send("HI")

        message = transport.pushes[0][0]
        assert message.event == "shout"
        assert message.payload == {"text": "HI"}


class TestMessagingModule:
    """Test MessagingModule on the kernel."""

    @pytest.fixture
    def kernel(self):
        rooms = RoomManager()
        rooms.create_room(LOBBY)
        bus = EventBus()
        transport = FakeTransport()
        module = MessagingModule(transport)
        module.attach(bus, rooms)

        events = []
        bus.subscribe(events.append, EventFilter(event_type=MESSAGE_SENT))
        bus.subscribe(events.append, EventFilter(event_type=MESSAGE_SEND_FAILED))
        return module, transport, events

    def test_module_properties(self):
        """Test module ID, version and defaults."""
        module = MessagingModule(FakeTransport())

        assert module.id == "messaging"
        assert module.CURRENT_CONFIG_VERSION == 1
        assert module.default_config()["event"] == "new:msg"

    def test_send_and_ack(self, kernel):
        """An acknowledged send emits message.sent."""
        module, transport, events = kernel

        module.set_text(LOBBY, "hello")
        assert module.send(LOBBY) is True
        transport.ack()

        assert [e.type for e in events] == [MESSAGE_SENT]
        assert events[0].payload["payload"] == {"body": "hello"}
        assert module.dispatcher_for(LOBBY).text == ""

    def test_send_failure(self, kernel):
        """A failed send emits message.send_failed and allows retry."""
        module, transport, events = kernel

        module.send(LOBBY, "hello")
        assert module.can_send(LOBBY) is False
        transport.fail(reason="timeout")

        assert [e.type for e in events] == [MESSAGE_SEND_FAILED]
        assert events[0].payload["reason"] == "timeout"
        assert module.can_send(LOBBY) is True

    def test_unknown_room(self, kernel):
        """Sending to an unknown room raises."""
        module, _, _ = kernel

        assert module.can_send("chat:x", "hi") is False
        with pytest.raises(ValueError, match="No messaging"):
            module.send("chat:x", "hi")

    def test_config_change(self, kernel):
        """Config changes rebuild the dispatcher with the new event name."""
        module, transport, _ = kernel

        module.on_room_config_changed(LOBBY, {"version": 1, "event": "shout"})
        module.send(LOBBY, "hi")

        assert transport.pushes[0][0].event == "shout"

    def test_config_change_blocked_in_flight(self, kernel):
        """A room cannot be reconfigured mid-send."""
        module, _, _ = kernel
        module.send(LOBBY, "hi")

        with pytest.raises(RuntimeError, match="in flight"):
            module.on_room_config_changed(LOBBY, {"version": 1})

    def test_detach(self, kernel):
        """Late callbacks after detach publish nothing."""
        module, transport, events = kernel
        module.send(LOBBY, "hi")

        module.detach()
        transport.ack()

        assert events == []
        assert module.dispatcher_for(LOBBY) is None

    def test_deleted_room(self):
        """A deleted room can no longer send."""
        rooms = RoomManager()
        rooms.create_room(LOBBY)
        module = MessagingModule(FakeTransport())
        module.attach(EventBus(), rooms)

        rooms.delete_room(LOBBY)

        assert module.can_send(LOBBY, "hi") is False
        assert module.dispatcher_for(LOBBY) is None
        with pytest.raises(ValueError, match="No messaging"):
            module.send(LOBBY, "hi")
