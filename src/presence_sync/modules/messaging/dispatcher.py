"""MessageDispatcher - one optimistic send at a time.

The dispatcher owns the composed text and the in-flight flag that drive the
send control. Sends are never queued: while one is in flight, further sends
are rejected.
"""

import itertools
import logging
from typing import Any, Callable, Dict, Optional

from presence_sync.core.transport import OutgoingMessage, Transport

from .models import PendingSend, SendFailed

logger = logging.getLogger(__name__)

SentCallback = Callable[[OutgoingMessage], None]
FailedCallback = Callable[[SendFailed], None]


class MessageDispatcher:
    """Serializes outbound messages for one room."""

    def __init__(
        self,
        transport: Transport,
        topic: str,
        event: str = "new:msg",
        body_key: str = "body",
        on_sent: Optional[SentCallback] = None,
        on_failed: Optional[FailedCallback] = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Args:
            transport: Transport used to push messages
            topic: Channel topic to send on
            event: Channel event name for outgoing messages
            body_key: Payload key that carries the text
            on_sent: Called after an acknowledged send
            on_failed: Called with SendFailed after a failed send
        """
        self._transport = transport
        self.topic = topic
        self.event = event
        self.body_key = body_key
        self._on_sent = on_sent
        self._on_failed = on_failed
        self._text = ""
        self._pending: Optional[PendingSend] = None
        self._refs = itertools.count(1)
        self.last_error: Optional[SendFailed] = None

    @property
    def text(self) -> str:
        """The composed text buffer."""
        return self._text

    @property
    def in_flight(self) -> bool:
        return self._pending is not None

    @property
    def pending(self) -> Optional[PendingSend]:
        return self._pending

    @property
    def send_enabled(self) -> bool:
        """Whether the send control should be enabled right now."""
        return self.can_send()

    def set_text(self, text: str) -> None:
        """Replace the composed text (e.g. on every edit)."""
        self._text = text or ""

    def can_send(self, text: Optional[str] = None) -> bool:
        """
        Check whether a send would be accepted.

        Args:
            text: Text to check (defaults to the composed text)

        Returns:
            True if the text is non-empty and nothing is in flight
        """
        candidate = self._text if text is None else text
        return bool(candidate) and not self.in_flight

    def send(self, text: Optional[str] = None) -> bool:
        """
        Push a message if nothing is in flight.

        Args:
            text: Text to send (defaults to the composed text). When given it
                also becomes the composed text.

        Returns:
            True if the message was handed to the transport, False if rejected
        """
        if not self.can_send(text):
            logger.debug(
                f"{self.topic}: send rejected "
                f"({'in flight' if self.in_flight else 'empty text'})"
            )
            return False

        if text is not None:
            self._text = text

        message = OutgoingMessage(
            topic=self.topic,
            event=self.event,
            payload={self.body_key: self._text},
            ref=str(next(self._refs)),
        )
        pending = PendingSend(message=message, text=self._text)
        self._pending = pending
        logger.debug(f"{self.topic}: sending ref={message.ref}")

        try:
            self._transport.push(
                message,
                lambda reply: self._resolve(pending, succeeded=True, reply=reply),
                lambda reason: self._resolve(pending, succeeded=False, reason=reason),
            )
        except Exception as e:
            self._resolve(pending, succeeded=False, reason=str(e) or type(e).__name__)

        return True

    def _resolve(
        self,
        pending: PendingSend,
        succeeded: bool,
        reply: Optional[Dict[str, Any]] = None,
        reason: str = "",
    ) -> None:
        if pending.resolved:
            logger.debug(
                f"{self.topic}: ignoring duplicate callback for ref={pending.message.ref}"
            )
            return

        pending.resolved = True
        pending.succeeded = succeeded
        if self._pending is pending:
            self._pending = None

        if succeeded:
            self._text = ""
            self.last_error = None
            logger.debug(f"{self.topic}: ref={pending.message.ref} acknowledged")
            if self._on_sent:
                self._on_sent(pending.message)
            return

        error = SendFailed(pending.message, reason)
        self.last_error = error
        logger.warning(str(error))
        if self._on_failed:
            self._on_failed(error)
