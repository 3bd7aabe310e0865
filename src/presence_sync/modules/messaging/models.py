"""Data models for the messaging module."""

from dataclasses import dataclass
from typing import Optional

from presence_sync.core.transport import OutgoingMessage


class SendFailed(Exception):
    """An outgoing message was not acknowledged.

    Attributes:
        message: The message that failed.
        reason: Failure reason reported by the transport.
    """

    def __init__(self, message: OutgoingMessage, reason: str) -> None:
        self.message = message
        self.reason = reason
        super().__init__(f"Send to {message.topic} failed (ref={message.ref}): {reason}")


@dataclass
class PendingSend:
    """The single outstanding send of a dispatcher.

    Attributes:
        message: The message pushed to the transport.
        text: Composed text the message was built from.
        resolved: Set by the first callback; later callbacks are ignored.
        succeeded: Outcome once resolved.
    """

    message: OutgoingMessage
    text: str
    resolved: bool = False
    succeeded: Optional[bool] = None
