"""
Transport contract.

The socket/channel library lives outside this package. Incoming channel events
reach the kernel as Events published on the EventBus; outgoing messages are
pushed through an injected Transport.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

# Event types published by the transport adapter
CHANNEL_PRESENCE_STATE = "channel.presence_state"
CHANNEL_PRESENCE_DIFF = "channel.presence_diff"
CHANNEL_MESSAGE = "channel.message"
CHANNEL_CLOSED = "channel.closed"


@dataclass(frozen=True)
class OutgoingMessage:
    """
    A message to push on a channel.

    Attributes:
        topic: Channel topic
        event: Channel event name (e.g., "new:msg")
        payload: Message body
        ref: Client-side reference used to match the acknowledgment
    """

    topic: str
    event: str
    payload: Dict[str, Any] = field(default_factory=dict)
    ref: Optional[str] = None


AckCallback = Callable[[Dict[str, Any]], None]
ErrorCallback = Callable[[str], None]


class Transport(ABC):
    """
    Outbound half of the socket/channel collaborator.

    Implementations must eventually invoke exactly one of the callbacks for
    each push. Callers should still tolerate duplicate or late callbacks.
    """

    @abstractmethod
    def push(
        self,
        message: OutgoingMessage,
        on_ok: AckCallback,
        on_error: ErrorCallback,
    ) -> None:
        """
        Send a message without blocking.

        Args:
            message: The message to send
            on_ok: Called with the reply payload on acknowledgment
            on_error: Called with a reason string on failure or timeout
        """
        pass


def connect_params(user_id: str, device_token: str | uuid.UUID) -> Dict[str, str]:
    """
    Build the socket connect parameters that identify this client.

    Args:
        user_id: Identity key the local user joins under
        device_token: Stable device identifier (UUID or UUID string)

    Returns:
        Parameter dict for the transport's connect call

    Raises:
        ValueError: If user_id is empty or device_token is not a valid UUID
    """
    if not user_id or not user_id.strip():
        raise ValueError("user_id must not be empty")

    if isinstance(device_token, uuid.UUID):
        token = device_token
    else:
        try:
            token = uuid.UUID(str(device_token))
        except ValueError:
            raise ValueError(f"Invalid device token: {device_token!r}") from None

    return {"user_id": user_id, "device_token": str(token).upper()}
