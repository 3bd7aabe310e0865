"""
Messaging module for presence-sync.

Sends chat messages one at a time per room.

Features:
- Single in-flight send per room (no queueing)
- Composed text kept on failure for retry
- Exactly-once resolution of each send

Events Emitted:
- message.sent: When a message is acknowledged
- message.send_failed: When a message is not acknowledged
"""

from .module import MessagingModule, MESSAGE_SENT, MESSAGE_SEND_FAILED
from .dispatcher import MessageDispatcher
from .models import PendingSend, SendFailed

__all__ = [
    "MessagingModule",
    "MessageDispatcher",
    "MESSAGE_SENT",
    "MESSAGE_SEND_FAILED",
    "PendingSend",
    "SendFailed",
]
