"""
Presence module for presence-sync.

Tracks WHICH devices of WHICH users are in each room.

Features:
- Full-state snapshots that replace membership
- Join/leave diffs applied joins-first
- Device deduplication by stable fingerprint
- Per-record failure isolation when decoding payloads
- Ordered chat record log

Events Emitted:
- presence.membership_changed: After every membership mutation
- chat.record_appended: When a chat message is decoded and logged
"""

from .module import PresenceModule, MEMBERSHIP_CHANGED, RECORD_APPENDED
from .engine import (
    ReconciliationEngine,
    apply_snapshot,
    apply_join,
    apply_leave,
    apply_diff,
)
from .models import (
    PresenceError,
    MalformedRecord,
    MalformedBatch,
    OutOfOrderDiff,
    SyncState,
    DeviceIdentity,
    MembershipTable,
    ChatRecord,
    MembershipChanged,
    RecordAppended,
)

__all__ = [
    "PresenceModule",
    "ReconciliationEngine",
    "MEMBERSHIP_CHANGED",
    "RECORD_APPENDED",
    "apply_snapshot",
    "apply_join",
    "apply_leave",
    "apply_diff",
    "PresenceError",
    "MalformedRecord",
    "MalformedBatch",
    "OutOfOrderDiff",
    "SyncState",
    "DeviceIdentity",
    "MembershipTable",
    "ChatRecord",
    "MembershipChanged",
    "RecordAppended",
]
