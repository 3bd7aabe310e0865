"""Data models for the presence module.

All state classes are frozen (immutable) so a table handed to a reader can
never change underneath it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, FrozenSet, List, Mapping, Optional, Tuple
import uuid


class PresenceError(Exception):
    """Base class for presence reconciliation errors."""


class MalformedRecord(PresenceError, ValueError):
    """A single device or chat record failed to decode.

    Attributes:
        raw: The offending raw value.
        reason: Why it was rejected.
        identity_key: Identity the record was listed under, if any.
    """

    def __init__(self, raw: Any, reason: str, identity_key: Optional[str] = None) -> None:
        self.raw = raw
        self.reason = reason
        self.identity_key = identity_key
        where = f" for '{identity_key}'" if identity_key else ""
        super().__init__(f"Malformed record{where}: {reason}")


class MalformedBatch(PresenceError, ValueError):
    """A whole snapshot or diff payload is structurally invalid."""


class OutOfOrderDiff(PresenceError, RuntimeError):
    """A diff arrived before any full-state snapshot."""


class SyncState(Enum):
    """Connection-scoped lifecycle of a reconciliation engine."""

    UNINITIALIZED = "uninitialized"  # No snapshot yet (or connection lost)
    SYNCED = "synced"  # Snapshot applied, diffs accepted


@dataclass(frozen=True)
class DeviceIdentity:
    """One physical device's participation in a room.

    Equality and hashing use only the fingerprint, so a device that joins
    again under a new session is still the same set member.

    Attributes:
        fingerprint: Stable device identifier (UUID unless configured otherwise).
        session_ref: Opaque reference of the join event.
        joined_at: When the device joined (UTC).
    """

    fingerprint: uuid.UUID | str
    session_ref: str = field(compare=False)
    joined_at: datetime = field(compare=False)


def _empty_members() -> Mapping[str, FrozenSet[DeviceIdentity]]:
    return MappingProxyType({})


@dataclass(frozen=True)
class MembershipTable:
    """Identity key → devices currently present (Immutable).

    Attributes:
        members: Read-only mapping of identity key to a frozenset of devices.
    """

    members: Mapping[str, FrozenSet[DeviceIdentity]] = field(default_factory=_empty_members)

    def __post_init__(self) -> None:
        """Freeze the mapping and its device sets."""
        frozen = {key: frozenset(devices) for key, devices in self.members.items()}
        object.__setattr__(self, "members", MappingProxyType(frozen))

    @property
    def present_count(self) -> int:
        """Number of identities with at least one device."""
        return sum(1 for devices in self.members.values() if devices)

    def devices_for(self, identity_key: str) -> FrozenSet[DeviceIdentity]:
        """Devices for an identity (empty if absent)."""
        return self.members.get(identity_key, frozenset())

    def identities(self) -> List[str]:
        """Sorted identity keys that have at least one device."""
        return sorted(key for key, devices in self.members.items() if devices)

    def fingerprints(self, identity_key: str) -> FrozenSet[uuid.UUID | str]:
        """Fingerprints of an identity's devices."""
        return frozenset(device.fingerprint for device in self.devices_for(identity_key))

    def __contains__(self, identity_key: object) -> bool:
        return bool(self.members.get(identity_key))  # type: ignore[arg-type]


@dataclass(frozen=True)
class ChatRecord:
    """A decoded custom channel message.

    Attributes:
        sender: Identity key of the author.
        body: Message text.
        received_at: When the record was appended to the log.
    """

    sender: str
    body: str
    received_at: datetime


@dataclass(frozen=True)
class MembershipChanged:
    """Result of a successful membership mutation."""

    topic: str
    count: int
    table: MembershipTable
    reason: str
    failures: Tuple[MalformedRecord, ...] = ()


@dataclass(frozen=True)
class RecordAppended:
    """Result of appending a chat record to the room log."""

    topic: str
    record: ChatRecord
    index: int
