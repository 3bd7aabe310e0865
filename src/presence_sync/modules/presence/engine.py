"""The core reconciliation logic for room presence.

The diff applier functions are pure: they take a MembershipTable and return a
new one, never touching their inputs. ReconciliationEngine wraps them in the
connection lifecycle (UNINITIALIZED -> SYNCED) and keeps the ordered record
log. It returns result objects; publishing them is the module's job.
"""

import logging
from datetime import datetime, UTC
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .decoding import decode_devices, decode_record, log_failures
from .models import (
    ChatRecord,
    DeviceIdentity,
    MalformedBatch,
    MalformedRecord,
    MembershipChanged,
    MembershipTable,
    OutOfOrderDiff,
    RecordAppended,
    SyncState,
)

_LOGGER = logging.getLogger(__name__)


def _require_mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise MalformedBatch(f"{what} must be a mapping, got {type(value).__name__}")
    return value


def apply_snapshot(
    snapshot: Any,
    require_uuid_fingerprint: bool = True,
) -> Tuple[MembershipTable, List[MalformedRecord]]:
    """Build a fresh table from a full-state snapshot.

    Args:
        snapshot: Mapping of identity key to its raw device metas.
        require_uuid_fingerprint: Whether fingerprints must be UUIDs.

    Returns:
        (table, failures). Malformed records are dropped individually.

    Raises:
        MalformedBatch: If the snapshot is not a mapping.
    """
    if not isinstance(snapshot, Mapping):
        raise MalformedBatch(f"snapshot must be a mapping, got {type(snapshot).__name__}")

    members = {}
    failures: List[MalformedRecord] = []

    for identity_key, entry in snapshot.items():
        devices, dropped = decode_devices(identity_key, entry, require_uuid_fingerprint)
        failures.extend(dropped)
        if devices:
            members[identity_key] = frozenset(devices)

    return MembershipTable(members), failures


def apply_join(
    table: MembershipTable,
    identity_key: str,
    devices: Iterable[DeviceIdentity],
) -> MembershipTable:
    """Union devices into an identity's set.

    A device already present (same fingerprint) is kept as-is.
    """
    incoming = frozenset(devices)
    existing = table.devices_for(identity_key)
    joined = existing | incoming

    if joined == existing:
        return table

    members = dict(table.members)
    members[identity_key] = joined
    return MembershipTable(members)


def apply_leave(
    table: MembershipTable,
    identity_key: str,
    devices: Iterable[DeviceIdentity],
) -> MembershipTable:
    """Remove devices from an identity's set, dropping the key once empty.

    Leaving an absent identity or device is a no-op.
    """
    if identity_key not in table.members:
        return table

    existing = table.members[identity_key]
    remaining = existing - frozenset(devices)

    if remaining == existing and remaining:
        return table

    members = dict(table.members)
    if remaining:
        members[identity_key] = remaining
    else:
        del members[identity_key]
    return MembershipTable(members)


def apply_diff(
    table: MembershipTable,
    joins: Any,
    leaves: Any,
    require_uuid_fingerprint: bool = True,
) -> Tuple[MembershipTable, List[MalformedRecord]]:
    """Apply every join, then every leave, against the joined result.

    Args:
        table: Current table.
        joins: Mapping of identity key to raw metas that joined (None = empty).
        leaves: Mapping of identity key to raw metas that left (None = empty).
        require_uuid_fingerprint: Whether fingerprints must be UUIDs.

    Returns:
        (table, failures).

    Raises:
        MalformedBatch: If joins or leaves is not a mapping. Nothing is applied.
    """
    joins = _require_mapping(joins, "joins")
    leaves = _require_mapping(leaves, "leaves")

    failures: List[MalformedRecord] = []

    for identity_key, entry in joins.items():
        devices, dropped = decode_devices(identity_key, entry, require_uuid_fingerprint)
        failures.extend(dropped)
        table = apply_join(table, identity_key, devices)

    for identity_key, entry in leaves.items():
        devices, dropped = decode_devices(identity_key, entry, require_uuid_fingerprint)
        failures.extend(dropped)
        table = apply_leave(table, identity_key, devices)

    return table, failures


class ReconciliationEngine:
    """Membership state for one room over one connection lifetime."""

    def __init__(
        self,
        topic: str,
        require_uuid_fingerprint: bool = True,
        initial_records: Optional[Iterable[ChatRecord]] = None,
    ) -> None:
        """Initialize an empty, unsynced engine.

        Args:
            topic: Channel topic of the room.
            require_uuid_fingerprint: Whether fingerprints must be UUIDs.
            initial_records: Optional record log to carry over from a previous engine.
        """
        self.topic = topic
        self.require_uuid_fingerprint = require_uuid_fingerprint
        self._state = SyncState.UNINITIALIZED
        self._table = MembershipTable()
        self._records: List[ChatRecord] = list(initial_records or [])

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_synced(self) -> bool:
        return self._state is SyncState.SYNCED

    @property
    def table(self) -> MembershipTable:
        """The current immutable table."""
        return self._table

    @property
    def present_identity_count(self) -> int:
        return self._table.present_count

    @property
    def records(self) -> Tuple[ChatRecord, ...]:
        """Chat records in arrival order."""
        return tuple(self._records)

    def current_membership(self) -> Mapping[str, FrozenSet[DeviceIdentity]]:
        """Read-only snapshot of identity key → devices.

        Later updates replace the table, so a returned snapshot never changes.
        """
        return self._table.members

    def on_full_state(self, snapshot: Any) -> MembershipChanged:
        """Replace all membership with an authoritative snapshot.

        Raises:
            MalformedBatch: If the snapshot is not a mapping (state unchanged).
        """
        table, failures = apply_snapshot(snapshot, self.require_uuid_fingerprint)
        log_failures(failures, f"{self.topic} snapshot")

        previous = self._state
        self._table = table
        self._state = SyncState.SYNCED

        _LOGGER.info(
            f"{self.topic}: snapshot applied ({previous.value} -> synced), "
            f"{table.present_count} identities present"
        )
        return self._changed("snapshot", failures)

    def on_diff(self, joins: Any, leaves: Any) -> MembershipChanged:
        """Apply an incremental diff (joins first, then leaves).

        Raises:
            OutOfOrderDiff: If no snapshot has been applied yet.
            MalformedBatch: If joins or leaves is structurally invalid.
        """
        if self._state is not SyncState.SYNCED:
            raise OutOfOrderDiff(f"{self.topic}: diff received before full state")

        table, failures = apply_diff(self._table, joins, leaves, self.require_uuid_fingerprint)
        log_failures(failures, f"{self.topic} diff")

        self._table = table
        _LOGGER.debug(
            f"{self.topic}: diff applied "
            f"(+{len(joins or {})} / -{len(leaves or {})} identities), "
            f"{table.present_count} present"
        )
        return self._changed("diff", failures)

    def on_custom_event(
        self,
        payload: Any,
        body_key: str = "body",
        now: Optional[datetime] = None,
    ) -> Optional[RecordAppended]:
        """Decode a custom message and append it to the record log.

        Decoding failures are logged and swallowed; they never touch state.

        Returns:
            RecordAppended, or None if the payload could not be decoded.
        """
        try:
            record = decode_record(payload, body_key, now or datetime.now(UTC))
        except MalformedRecord as e:
            _LOGGER.warning(f"{self.topic}: dropped custom event: {e}")
            return None

        self._records.append(record)
        index = len(self._records) - 1
        _LOGGER.debug(f"{self.topic}: record #{index} from {record.sender}")
        return RecordAppended(topic=self.topic, record=record, index=index)

    def reset(self) -> MembershipChanged:
        """Forget membership after the connection is lost.

        The next event must be a full-state snapshot.
        """
        self._table = MembershipTable()
        self._state = SyncState.UNINITIALIZED
        _LOGGER.info(f"{self.topic}: connection lost, membership cleared")
        return self._changed("reset")

    def _changed(self, reason: str, failures: Optional[List[MalformedRecord]] = None) -> MembershipChanged:
        return MembershipChanged(
            topic=self.topic,
            count=self._table.present_count,
            table=self._table,
            reason=reason,
            failures=tuple(failures or ()),
        )
