"""Decoding of raw channel payloads into presence records.

Raw payloads are untrusted, semi-structured dicts. Every decoder validates
its input and raises MalformedRecord instead of assuming well-formed data;
the batch helpers isolate per-item failures so one bad record never drops
its neighbours.
"""

import logging
import math
import uuid
from datetime import datetime, UTC
from typing import Any, List, Mapping, Optional, Tuple

from .models import ChatRecord, DeviceIdentity, MalformedRecord

logger = logging.getLogger(__name__)

# Raw field names used by the presence feed
SESSION_REF_KEY = "phx_ref"
JOINED_AT_KEY = "online_at"
FINGERPRINT_KEY = "device_token"
METAS_KEY = "metas"

# Raw field names of a chat message payload
SENDER_KEY = "user_id"
BODY_KEY = "body"


def parse_fingerprint(value: Any, require_uuid: bool = True) -> uuid.UUID | str:
    """Build a device fingerprint from external input.

    Args:
        value: Raw fingerprint (UUID string or UUID).
        require_uuid: When False, any non-empty string is accepted.

    Returns:
        A UUID. When require_uuid is False, always a string: the canonical
        UUID form if the value is a UUID, otherwise the stripped input.

    Raises:
        MalformedRecord: If the value is missing or not a valid identifier.
    """
    if isinstance(value, uuid.UUID):
        return value if require_uuid else str(value)

    if not isinstance(value, str) or not value.strip():
        raise MalformedRecord(value, f"fingerprint must be a non-empty string, got {value!r}")

    try:
        parsed = uuid.UUID(value.strip())
    except ValueError:
        if not require_uuid:
            return value.strip()
        raise MalformedRecord(value, f"fingerprint is not a UUID: {value!r}") from None

    return parsed if require_uuid else str(parsed)


def _parse_timestamp(value: Any) -> datetime:
    # bool is an int subclass but never a timestamp
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedRecord(value, f"{JOINED_AT_KEY} must be a number, got {value!r}")

    if not math.isfinite(value):
        raise MalformedRecord(value, f"{JOINED_AT_KEY} must be finite, got {value!r}")

    try:
        return datetime.fromtimestamp(value, UTC)
    except (OverflowError, OSError, ValueError):
        raise MalformedRecord(value, f"{JOINED_AT_KEY} out of range: {value!r}") from None


def _require_str(raw: Mapping[str, Any], key: str) -> str:
    if key not in raw:
        raise MalformedRecord(raw, f"missing '{key}'")

    value = raw[key]
    if not isinstance(value, str):
        raise MalformedRecord(raw, f"'{key}' must be a string, got {type(value).__name__}")

    return value


def decode_device(raw: Any, require_uuid: bool = True) -> DeviceIdentity:
    """Decode one raw presence meta into a DeviceIdentity.

    Args:
        raw: Dict with "phx_ref", "online_at" and "device_token".
        require_uuid: Whether the fingerprint must be a UUID.

    Returns:
        The decoded DeviceIdentity.

    Raises:
        MalformedRecord: If any field is missing or invalid.
    """
    if not isinstance(raw, Mapping):
        raise MalformedRecord(raw, f"expected a mapping, got {type(raw).__name__}")

    session_ref = _require_str(raw, SESSION_REF_KEY)

    if JOINED_AT_KEY not in raw:
        raise MalformedRecord(raw, f"missing '{JOINED_AT_KEY}'")
    joined_at = _parse_timestamp(raw[JOINED_AT_KEY])

    if FINGERPRINT_KEY not in raw:
        raise MalformedRecord(raw, f"missing '{FINGERPRINT_KEY}'")
    try:
        fingerprint = parse_fingerprint(raw[FINGERPRINT_KEY], require_uuid)
    except MalformedRecord as e:
        raise MalformedRecord(raw, e.reason) from None

    return DeviceIdentity(fingerprint=fingerprint, session_ref=session_ref, joined_at=joined_at)


def unwrap_metas(value: Any) -> List[Any]:
    """Return the list of raw device metas for one identity entry.

    Accepts either a bare list or the {"metas": [...]} envelope.

    Raises:
        MalformedRecord: If the entry has neither shape.
    """
    if isinstance(value, Mapping):
        if METAS_KEY not in value:
            raise MalformedRecord(value, f"missing '{METAS_KEY}'")
        value = value[METAS_KEY]

    if not isinstance(value, list):
        raise MalformedRecord(value, f"expected a list of metas, got {type(value).__name__}")

    return value


def decode_devices(
    identity_key: str,
    entry: Any,
    require_uuid: bool = True,
) -> Tuple[List[DeviceIdentity], List[MalformedRecord]]:
    """Decode every device listed for one identity.

    Args:
        identity_key: Identity the devices belong to (for error reporting).
        entry: List of raw metas, or a {"metas": [...]} envelope.
        require_uuid: Whether fingerprints must be UUIDs.

    Returns:
        (devices, failures). A structurally invalid entry yields no devices
        and a single failure.
    """
    try:
        metas = unwrap_metas(entry)
    except MalformedRecord as e:
        return [], [MalformedRecord(e.raw, e.reason, identity_key)]

    devices: List[DeviceIdentity] = []
    failures: List[MalformedRecord] = []

    for raw in metas:
        try:
            devices.append(decode_device(raw, require_uuid))
        except MalformedRecord as e:
            failures.append(MalformedRecord(e.raw, e.reason, identity_key))

    return devices, failures


def decode_record(
    payload: Any,
    body_key: str = BODY_KEY,
    received_at: Optional[datetime] = None,
) -> ChatRecord:
    """Decode a custom message payload into a ChatRecord.

    Args:
        payload: Dict with "user_id" and the body field.
        body_key: Name of the body field.
        received_at: Append time (defaults to now).

    Raises:
        MalformedRecord: If the payload is not a mapping or a field is invalid.
    """
    if not isinstance(payload, Mapping):
        raise MalformedRecord(payload, f"expected a mapping, got {type(payload).__name__}")

    sender = _require_str(payload, SENDER_KEY)
    body = _require_str(payload, body_key)

    return ChatRecord(
        sender=sender,
        body=body,
        received_at=received_at or datetime.now(UTC),
    )


def log_failures(failures: List[MalformedRecord], context: str) -> None:
    """Log dropped records at warning level."""
    for failure in failures:
        logger.warning(f"{context}: dropped {failure}")
