"""Tests for presence models and payload decoding."""

import uuid
from datetime import datetime, UTC

import pytest

from presence_sync.modules.presence import DeviceIdentity, MalformedRecord, MembershipTable
from presence_sync.modules.presence.decoding import (
    decode_device,
    decode_devices,
    decode_record,
    parse_fingerprint,
)

F1 = "6f1c9b5e-2d3a-4e7b-9c1d-0a2b3c4d5e6f"
F2 = "0d9e8f7a-6b5c-4d3e-8f2a-1b0c9d8e7f6a"


def meta(fingerprint=F1, ref="r1", t=100):
    """Build a raw presence meta."""
    return {"device_token": fingerprint, "phx_ref": ref, "online_at": t}


class TestDeviceIdentity:
    """Test DeviceIdentity equality semantics."""

    def test_equality_uses_fingerprint_only(self):
        """Same fingerprint, different session → same device."""
        a = decode_device(meta(ref="r1", t=100))
        b = decode_device(meta(ref="r2", t=200))

        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1

    def test_different_fingerprints_differ(self):
        """Different fingerprints → different devices."""
        a = decode_device(meta(F1))
        b = decode_device(meta(F2))

        assert a != b
        assert len({a, b}) == 2

    def test_frozen(self):
        """DeviceIdentity is immutable."""
        device = decode_device(meta())

        with pytest.raises(AttributeError):
            device.session_ref = "other"


class TestMembershipTable:
    """Test MembershipTable derived values."""

    def test_empty_table(self):
        """Test an empty table."""
        table = MembershipTable()

        assert table.present_count == 0
        assert table.identities() == []
        assert table.devices_for("alice") == frozenset()
        assert "alice" not in table

    def test_count_ignores_empty_sets(self):
        """An identity with an empty set is not present."""
        d1 = decode_device(meta(F1))
        table = MembershipTable({"u1": {d1}, "u2": set()})

        assert table.present_count == 1
        assert table.identities() == ["u1"]
        assert "u1" in table
        assert "u2" not in table

    def test_members_are_read_only(self):
        """Members cannot be mutated through the table."""
        d1 = decode_device(meta(F1))
        table = MembershipTable({"u1": {d1}})

        with pytest.raises(TypeError):
            table.members["u2"] = frozenset()

        assert isinstance(table.members["u1"], frozenset)

    def test_fingerprints(self):
        """Test fingerprint lookup."""
        table = MembershipTable({"u1": {decode_device(meta(F1)), decode_device(meta(F2))}})

        assert table.fingerprints("u1") == {uuid.UUID(F1), uuid.UUID(F2)}


class TestParseFingerprint:
    """Test fingerprint validation."""

    def test_parses_uuid(self):
        """Test case-insensitive UUID parsing."""
        assert parse_fingerprint(F1.upper()) == uuid.UUID(F1)

    def test_accepts_uuid_instance(self):
        """Test UUID objects pass through."""
        value = uuid.UUID(F1)
        assert parse_fingerprint(value) is value

    @pytest.mark.parametrize("value", [None, "", "   ", 42, "not-a-uuid"])
    def test_rejects_invalid(self, value):
        """Test invalid fingerprints fail with MalformedRecord."""
        with pytest.raises(MalformedRecord):
            parse_fingerprint(value)

    def test_non_uuid_allowed_when_relaxed(self):
        """Test relaxed mode keeps arbitrary strings."""
        assert parse_fingerprint(" device-1 ", require_uuid=False) == "device-1"

    def test_relaxed_mode_normalises_uuids(self):
        """Test relaxed mode gives one key for every spelling of a UUID."""
        from_instance = parse_fingerprint(uuid.UUID(F1), require_uuid=False)
        from_upper = parse_fingerprint(F1.upper(), require_uuid=False)

        assert from_instance == from_upper == F1


class TestDecodeDevice:
    """Test decoding of single device metas."""

    def test_decode(self):
        """Test a well-formed meta."""
        device = decode_device(meta(F1, "r1", 100))

        assert device.fingerprint == uuid.UUID(F1)
        assert device.session_ref == "r1"
        assert device.joined_at == datetime.fromtimestamp(100, UTC)

    def test_float_timestamp(self):
        """Test fractional timestamps."""
        device = decode_device(meta(t=100.5))
        assert device.joined_at.timestamp() == 100.5

    def test_ignores_extra_fields(self):
        """Test unknown fields are ignored."""
        raw = meta()
        raw["status"] = "away"
        assert decode_device(raw).fingerprint == uuid.UUID(F1)

    @pytest.mark.parametrize(
        "raw, reason",
        [
            ("nope", "expected a mapping"),
            ({"online_at": 1, "device_token": F1}, "missing 'phx_ref'"),
            ({"phx_ref": "r", "device_token": F1}, "missing 'online_at'"),
            ({"phx_ref": "r", "online_at": 1}, "missing 'device_token'"),
            ({"phx_ref": 7, "online_at": 1, "device_token": F1}, "must be a string"),
            ({"phx_ref": "r", "online_at": "1", "device_token": F1}, "must be a number"),
            ({"phx_ref": "r", "online_at": True, "device_token": F1}, "must be a number"),
            ({"phx_ref": "r", "online_at": float("nan"), "device_token": F1}, "finite"),
            ({"phx_ref": "r", "online_at": 1, "device_token": "xyz"}, "not a UUID"),
        ],
    )
    def test_malformed(self, raw, reason):
        """Test each malformed shape is reported, not asserted."""
        with pytest.raises(MalformedRecord, match=reason):
            decode_device(raw)


class TestDecodeDevices:
    """Test per-item failure isolation."""

    def test_bad_item_does_not_drop_neighbours(self):
        """One malformed meta is dropped; the rest decode."""
        devices, failures = decode_devices("alice", [meta(F1), {"phx_ref": "x"}, meta(F2)])

        assert {d.fingerprint for d in devices} == {uuid.UUID(F1), uuid.UUID(F2)}
        assert len(failures) == 1
        assert failures[0].identity_key == "alice"

    def test_metas_envelope(self):
        """Test the {"metas": [...]} envelope."""
        devices, failures = decode_devices("alice", {"metas": [meta(F1)]})

        assert len(devices) == 1
        assert failures == []

    @pytest.mark.parametrize("entry", ["oops", {"other": []}, {"metas": "x"}, None])
    def test_structurally_invalid_entry(self, entry):
        """A non-list entry yields a single failure and no devices."""
        devices, failures = decode_devices("alice", entry)

        assert devices == []
        assert len(failures) == 1


class TestDecodeRecord:
    """Test chat record decoding."""

    def test_decode(self):
        """Test a well-formed chat payload."""
        now = datetime(2024, 1, 1, tzinfo=UTC)
        record = decode_record({"user_id": "alice", "body": "hi"}, received_at=now)

        assert record.sender == "alice"
        assert record.body == "hi"
        assert record.received_at == now

    def test_custom_body_key(self):
        """Test a configured body key."""
        record = decode_record({"user_id": "alice", "text": "hi"}, body_key="text")
        assert record.body == "hi"

    @pytest.mark.parametrize("payload", [None, [], {"user_id": "alice"}, {"body": "hi"}])
    def test_malformed(self, payload):
        """Test malformed payloads raise MalformedRecord."""
        with pytest.raises(MalformedRecord):
            decode_record(payload)
