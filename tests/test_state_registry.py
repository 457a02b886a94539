"""Fleet registry helper tests."""
from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from hatchctl.state import (
    FleetRegistry,
    InstanceRecord,
    RegistryConflictError,
    RegistryCorruptError,
    RegistryDocument,
    RegistryError,
    utc_timestamp,
)


def _record(port: int, **extra: str) -> InstanceRecord:
    return InstanceRecord(port=port, created="2026-01-01T00:00:00Z", **extra)


def test_load_creates_empty_document(tmp_path: Path) -> None:
    """A missing registry file is created empty with restrictive permissions."""
    registry = FleetRegistry(tmp_path / "fleet.json")

    document = registry.load()

    assert document.revision == 0
    assert document.instances == {}
    path = tmp_path / "fleet.json"
    assert json.loads(path.read_text(encoding="utf-8")) == {"revision": 0, "instances": {}}
    assert (path.stat().st_mode & 0o777) == 0o640


def test_upsert_get_and_list_sorted(tmp_path: Path) -> None:
    """Upserts persist and list() returns entries sorted by name."""
    registry = FleetRegistry(tmp_path / "fleet.json")

    registry.upsert("beta", _record(18790))
    registry.upsert("alpha", _record(18789, host="alpha.lan"))

    assert registry.get("alpha") == _record(18789, host="alpha.lan")
    assert registry.get("missing") is None
    assert [name for name, _ in registry.list()] == ["alpha", "beta"]
    assert registry.load().revision == 2


def test_optional_fields_omitted_when_unset(tmp_path: Path) -> None:
    """Only populated optional keys are written to disk."""
    registry = FleetRegistry(tmp_path / "fleet.json")
    registry.upsert("alpha", _record(18789))
    registry.upsert("remote", _record(18790, ssh_host="box", ssh_user="ops", remote_path="/srv/remote"))

    data = json.loads((tmp_path / "fleet.json").read_text(encoding="utf-8"))

    assert data["instances"]["alpha"] == {"port": 18789, "created": "2026-01-01T00:00:00Z"}
    assert data["instances"]["remote"]["ssh_host"] == "box"
    assert data["instances"]["remote"]["remote_path"] == "/srv/remote"


def test_remote_record_helpers() -> None:
    """ssh_target joins the user and host; is_remote follows ssh_host."""
    assert _record(1, ssh_host="box", ssh_user="ops").ssh_target == "ops@box"
    assert _record(1, ssh_host="box").ssh_target == "box"
    assert _record(1, ssh_host="box").is_remote is True
    assert _record(1, host="alpha.lan").is_remote is False
    assert _record(1).ssh_target is None


def test_delete_removes_entry(tmp_path: Path) -> None:
    """Deleting an instance removes it and bumps the revision."""
    registry = FleetRegistry(tmp_path / "fleet.json")
    registry.upsert("alpha", _record(18789))

    document = registry.delete("alpha")

    assert document.instances == {}
    assert registry.get("alpha") is None
    assert registry.load().revision == 2


def test_delete_unknown_raises(tmp_path: Path) -> None:
    """Deleting an unknown name raises with an explicit message."""
    registry = FleetRegistry(tmp_path / "fleet.json")

    with pytest.raises(RegistryError, match="Instance 'ghost' not found in registry"):
        registry.delete("ghost")


def test_expected_revision_mismatch_raises_conflict(tmp_path: Path) -> None:
    """Writers bound to a stale revision are rejected."""
    registry = FleetRegistry(tmp_path / "fleet.json")
    stale = registry.load().revision
    registry.upsert("alpha", _record(18789))

    with pytest.raises(RegistryConflictError):
        registry.upsert("beta", _record(18790), expected_revision=stale)

    assert registry.get("beta") is None


def test_concurrent_writer_detected_before_replace(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A commit landing between read and replace is detected, not overwritten."""
    path = tmp_path / "fleet.json"
    registry = FleetRegistry(path)
    registry.upsert("alpha", _record(18789))

    other = FleetRegistry(path)
    original_read = FleetRegistry._read
    calls = {"count": 0}

    def racing_read(self: FleetRegistry) -> RegistryDocument:
        calls["count"] += 1
        document = original_read(self)
        if calls["count"] == 1:
            # Simulate another process committing right after our initial read.
            payload = json.loads(path.read_text(encoding="utf-8"))
            payload["revision"] += 1
            payload["instances"]["gamma"] = {"port": 18795, "created": "2026-01-01T00:00:00Z"}
            path.write_text(json.dumps(payload), encoding="utf-8")
        return document

    monkeypatch.setattr(FleetRegistry, "_read", racing_read)

    with pytest.raises(RegistryConflictError):
        other.upsert("beta", _record(18790))

    monkeypatch.undo()
    document = registry.load()
    assert "gamma" in document.instances
    assert "beta" not in document.instances
    assert not list(tmp_path.glob(".fleet.json.*"))


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[]",
        json.dumps({"revision": 0, "instances": {"alpha": {"port": "x", "created": "t"}}}),
        json.dumps({"revision": 0, "instances": {"alpha": {"port": 1}}}),
        json.dumps({"revision": -1, "instances": {}}),
        json.dumps(
            {
                "revision": 0,
                "instances": {
                    "alpha": {"port": 18789, "created": "2026-01-01T00:00:00Z"},
                    "beta": {"port": 18789, "created": "2026-01-01T00:00:00Z"},
                },
            }
        ),
    ],
)
def test_corrupt_documents_raise(tmp_path: Path, content: str) -> None:
    """Structurally invalid registries raise and are never reset."""
    path = tmp_path / "fleet.json"
    path.write_text(content, encoding="utf-8")
    registry = FleetRegistry(path)

    with pytest.raises(RegistryCorruptError):
        registry.load()

    assert path.read_text(encoding="utf-8") == content


def test_documents_without_revision_read_as_zero(tmp_path: Path) -> None:
    """Legacy documents lacking a revision key load as revision 0."""
    path = tmp_path / "fleet.json"
    path.write_text(
        json.dumps({"instances": {"alpha": {"port": 18789, "created": "2026-01-01T00:00:00Z"}}}),
        encoding="utf-8",
    )

    document = FleetRegistry(path).load()

    assert document.revision == 0
    assert document.instances["alpha"].port == 18789


def test_utc_timestamp_format() -> None:
    """Timestamps use second precision with a Z suffix."""
    assert utc_timestamp(datetime(2026, 3, 4, 5, 6, 7, 890, tzinfo=UTC)) == "2026-03-04T05:06:07Z"


@pytest.mark.parametrize(
    ("entry", "message"),
    [
        ({"port": -5, "created": "2026-01-01T00:00:00Z"}, "out-of-range port -5"),
        ({"port": 0, "created": "2026-01-01T00:00:00Z"}, "out-of-range port 0"),
        ({"port": 65536, "created": "2026-01-01T00:00:00Z"}, "out-of-range port 65536"),
        ({"port": 18789, "created": "x"}, "invalid 'created' timestamp"),
        ({"port": 18789, "created": "2026-01-01 00:00:00"}, "invalid 'created' timestamp"),
    ],
)
def test_entries_with_invalid_values_raise(tmp_path: Path, entry: dict[str, object], message: str) -> None:
    """Ports outside 1-65535 and malformed creation times mark the registry corrupt."""
    path = tmp_path / "fleet.json"
    path.write_text(json.dumps({"revision": 2, "instances": {"alpha": entry}}), encoding="utf-8")

    with pytest.raises(RegistryCorruptError, match=message):
        FleetRegistry(path).load()


def test_boundary_ports_are_accepted() -> None:
    """The lowest and highest valid ports load cleanly."""
    low = InstanceRecord.from_mapping("alpha", {"port": 1, "created": "2026-01-01T00:00:00Z"})
    high = InstanceRecord.from_mapping("beta", {"port": 65535, "created": "2026-01-01T00:00:00Z"})

    assert (low.port, high.port) == (1, 65535)
