"""Tests for instance status derivation."""
from __future__ import annotations

from datetime import UTC, datetime

import pytest

from hatchctl.providers import ContainerInspection, InstanceStatusProvider, format_uptime
from hatchctl.providers.instance_status_provider import parse_docker_timestamp
from hatchctl.state import InstanceRecord

NOW = datetime(2026, 5, 1, 12, 0, 0, tzinfo=UTC)
RECORD = InstanceRecord(port=18789, created="2026-04-01T00:00:00Z")


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0, "0s"), (59, "59s"), (60, "1m"), (3599, "59m"), (3600, "1h"), (86399, "23h"), (86400, "1d"), (-5, "0s")],
)
def test_format_uptime(seconds: float, expected: str) -> None:
    """Uptime is the largest whole unit."""
    assert format_uptime(seconds) == expected


def test_parse_docker_timestamp_handles_nanoseconds() -> None:
    """Nanosecond fractions are truncated to microseconds."""
    parsed = parse_docker_timestamp("2026-05-01T11:00:00.123456789Z")

    assert parsed == datetime(2026, 5, 1, 11, 0, 0, 123456, tzinfo=UTC)


@pytest.mark.parametrize("value", [None, "", "0001-01-01T00:00:00Z", "yesterday"])
def test_parse_docker_timestamp_unset(value: str | None) -> None:
    """Zero, empty and garbage timestamps yield None."""
    assert parse_docker_timestamp(value) is None


def test_running_instance_has_uptime() -> None:
    """A running container reports uptime relative to the clock."""
    inspection = ContainerInspection(status="running", started_at="2026-05-01T09:30:00.000000000Z")

    status = InstanceStatusProvider().status("alpha", RECORD, inspection, now=NOW)

    assert status.state == "running"
    assert status.uptime == "2h"
    assert status.port == 18789
    assert status.registered is True


def test_exited_instance_has_no_uptime() -> None:
    """Stopped containers report their state without uptime."""
    inspection = ContainerInspection(status="exited", started_at="2026-05-01T09:30:00Z")

    status = InstanceStatusProvider().status("alpha", RECORD, inspection, now=NOW)

    assert status.state == "exited"
    assert status.uptime is None


def test_missing_container_is_not_created() -> None:
    """No container means not-created."""
    status = InstanceStatusProvider().status("alpha", RECORD, None)

    assert status.state == "not-created"
    assert status.detail == ""


def test_unexpected_state_maps_to_unknown() -> None:
    """States outside the known set collapse to unknown."""
    status = InstanceStatusProvider().status("alpha", RECORD, ContainerInspection(status="removing"))

    assert status.state == "unknown"


def test_orphan_directory_flagged() -> None:
    """Unregistered directories carry their compose port and a detail."""
    status = InstanceStatusProvider().status("ghost", None, None, port=18800)

    assert status.registered is False
    assert status.port == 18800
    assert status.detail == "Directory has no registry entry."


def test_remote_record_marked_remote() -> None:
    """Remote records are flagged in the status."""
    record = InstanceRecord(port=18790, created="2026-04-01T00:00:00Z", ssh_host="box")

    status = InstanceStatusProvider().status("beta", record, ContainerInspection(status="paused"))

    assert status.remote is True
    assert status.to_dict()["state"] == "paused"


def test_unreachable_host_reports_unknown() -> None:
    """Hosts that could not be queried report unknown with the error."""
    status = InstanceStatusProvider().unreachable("alpha", RECORD, "ssh: connect timed out")

    assert status.state == "unknown"
    assert status.detail == "ssh: connect timed out"
    assert status.port == 18789
