"""Derive instance runtime status from registry metadata and container inspection."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from ..state import InstanceRecord

#: Container states reported by ``docker inspect`` plus the two synthetic ones.
KNOWN_STATES = (
    "not-created",
    "created",
    "running",
    "exited",
    "restarting",
    "paused",
    "dead",
    "unknown",
)

_ZERO_TIME_PREFIX = "0001-01-01"


@dataclass(frozen=True)
class ContainerInspection:
    """Subset of ``docker inspect`` output used for status."""

    status: str
    started_at: str | None = None


@dataclass(frozen=True)
class InstanceStatus:
    """Observed status of one instance."""

    name: str
    port: int | None
    state: str
    uptime: str | None = None
    started_at: str | None = None
    remote: bool = False
    registered: bool = True
    detail: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "name": self.name,
            "port": self.port,
            "state": self.state,
            "uptime": self.uptime,
            "started_at": self.started_at,
            "remote": self.remote,
            "registered": self.registered,
            "detail": self.detail,
        }


def format_uptime(seconds: float) -> str:
    """Format *seconds* as the largest whole unit: ``Ns``, ``Nm``, ``Nh`` or ``Nd``."""
    total = max(int(seconds), 0)
    if total < 60:
        return f"{total}s"
    if total < 3600:
        return f"{total // 60}m"
    if total < 86400:
        return f"{total // 3600}h"
    return f"{total // 86400}d"


def parse_docker_timestamp(value: str | None) -> datetime | None:
    """Parse Docker's RFC 3339 timestamps, which carry nanosecond precision."""
    if not value or value.startswith(_ZERO_TIME_PREFIX):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    main, sep, rest = text.partition(".")
    if sep:
        digits = ""
        index = 0
        while index < len(rest) and rest[index].isdigit():
            digits += rest[index]
            index += 1
        text = f"{main}.{digits[:6].ljust(6, '0')}{rest[index:]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class InstanceStatusProvider:
    """Combine a registry record with a container inspection.

    The derivation is pure: the same record, inspection and clock always produce
    the same :class:`InstanceStatus`. No state is ever written back to the
    registry.
    """

    def status(
        self,
        name: str,
        record: InstanceRecord | None,
        inspection: ContainerInspection | None,
        *,
        port: int | None = None,
        now: datetime | None = None,
        detail: str = "",
    ) -> InstanceStatus:
        """Return the status for *name*.

        ``inspection`` is ``None`` when the container does not exist. ``port``
        supplies the host port for unregistered directories.
        """
        resolved_port = record.port if record is not None else port
        remote = record.is_remote if record is not None else False
        registered = record is not None

        if inspection is None:
            return InstanceStatus(
                name=name,
                port=resolved_port,
                state="not-created",
                remote=remote,
                registered=registered,
                detail=detail or ("" if registered else "Directory has no registry entry."),
            )

        state = inspection.status.strip().lower() or "unknown"
        if state not in KNOWN_STATES:
            state = "unknown"

        uptime: str | None = None
        started = parse_docker_timestamp(inspection.started_at)
        if state == "running" and started is not None:
            current = now or datetime.now(tz=UTC)
            uptime = format_uptime((current - started).total_seconds())

        if not detail and not registered:
            detail = "Directory has no registry entry."
        return InstanceStatus(
            name=name,
            port=resolved_port,
            state=state,
            uptime=uptime,
            started_at=inspection.started_at if started is not None else None,
            remote=remote,
            registered=registered,
            detail=detail,
        )

    def unreachable(
        self,
        name: str,
        record: InstanceRecord | None,
        message: str,
        *,
        port: int | None = None,
    ) -> InstanceStatus:
        """Return an ``unknown`` status for hosts that could not be queried."""
        return InstanceStatus(
            name=name,
            port=record.port if record is not None else port,
            state="unknown",
            remote=record.is_remote if record is not None else False,
            registered=record is not None,
            detail=message,
        )


__all__ = [
    "ContainerInspection",
    "InstanceStatus",
    "InstanceStatusProvider",
    "KNOWN_STATES",
    "format_uptime",
    "parse_docker_timestamp",
]
