"""Helpers for interacting with the hatchctl fleet registry.

The registry (``~/.hatchery/fleet.json`` by default) is the single source of
truth for instance placement. It is a JSON document shaped like::

    {"revision": 3, "instances": {"alpha": {"port": 18789, "created": "..."}}}

Every mutation performs a full read-modify-write and replaces the file
atomically. ``revision`` is bumped on each write; a writer that observes a
different on-disk revision than the one it read raises
:class:`RegistryConflictError` instead of silently discarding the other
writer's update.
"""
from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

CREATED_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class RegistryError(RuntimeError):
    """Raised when registry operations fail."""


class RegistryCorruptError(RegistryError):
    """Raised when the registry document cannot be parsed or is malformed."""


class RegistryConflictError(RegistryError):
    """Raised when another writer committed between our read and our write."""


def utc_timestamp(moment: datetime | None = None) -> str:
    """Return *moment* (default: now) formatted as an ISO-8601 UTC string."""
    value = moment or datetime.now(tz=UTC)
    return value.astimezone(UTC).strftime(CREATED_FORMAT)


@dataclass(frozen=True)
class InstanceRecord:
    """Placement metadata for one instance."""

    port: int
    created: str
    host: str | None = None
    ssh_host: str | None = None
    ssh_user: str | None = None
    remote_path: str | None = None

    @property
    def is_remote(self) -> bool:
        """Return True when lifecycle operations must run over SSH."""
        return bool(self.ssh_host)

    @property
    def ssh_target(self) -> str | None:
        """Return ``user@host`` (or ``host``) for remote instances."""
        if not self.ssh_host:
            return None
        return f"{self.ssh_user}@{self.ssh_host}" if self.ssh_user else self.ssh_host

    def to_dict(self) -> dict[str, object]:
        """Return the JSON representation, omitting unset optional keys."""
        payload: dict[str, object] = {"port": self.port, "created": self.created}
        for key in ("host", "ssh_host", "ssh_user", "remote_path"):
            value = getattr(self, key)
            if value:
                payload[key] = value
        return payload

    @classmethod
    def from_mapping(cls, name: str, raw: object) -> InstanceRecord:
        """Validate and build a record from its JSON mapping."""
        if not isinstance(raw, Mapping):
            raise RegistryCorruptError(f"Registry entry for '{name}' must be a mapping.")
        port = raw.get("port")
        if isinstance(port, bool) or not isinstance(port, int):
            raise RegistryCorruptError(f"Registry entry for '{name}' has a non-integer port.")
        if not 1 <= port <= 65535:
            raise RegistryCorruptError(f"Registry entry for '{name}' has out-of-range port {port}.")
        created = raw.get("created")
        if not isinstance(created, str) or not created.strip():
            raise RegistryCorruptError(f"Registry entry for '{name}' is missing 'created'.")
        try:
            datetime.strptime(created, CREATED_FORMAT)
        except ValueError as exc:
            raise RegistryCorruptError(
                f"Registry entry for '{name}' has an invalid 'created' timestamp: {created!r}."
            ) from exc
        optional: dict[str, str | None] = {}
        for key in ("host", "ssh_host", "ssh_user", "remote_path"):
            value = raw.get(key)
            if value is not None and not isinstance(value, str):
                raise RegistryCorruptError(
                    f"Registry entry for '{name}' has a non-string '{key}'."
                )
            optional[key] = value or None
        return cls(port=port, created=created, **optional)


@dataclass(slots=True)
class RegistryDocument:
    """In-memory view of the registry file."""

    revision: int = 0
    instances: dict[str, InstanceRecord] = field(default_factory=dict)

    def used_ports(self) -> set[int]:
        """Return every port currently assigned."""
        return {record.port for record in self.instances.values()}

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON payload persisted on disk."""
        return {
            "revision": self.revision,
            "instances": {
                name: self.instances[name].to_dict() for name in sorted(self.instances)
            },
        }


@dataclass(frozen=True)
class FleetRegistry:
    """High-level interface to ``fleet.json``."""

    path: Path

    def __post_init__(self) -> None:
        """Normalise the path after initialisation."""
        object.__setattr__(self, "path", self.path.expanduser())

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def load(self) -> RegistryDocument:
        """Return the registry document, creating an empty one if missing."""
        if not self.path.exists():
            document = RegistryDocument()
            self._write(document)
            return document
        return self._read()

    def get(self, name: str) -> InstanceRecord | None:
        """Return the record for *name* if registered."""
        return self.load().instances.get(name)

    def list(self) -> list[tuple[str, InstanceRecord]]:
        """Return ``(name, record)`` pairs sorted by name."""
        document = self.load()
        return [(name, document.instances[name]) for name in sorted(document.instances)]

    def upsert(
        self,
        name: str,
        record: InstanceRecord,
        *,
        expected_revision: int | None = None,
    ) -> RegistryDocument:
        """Add or replace the record for *name*."""
        normalized = _normalize_name(name)

        def _apply(document: RegistryDocument) -> None:
            document.instances[normalized] = record

        return self._mutate(_apply, expected_revision=expected_revision)

    def delete(self, name: str, *, expected_revision: int | None = None) -> RegistryDocument:
        """Remove *name* from the registry."""
        normalized = _normalize_name(name)

        def _apply(document: RegistryDocument) -> None:
            if normalized not in document.instances:
                raise RegistryError(f"Instance '{normalized}' not found in registry")
            del document.instances[normalized]

        return self._mutate(_apply, expected_revision=expected_revision)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _mutate(
        self,
        mutator: Callable[[RegistryDocument], None],
        *,
        expected_revision: int | None,
    ) -> RegistryDocument:
        document = self.load()
        base_revision = document.revision
        if expected_revision is not None and expected_revision != base_revision:
            raise RegistryConflictError(
                f"Registry changed concurrently (expected revision {expected_revision}, "
                f"found {base_revision}); re-run the command."
            )
        mutator(document)
        document.revision = base_revision + 1
        self._write(document, expected_revision=base_revision)
        return document

    def _read(self) -> RegistryDocument:
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise RegistryCorruptError(f"Failed to read registry {self.path}: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RegistryCorruptError(f"Registry corrupted ({self.path}): {exc}") from exc
        if not isinstance(data, Mapping):
            raise RegistryCorruptError(f"Registry must be a JSON object ({self.path}).")

        revision = data.get("revision", 0)
        if isinstance(revision, bool) or not isinstance(revision, int) or revision < 0:
            raise RegistryCorruptError(f"Registry revision must be a non-negative integer ({self.path}).")

        raw_instances = data.get("instances", {})
        if not isinstance(raw_instances, Mapping):
            raise RegistryCorruptError(f"Registry 'instances' must be an object ({self.path}).")

        instances: dict[str, InstanceRecord] = {}
        seen_ports: dict[int, str] = {}
        for name, raw in raw_instances.items():
            record = InstanceRecord.from_mapping(str(name), raw)
            if record.port in seen_ports:
                raise RegistryCorruptError(
                    f"Port {record.port} is assigned to both '{seen_ports[record.port]}' "
                    f"and '{name}' ({self.path})."
                )
            seen_ports[record.port] = str(name)
            instances[str(name)] = record
        return RegistryDocument(revision=revision, instances=instances)

    def _current_revision(self) -> int | None:
        if not self.path.exists():
            return None
        return self._read().revision

    def _write(self, document: RegistryDocument, *, expected_revision: int | None = None) -> None:
        """Atomically persist *document*, checking the on-disk revision first."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RegistryError(f"Failed to prepare registry directory: {exc}") from exc

        tmp_fd, tmp_name = tempfile.mkstemp(
            dir=str(self.path.parent),
            prefix=f".{self.path.name}.",
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                json.dump(document.to_dict(), handle, indent=2, sort_keys=False)
                handle.write("\n")
            if expected_revision is not None:
                on_disk = self._current_revision()
                if on_disk is not None and on_disk != expected_revision:
                    raise RegistryConflictError(
                        f"Registry changed concurrently (expected revision {expected_revision}, "
                        f"found {on_disk}); re-run the command."
                    )
            os.replace(tmp_path, self.path)
            os.chmod(self.path, 0o640)
        except OSError as exc:
            raise RegistryError(f"Failed to write registry {self.path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)


def _normalize_name(name: str) -> str:
    normalized = name.strip()
    if not normalized:
        raise RegistryError("Instance name must be a non-empty string.")
    return normalized


__all__ = [
    "FleetRegistry",
    "InstanceRecord",
    "RegistryConflictError",
    "RegistryCorruptError",
    "RegistryDocument",
    "RegistryError",
    "utc_timestamp",
]
