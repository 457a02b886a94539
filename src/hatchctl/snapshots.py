"""Capture the persisted state of a running instance into a tarball."""
from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .archive import ArchiveError, ArchiveResult, archive_directory
from .lifecycle import InstanceNotFoundError
from .providers import ComposeError, ComposeProvider
from .state import FleetRegistry


class SnapshotError(RuntimeError):
    """Raised when a snapshot cannot be taken."""


@dataclass(frozen=True)
class SnapshotResult:
    """A completed snapshot."""

    name: str
    container: str
    docker_host: str
    archive: ArchiveResult

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "name": self.name,
            "container": self.container,
            "docker_host": self.docker_host or "local",
            "archive": str(self.archive.path),
            "checksum": self.archive.checksum,
            "size": self.archive.size,
        }


@dataclass(slots=True)
class Snapshotter:
    """Copy a container's state directory out and archive it.

    ``docker_host`` selects the managed Docker host (``DOCKER_HOST``). When it
    is empty, remote instances are reached through ``ssh://<ssh_target>`` and
    local ones through the default Docker socket.
    """

    compose: ComposeProvider
    registry: FleetRegistry
    snapshots_dir: Path
    state_path: str = "/home/openclaw/.openclaw"
    docker_host: str = ""

    def snapshot(self, name: str) -> SnapshotResult:
        """Snapshot registered, running instance *name*."""
        record = self.registry.get(name)
        if record is None:
            raise InstanceNotFoundError(f"Instance '{name}' not found")

        docker_host = self.docker_host
        if not docker_host and record.is_remote:
            docker_host = f"ssh://{record.ssh_target}"
        provider = self.compose.for_docker_host(docker_host)
        container = provider.container_name(name)

        try:
            inspection = provider.inspect(container)
        except ComposeError as exc:
            raise SnapshotError(f"Cannot inspect '{container}': {exc}") from exc
        if inspection is None or inspection.status != "running":
            state = inspection.status if inspection else "not-created"
            raise SnapshotError(f"Instance '{name}' is not running (state: {state})")

        staging = Path(tempfile.mkdtemp(prefix=f"hatchctl-snapshot-{name}-"))
        try:
            captured = staging / name
            try:
                provider.copy_from(container, self.state_path, captured)
            except ComposeError as exc:
                raise SnapshotError(f"Failed to copy {self.state_path} from '{container}': {exc}") from exc
            try:
                archive = archive_directory(captured, self.snapshots_dir.expanduser(), name)
            except ArchiveError as exc:
                raise SnapshotError(f"Failed to archive snapshot of '{name}': {exc}") from exc
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        return SnapshotResult(name=name, container=container, docker_host=docker_host, archive=archive)


__all__ = ["SnapshotError", "SnapshotResult", "Snapshotter"]
