"""Tear down instances: stop containers, archive, unregister, delete."""
from __future__ import annotations

import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from .archive import ArchiveError, ArchiveResult, archive_directory
from .lifecycle import COMPOSE_FILE, InstanceNotFoundError, LifecycleController
from .providers import ComposeError, ComposeLocation
from .state import InstanceRecord, RegistryError

StepCallback = Callable[[str, str, str | None], None]


class DestroyError(RuntimeError):
    """Raised when an instance cannot be destroyed safely."""


@dataclass(frozen=True)
class DestroyResult:
    """What :meth:`Destroyer.destroy` removed or kept."""

    name: str
    archive: ArchiveResult | None
    removed_directory: Path | None
    was_registered: bool

    @property
    def archive_path(self) -> Path | None:
        """Return the archive path when one was written."""
        return self.archive.path if self.archive else None

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "name": self.name,
            "archive": str(self.archive.path) if self.archive else None,
            "checksum": self.archive.checksum if self.archive else None,
            "removed_directory": str(self.removed_directory) if self.removed_directory else None,
            "was_registered": self.was_registered,
        }


@dataclass(slots=True)
class Destroyer:
    """Remove an instance after its containers are down.

    Nothing is deleted unless teardown (and archiving, when requested)
    succeeded first.
    """

    lifecycle: LifecycleController
    archives_dir: Path

    def resolve(self, name: str) -> tuple[InstanceRecord | None, Path]:
        """Return ``(record, directory)`` for a registered or orphaned instance."""
        document = self.lifecycle.registry.load()
        record = document.instances.get(name)
        if record is None and name not in self.lifecycle.orphans(document.instances):
            raise InstanceNotFoundError(f"Instance '{name}' not found")
        return record, self.lifecycle.instance_dir(name)

    def destroy(
        self,
        name: str,
        *,
        archive: bool = False,
        on_step: StepCallback | None = None,
    ) -> DestroyResult:
        """Destroy *name*; see the class docstring for ordering guarantees."""
        record, directory = self.resolve(name)
        notify = on_step or _ignore_step

        location = self._teardown_location(name, record, directory)
        if location is None:
            notify("compose.down", "skipped", f"No {COMPOSE_FILE} in {directory}")
        else:
            try:
                self.lifecycle.compose.down(location, volumes=True, remove_orphans=True)
            except ComposeError as exc:
                notify("compose.down", "error", str(exc))
                raise DestroyError(f"Failed to stop '{name}'; nothing was removed: {exc}") from exc
            notify("compose.down", "success", None)

        archive_result: ArchiveResult | None = None
        if archive:
            if not directory.is_dir():
                raise DestroyError(
                    f"Cannot archive '{name}': {directory} does not exist; nothing was removed."
                )
            try:
                archive_result = archive_directory(directory, self.archives_dir.expanduser(), name)
            except ArchiveError as exc:
                notify("archive", "error", str(exc))
                raise DestroyError(f"Failed to archive '{name}'; nothing was removed: {exc}") from exc
            notify("archive", "success", str(archive_result.path))

        if record is not None:
            try:
                self.lifecycle.registry.delete(name)
            except RegistryError as exc:
                notify("registry.delete", "error", str(exc))
                raise DestroyError(f"Failed to unregister '{name}': {exc}") from exc
            notify("registry.delete", "success", None)

        removed: Path | None = None
        if directory.exists():
            try:
                shutil.rmtree(directory)
            except OSError as exc:
                notify("directory.remove", "error", str(exc))
                raise DestroyError(
                    f"'{name}' was unregistered but {directory} could not be removed: {exc}"
                ) from exc
            removed = directory
            notify("directory.remove", "success", str(directory))

        return DestroyResult(
            name=name,
            archive=archive_result,
            removed_directory=removed,
            was_registered=record is not None,
        )

    def _teardown_location(
        self, name: str, record: InstanceRecord | None, directory: Path
    ) -> ComposeLocation | None:
        if record is not None and record.is_remote:
            return self.lifecycle.location(name, record)
        if not (directory / COMPOSE_FILE).exists():
            return None
        return ComposeLocation(directory=str(directory))


def _ignore_step(name: str, status: str, detail: str | None) -> None:
    return None


__all__ = ["DestroyError", "DestroyResult", "Destroyer"]
