"""Archive helpers shared by destroy and snapshot workflows."""
from __future__ import annotations

import hashlib
import os
import shutil
import subprocess
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

ARCHIVE_EXTENSION = "tar.gz"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


class ArchiveError(RuntimeError):
    """Raised when an archive cannot be created or verified."""


@dataclass(frozen=True)
class ArchiveResult:
    """A verified archive and its checksum file."""

    path: Path
    checksum: str
    checksum_path: Path
    size: int


def archive_path_for(directory: Path, name: str, moment: datetime | None = None) -> Path:
    """Return ``<directory>/<name>-<YYYYmmdd-HHMMSS>.tar.gz``."""
    stamp = (moment or datetime.now(tz=UTC)).strftime(TIMESTAMP_FORMAT)
    return directory / f"{name}-{stamp}.{ARCHIVE_EXTENSION}"


def create_archive(source_dir: Path, archive_path: Path) -> None:
    """Create a gzip tarball of *source_dir* at *archive_path*."""
    tar_bin = shutil.which("tar")
    if tar_bin is None:
        raise ArchiveError("The 'tar' command is required to create archives.")

    cmd = [tar_bin, "-czf", str(archive_path), "-C", str(source_dir.parent), source_dir.name]

    result = subprocess.run(  # noqa: S603 - controlled command execution
        cmd,
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        message = result.stderr or result.stdout or "tar command failed"
        raise ArchiveError(message.strip())

    try:
        os.chmod(archive_path, 0o640)
    except OSError as exc:
        raise ArchiveError(f"Failed to set permissions on {archive_path}: {exc}") from exc


def compute_checksum(path: Path) -> str:
    """Return the SHA-256 checksum for *path*."""
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def write_checksum_file(archive_path: Path, checksum: str) -> Path:
    """Write ``<archive>.sha256`` and return the checksum path."""
    checksum_path = archive_path.with_name(f"{archive_path.name}.sha256")
    try:
        checksum_path.write_text(f"{checksum}  {archive_path.name}\n", encoding="utf-8")
        os.chmod(checksum_path, 0o640)
    except OSError as exc:
        raise ArchiveError(f"Failed to write checksum file {checksum_path}: {exc}") from exc
    return checksum_path


def archive_directory(
    source_dir: Path,
    destination_dir: Path,
    name: str,
    *,
    moment: datetime | None = None,
) -> ArchiveResult:
    """Archive *source_dir* into *destination_dir*, verify it and checksum it."""
    try:
        destination_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ArchiveError(f"Failed to prepare archive directory {destination_dir}: {exc}") from exc

    archive_path = archive_path_for(destination_dir, name, moment)
    if archive_path.exists():
        raise ArchiveError(f"Archive {archive_path} already exists.")
    create_archive(source_dir, archive_path)

    try:
        size = archive_path.stat().st_size
    except OSError as exc:
        raise ArchiveError(f"Archive {archive_path} was not created: {exc}") from exc
    if size == 0:
        raise ArchiveError(f"Archive {archive_path} is empty.")

    checksum = compute_checksum(archive_path)
    checksum_path = write_checksum_file(archive_path, checksum)
    return ArchiveResult(path=archive_path, checksum=checksum, checksum_path=checksum_path, size=size)


__all__ = [
    "ARCHIVE_EXTENSION",
    "ArchiveError",
    "ArchiveResult",
    "archive_directory",
    "archive_path_for",
    "compute_checksum",
    "create_archive",
    "write_checksum_file",
]
