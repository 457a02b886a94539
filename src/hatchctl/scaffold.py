"""Create new instance directories and register them in the fleet registry."""
from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from .ports import PortAllocator
from .remote import RemoteTarget
from .state import FleetRegistry, InstanceRecord, RegistryError, utc_timestamp
from .templates import TemplateEngine, TemplateRenderError

NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")
MAX_NAME_LENGTH = 63

INSTANCE_DIRECTORIES = ("workspace/memory", "workspace/reference", "data")
# (template, destination relative to the instance directory, mode)
INSTANCE_FILES = (
    ("instance/Dockerfile.j2", "Dockerfile", 0o644),
    ("instance/entrypoint.sh.j2", "entrypoint.sh", 0o755),
    ("instance/env.example.j2", ".env.example", 0o644),
    ("instance/openclaw.template.json.j2", "openclaw.template.json", 0o644),
    ("instance/gitignore.j2", ".gitignore", 0o644),
    ("instance/docker-compose.yml.j2", "docker-compose.yml", 0o644),
)
WORKSPACE_DOCUMENTS = ("AGENTS.md", "SOUL.md", "IDENTITY.md", "USER.md", "HEARTBEAT.md")


class ScaffoldError(RuntimeError):
    """Raised when an instance cannot be scaffolded.

    ``path`` is set when partial artifacts were left on disk.
    """

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class InstanceNameError(ScaffoldError):
    """Raised for names that are not valid instance identifiers."""


class InstanceExistsError(ScaffoldError):
    """Raised when the name is already taken on disk or in the registry."""


def validate_instance_name(name: str) -> str:
    """Return *name* if it is a valid instance name."""
    if not name or len(name) > MAX_NAME_LENGTH or not NAME_PATTERN.match(name):
        raise InstanceNameError(
            f"Invalid instance name '{name}': use lowercase letters, digits, '-' or '_', "
            f"starting with a letter or digit (max {MAX_NAME_LENGTH} characters)."
        )
    return name


@dataclass(frozen=True)
class ScaffoldResult:
    """Outcome of a successful scaffold."""

    name: str
    port: int
    auto_port: bool
    directory: Path
    record: InstanceRecord


@dataclass(slots=True)
class InstanceScaffolder:
    """Build an instance directory from templates and register it."""

    registry: FleetRegistry
    allocator: PortAllocator
    templates: TemplateEngine
    instances_dir: Path
    container_prefix: str = "hatchery-"
    container_port: int = 18789
    clock: Callable[[], datetime] | None = None

    def instance_dir(self, name: str) -> Path:
        """Return the local directory for *name*."""
        return self.instances_dir.expanduser() / name

    def scaffold(
        self,
        name: str,
        requested_port: int | None = None,
        remote: RemoteTarget | None = None,
    ) -> ScaffoldResult:
        """Create and register instance *name*.

        Nothing is written until the name, the directory, the registry and the
        port all check out. Failures after the directory is created leave it in
        place and name it on the raised :class:`ScaffoldError`.
        """
        validate_instance_name(name)
        directory = self.instance_dir(name)
        if directory.exists():
            raise InstanceExistsError(f"Instance '{name}' already exists at {directory}")

        document = self.registry.load()
        if name in document.instances:
            raise InstanceExistsError(f"Instance '{name}' already exists in the registry")
        port = self.allocator.allocate_for(document, requested=requested_port)

        try:
            directory.mkdir(parents=True)
        except FileExistsError as exc:
            raise InstanceExistsError(f"Instance '{name}' already exists at {directory}") from exc
        except OSError as exc:
            raise ScaffoldError(f"Failed to create {directory}: {exc}") from exc

        context = {
            "name": name,
            "port": port,
            "container_port": self.container_port,
            "container_name": f"{self.container_prefix}{name}",
        }
        try:
            for relative in INSTANCE_DIRECTORIES:
                (directory / relative).mkdir(parents=True, exist_ok=True)
            for template_name, destination, mode in INSTANCE_FILES:
                self.templates.render_to_path(template_name, directory / destination, context, mode=mode)
            for document_name in WORKSPACE_DOCUMENTS:
                self.templates.render_to_path(
                    f"workspace/{document_name}.j2",
                    directory / "workspace" / document_name,
                    context,
                )
        except (OSError, TemplateRenderError) as exc:
            raise ScaffoldError(
                f"Failed to scaffold '{name}': {exc}. Partial instance left at {directory}",
                path=directory,
            ) from exc

        record = InstanceRecord(
            port=port,
            created=utc_timestamp(self.clock() if self.clock else datetime.now(tz=UTC)),
            ssh_host=remote.host if remote else None,
            ssh_user=remote.user if remote else None,
            remote_path=remote.path if remote else None,
        )
        try:
            self.registry.upsert(name, record, expected_revision=document.revision)
        except RegistryError as exc:
            raise ScaffoldError(
                f"Failed to register '{name}': {exc}. Partial instance left at {directory}",
                path=directory,
            ) from exc

        return ScaffoldResult(
            name=name,
            port=port,
            auto_port=requested_port is None,
            directory=directory,
            record=record,
        )


__all__ = [
    "InstanceExistsError",
    "InstanceNameError",
    "InstanceScaffolder",
    "MAX_NAME_LENGTH",
    "ScaffoldError",
    "ScaffoldResult",
    "validate_instance_name",
]
