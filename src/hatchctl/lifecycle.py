"""Start, stop, update, inspect and tail registered instances."""
from __future__ import annotations

import re
import subprocess
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .providers import (
    ComposeError,
    ComposeLocation,
    ComposeProvider,
    InstanceStatus,
    InstanceStatusProvider,
)
from .remote import DEFAULT_REMOTE_ROOT
from .state import FleetRegistry, InstanceRecord

COMPOSE_FILE = "docker-compose.yml"
_COMPOSE_PORT_PATTERN = re.compile(r"""^\s*-\s*["']?(?:[\d.]+:)?(\d+):\d+["']?\s*$""")

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"


class LifecycleError(RuntimeError):
    """Raised when a lifecycle operation cannot proceed."""


class InstanceNotFoundError(LifecycleError):
    """Raised when a name is neither registered nor present on disk."""


@dataclass(frozen=True)
class InstanceOutcome:
    """Result of one lifecycle action on one instance."""

    name: str
    status: str
    detail: str = ""

    def to_dict(self) -> dict[str, str]:
        """Return a JSON-serialisable representation."""
        return {"name": self.name, "status": self.status, "detail": self.detail}


@dataclass(slots=True)
class BatchResult:
    """Per-instance outcomes of a batch action, in execution order."""

    action: str
    outcomes: list[InstanceOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return True when no instance failed."""
        return not self.failed

    @property
    def failed(self) -> list[InstanceOutcome]:
        """Return the failed outcomes."""
        return [item for item in self.outcomes if item.status == OUTCOME_FAILED]

    def count(self, status: str) -> int:
        """Return how many outcomes have *status*."""
        return sum(1 for item in self.outcomes if item.status == status)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "action": self.action,
            "ok": self.ok,
            "outcomes": [item.to_dict() for item in self.outcomes],
        }


def compose_port(directory: Path) -> int | None:
    """Return the host port published in *directory*'s compose file, if any."""
    compose_file = directory / COMPOSE_FILE
    try:
        lines = compose_file.read_text(encoding="utf-8").splitlines()
    except OSError:
        return None
    for line in lines:
        match = _COMPOSE_PORT_PATTERN.match(line)
        if match:
            return int(match.group(1))
    return None


@dataclass(slots=True)
class LifecycleController:
    """Drive container lifecycle transitions for fleet instances."""

    registry: FleetRegistry
    compose: ComposeProvider
    status_provider: InstanceStatusProvider
    instances_dir: Path
    remote_root: str = DEFAULT_REMOTE_ROOT

    # ------------------------------------------------------------------
    # Resolution helpers
    # ------------------------------------------------------------------
    def instance_dir(self, name: str) -> Path:
        """Return the local directory for *name*."""
        return self.instances_dir.expanduser() / name

    def location(self, name: str, record: InstanceRecord) -> ComposeLocation:
        """Return where *name*'s compose project runs."""
        if record.is_remote:
            path = record.remote_path or f"{self.remote_root.rstrip('/')}/{name}"
            return ComposeLocation(directory=path, ssh_target=record.ssh_target)
        return ComposeLocation(directory=str(self.instance_dir(name)))

    def resolve(self, names: Sequence[str] | None) -> list[tuple[str, InstanceRecord]]:
        """Return registered instances for *names* (all when ``None``).

        Every name is checked before any action runs.
        """
        document = self.registry.load()
        if names is None:
            return [(name, document.instances[name]) for name in sorted(document.instances)]
        resolved: list[tuple[str, InstanceRecord]] = []
        for name in names:
            record = document.instances.get(name)
            if record is None:
                raise InstanceNotFoundError(f"Instance '{name}' not found")
            resolved.append((name, record))
        return resolved

    def orphans(self, registered: Iterable[str] | None = None) -> list[str]:
        """Return instance directories with no registry entry, sorted."""
        known = set(registered) if registered is not None else set(self.registry.load().instances)
        root = self.instances_dir.expanduser()
        if not root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in root.iterdir()
            if entry.is_dir() and not entry.name.startswith(".") and entry.name not in known
        )

    # ------------------------------------------------------------------
    # Batch actions
    # ------------------------------------------------------------------
    def start(self, names: Sequence[str] | None = None) -> BatchResult:
        """Run ``docker compose up -d`` for each instance."""
        return self._batch("start", names, self._start_one)

    def stop(self, names: Sequence[str] | None = None) -> BatchResult:
        """Run ``docker compose down`` for each instance."""
        return self._batch("stop", names, self._stop_one)

    def update(self, names: Sequence[str] | None = None) -> BatchResult:
        """Rebuild with fresh base images, then recreate each instance."""
        return self._batch("update", names, self._update_one)

    def _batch(
        self,
        action: str,
        names: Sequence[str] | None,
        handler: Callable[[str, InstanceRecord], InstanceOutcome],
    ) -> BatchResult:
        result = BatchResult(action=action)
        for name, record in self.resolve(names):
            try:
                outcome = handler(name, record)
            except ComposeError as exc:
                outcome = InstanceOutcome(name=name, status=OUTCOME_FAILED, detail=str(exc))
            result.outcomes.append(outcome)
        return result

    def _start_one(self, name: str, record: InstanceRecord) -> InstanceOutcome:
        self.compose.up(self.location(name, record))
        return InstanceOutcome(name=name, status=OUTCOME_SUCCESS, detail=f"Started on port {record.port}")

    def _stop_one(self, name: str, record: InstanceRecord) -> InstanceOutcome:
        self.compose.down(self.location(name, record))
        return InstanceOutcome(name=name, status=OUTCOME_SUCCESS, detail="Stopped")

    def _update_one(self, name: str, record: InstanceRecord) -> InstanceOutcome:
        if not record.is_remote and not (self.instance_dir(name) / COMPOSE_FILE).exists():
            return InstanceOutcome(name=name, status=OUTCOME_SKIPPED, detail=f"No {COMPOSE_FILE}")
        location = self.location(name, record)
        self.compose.build(location, pull=True, no_cache=True)
        self.compose.recreate(location)
        return InstanceOutcome(name=name, status=OUTCOME_SUCCESS, detail="Rebuilt and recreated")

    # ------------------------------------------------------------------
    # Single-instance helpers
    # ------------------------------------------------------------------
    def logs(
        self,
        name: str,
        *,
        follow: bool = True,
        tail: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Stream ``docker logs`` for *name*'s container."""
        [(resolved, record)] = self.resolve([name])
        container = self.compose.container_name(resolved)
        ssh_target = record.ssh_target
        if self.compose.inspect(container, ssh_target=ssh_target) is None:
            raise LifecycleError(f"Container '{container}' not found")
        return self.compose.logs(container, ssh_target=ssh_target, follow=follow, tail=tail)

    def status(self, names: Sequence[str] | None = None) -> list[InstanceStatus]:
        """Return observed status for registered instances and orphan directories."""
        document = self.registry.load()
        orphan_names = self.orphans(document.instances)
        if names is None:
            targets = sorted([*document.instances, *orphan_names])
        else:
            targets = list(names)
            for name in targets:
                if name not in document.instances and name not in orphan_names:
                    raise InstanceNotFoundError(f"Instance '{name}' not found")

        statuses: list[InstanceStatus] = []
        for name in targets:
            record = document.instances.get(name)
            port = None if record is not None else compose_port(self.instance_dir(name))
            container = self.compose.container_name(name)
            ssh_target = record.ssh_target if record is not None else None
            try:
                inspection = self.compose.inspect(container, ssh_target=ssh_target)
            except ComposeError as exc:
                statuses.append(self.status_provider.unreachable(name, record, str(exc), port=port))
                continue
            statuses.append(self.status_provider.status(name, record, inspection, port=port))
        return statuses


__all__ = [
    "BatchResult",
    "InstanceNotFoundError",
    "InstanceOutcome",
    "LifecycleController",
    "LifecycleError",
    "OUTCOME_FAILED",
    "OUTCOME_SKIPPED",
    "OUTCOME_SUCCESS",
    "compose_port",
]
