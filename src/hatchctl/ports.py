"""Port allocation helpers for hatchctl."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .state import RegistryDocument

MAX_PORT = 65535


class PortsError(RuntimeError):
    """Raised when port allocation fails."""


class PortConflictError(PortsError):
    """Raised when an explicitly requested port is already assigned."""


class PortExhaustedError(PortsError):
    """Raised when no free port exists between the base and the limit."""


@dataclass(slots=True)
class PortAllocator:
    """Pick unique host ports for new instances."""

    base: int = 18789
    limit: int = 19000

    def __post_init__(self) -> None:
        """Validate initialiser parameters."""
        if not 1 <= self.base <= MAX_PORT:
            raise PortsError("Base port must be between 1 and 65535.")
        if not self.base <= self.limit <= MAX_PORT:
            raise PortsError("Port limit must be between the base port and 65535.")

    # ------------------------------------------------------------------
    def allocate(self, used: Iterable[int], *, requested: int | None = None) -> int:
        """Return a port that is not in *used*.

        An explicit *requested* port is returned unchanged when free and rejected
        when taken; it is never swapped for another value.
        """
        used_ports = set(used)
        if requested is not None:
            if isinstance(requested, bool) or not 1 <= requested <= MAX_PORT:
                raise PortsError(f"Port {requested} is outside the valid range 1-65535.")
            if requested in used_ports:
                raise PortConflictError(f"Port {requested} already assigned")
            return requested
        return self._next_available_port(used_ports)

    def allocate_for(self, document: RegistryDocument, *, requested: int | None = None) -> int:
        """Allocate against the ports recorded in *document*."""
        return self.allocate(document.used_ports(), requested=requested)

    @staticmethod
    def list_assignments(document: RegistryDocument) -> list[tuple[int, str]]:
        """Return ``(port, name)`` pairs sorted by port."""
        return sorted((record.port, name) for name, record in document.instances.items())

    # Internal helpers -------------------------------------------------
    def _next_available_port(self, used: set[int]) -> int:
        """Scan upwards from the base port and return the first free one."""
        candidate = self.base
        while candidate in used:
            candidate += 1
            if candidate > self.limit:
                raise PortExhaustedError(
                    f"No available ports found between {self.base} and {self.limit}."
                )
        return candidate


__all__ = ["PortAllocator", "PortConflictError", "PortExhaustedError", "PortsError"]
