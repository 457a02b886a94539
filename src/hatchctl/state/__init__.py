"""Registry state helpers."""
from __future__ import annotations

from .registry import (
    FleetRegistry,
    InstanceRecord,
    RegistryConflictError,
    RegistryCorruptError,
    RegistryDocument,
    RegistryError,
    utc_timestamp,
)

__all__ = [
    "FleetRegistry",
    "InstanceRecord",
    "RegistryConflictError",
    "RegistryCorruptError",
    "RegistryDocument",
    "RegistryError",
    "utc_timestamp",
]
