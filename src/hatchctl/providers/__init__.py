"""Provider interfaces for hatchctl."""
from __future__ import annotations

from .compose import ComposeError, ComposeLocation, ComposeProvider
from .instance_status_provider import (
    ContainerInspection,
    InstanceStatus,
    InstanceStatusProvider,
    format_uptime,
)

__all__ = [
    "ComposeError",
    "ComposeLocation",
    "ComposeProvider",
    "ContainerInspection",
    "InstanceStatus",
    "InstanceStatusProvider",
    "format_uptime",
]
