"""HTTP health probes for fleet instances, direct or through SSH tunnels."""
from __future__ import annotations

import secrets
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import httpx

from .providers import InstanceStatus
from .remote import RemoteError, SshProvider
from .state import InstanceRecord

HEALTH_PATH = "/health"
NO_RESPONSE = 0
VIA_DIRECT = "direct"
VIA_TUNNEL = "tunnel"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one ``GET /health`` request."""

    name: str
    port: int
    url: str
    status_code: int
    latency_ms: float | None
    via: str = VIA_DIRECT
    error: str | None = None

    @property
    def healthy(self) -> bool:
        """Return True only for an HTTP 200 response."""
        return self.status_code == 200

    @property
    def display_code(self) -> str:
        """Return the status code padded to three digits (``000`` = no response)."""
        return f"{self.status_code:03d}"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "name": self.name,
            "port": self.port,
            "url": self.url,
            "status_code": self.status_code,
            "healthy": self.healthy,
            "latency_ms": self.latency_ms,
            "via": self.via,
            "error": self.error,
        }


@dataclass(slots=True)
class HealthProber:
    """Send one bounded health request per instance."""

    ssh: SshProvider
    timeout: float = 5.0
    connect_timeout: float = 3.0
    transport: httpx.BaseTransport | None = None

    def probe(self, name: str, record: InstanceRecord) -> ProbeResult:
        """Probe *name*; never raises for unreachable targets."""
        if not record.is_remote:
            url = f"http://{record.host or 'localhost'}:{record.port}{HEALTH_PATH}"
            status_code, latency_ms, error = self._get(url)
            return ProbeResult(name, record.port, url, status_code, latency_ms, VIA_DIRECT, error)

        tunnel_id = f"{name}-{secrets.token_hex(4)}"
        remote_url = f"ssh://{record.ssh_target}:{record.port}{HEALTH_PATH}"
        try:
            with self.ssh.open_tunnel(record.ssh_target or "", record.port, tunnel_id=tunnel_id) as tunnel:
                url = f"http://127.0.0.1:{tunnel.local_port}{HEALTH_PATH}"
                status_code, latency_ms, error = self._get(url)
        except RemoteError as exc:
            return ProbeResult(
                name, record.port, remote_url, NO_RESPONSE, None, VIA_TUNNEL, f"Tunnel failed: {exc}"
            )
        return ProbeResult(name, record.port, remote_url, status_code, latency_ms, VIA_TUNNEL, error)

    def probe_many(self, records: Iterable[tuple[str, InstanceRecord]]) -> list[ProbeResult]:
        """Probe each ``(name, record)`` pair in order."""
        return [self.probe(name, record) for name, record in records]

    def _get(self, url: str) -> tuple[int, float | None, str | None]:
        timeout = httpx.Timeout(self.timeout, connect=self.connect_timeout)
        start = time.monotonic()
        try:
            with httpx.Client(
                timeout=timeout, follow_redirects=False, transport=self.transport
            ) as client:
                response = client.get(url)
        except (httpx.ConnectError, httpx.TimeoutException):
            return NO_RESPONSE, None, "No response"
        except httpx.HTTPError as exc:
            return NO_RESPONSE, None, f"Error: {type(exc).__name__}: {exc}"
        latency_ms = round((time.monotonic() - start) * 1000.0, 2)
        error = None if response.status_code == 200 else f"HTTP {response.status_code}"
        return response.status_code, latency_ms, error


@dataclass(slots=True)
class MonitorReport:
    """Health of every running instance."""

    results: list[ProbeResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        """Return True when every probed instance answered 200 (or none ran)."""
        return all(result.healthy for result in self.results)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "healthy": self.healthy,
            "checked": len(self.results),
            "unhealthy": [result.name for result in self.results if not result.healthy],
            "skipped": list(self.skipped),
            "results": [result.to_dict() for result in self.results],
        }


def monitor(
    prober: HealthProber,
    statuses: Iterable[InstanceStatus],
    records: Mapping[str, InstanceRecord],
) -> MonitorReport:
    """Probe registered instances observed as ``running``; skip the rest."""
    report = MonitorReport()
    for status in statuses:
        record = records.get(status.name)
        if status.state != "running" or record is None:
            report.skipped.append(status.name)
            continue
        report.results.append(prober.probe(status.name, record))
    return report


__all__ = [
    "HealthProber",
    "MonitorReport",
    "NO_RESPONSE",
    "ProbeResult",
    "monitor",
]
