"""SSH helpers: remote targets, command execution, rsync deploys and tunnels."""
from __future__ import annotations

import re
import shlex
import socket
import subprocess
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

REMOTE_URL_PATTERN = re.compile(
    r"^ssh://(?:(?P<user>[A-Za-z0-9._][A-Za-z0-9._-]*)@)?"
    r"(?P<host>[A-Za-z0-9][A-Za-z0-9.-]*)$"
)
REMOTE_PATH_PATTERN = re.compile(r"^/[a-zA-Z0-9/_.-]+$")
DEFAULT_REMOTE_ROOT = "/opt/hatchery/instances"


class RemoteError(RuntimeError):
    """Raised when a remote operation fails."""


class RemoteDeployError(RemoteError):
    """Raised when creating or syncing the remote directory fails.

    ``stage`` names the step that failed (``mkdir`` or ``sync``); the instance
    was never started remotely.
    """

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage


class RemoteStartError(RemoteError):
    """Raised when files were synced but the remote containers failed to start."""

    stage = "start"


def validate_remote_path(path: str) -> str:
    """Return *path* when it is a safe absolute remote path."""
    if not REMOTE_PATH_PATTERN.match(path):
        raise RemoteError(
            f"Invalid remote path '{path}': use an absolute path of letters, digits, '/', '_', '.', '-'."
        )
    if any(part == ".." for part in path.split("/")):
        raise RemoteError(f"Invalid remote path '{path}': '..' segments are not allowed.")
    return path


@dataclass(frozen=True)
class RemoteTarget:
    """An SSH destination plus the directory that holds the instance."""

    host: str
    path: str
    user: str | None = None

    @property
    def ssh_target(self) -> str:
        """Return ``user@host`` or ``host``."""
        return f"{self.user}@{self.host}" if self.user else self.host

    @classmethod
    def parse(
        cls,
        url: str,
        *,
        name: str,
        path: str | None = None,
        default_root: str = DEFAULT_REMOTE_ROOT,
    ) -> RemoteTarget:
        """Build a target from ``ssh://[user@]host`` and an optional path."""
        match = REMOTE_URL_PATTERN.match(url.strip())
        if match is None:
            raise RemoteError(f"Invalid remote host '{url}': expected ssh://[user@]host.")
        resolved = path if path is not None else f"{default_root.rstrip('/')}/{name}"
        return cls(
            host=match.group("host"),
            user=match.group("user"),
            path=validate_remote_path(resolved),
        )


@dataclass(slots=True)
class SshTunnel:
    """An open local port forward to a remote port."""

    tunnel_id: str
    ssh_target: str
    local_port: int
    remote_port: int
    control_path: Path


@dataclass(slots=True)
class SshProvider:
    """Run commands on remote hosts through the ``ssh`` and ``rsync`` CLIs."""

    ssh_bin: str = "ssh"
    rsync_bin: str = "rsync"
    runtime_dir: Path = Path("/tmp")
    connect_timeout: float = 10.0
    ssh_options: Sequence[str] = field(default_factory=lambda: ("-o", "BatchMode=yes"))

    def remote_command(
        self,
        ssh_target: str,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
    ) -> list[str]:
        """Return the local argv that runs *argv* on *ssh_target*.

        Every remote argument is quoted individually; *cwd* is entered first.
        """
        remote = shlex.join(list(argv))
        if cwd is not None:
            remote = f"cd {shlex.quote(cwd)} && {remote}"
        return [self.ssh_bin, *self.ssh_options, ssh_target, remote]

    def run(
        self,
        ssh_target: str,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        check: bool = True,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Execute *argv* on the remote host."""
        command = self.remote_command(ssh_target, argv, cwd=cwd)
        return self._run_command(
            command,
            check=check,
            error_prefix=f"ssh {ssh_target} {argv[0] if argv else ''}".rstrip(),
            capture_output=capture_output,
        )

    def sync(self, local_dir: Path, ssh_target: str, remote_path: str) -> None:
        """Mirror *local_dir* into *remote_path* with ``rsync -az``."""
        command = [
            self.rsync_bin,
            "-az",
            "-e",
            shlex.join([self.ssh_bin, *self.ssh_options]),
            f"{local_dir}/",
            f"{ssh_target}:{remote_path}/",
        ]
        self._run_command(
            command,
            check=True,
            error_prefix=f"{self.rsync_bin} to {ssh_target}:{remote_path}",
            capture_output=True,
        )

    @contextmanager
    def open_tunnel(
        self,
        ssh_target: str,
        remote_port: int,
        *,
        tunnel_id: str,
    ) -> Iterator[SshTunnel]:
        """Forward a free local port to ``127.0.0.1:<remote_port>`` on the host.

        The tunnel runs as a background ssh control master keyed by *tunnel_id*
        and is always torn down when the context exits.
        """
        control_path = self.runtime_dir.expanduser() / f"tunnel-{tunnel_id}.sock"
        local_port = _free_local_port()
        try:
            control_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RemoteError(f"Cannot prepare tunnel directory {control_path.parent}: {exc}") from exc
        command = [
            self.ssh_bin,
            *self.ssh_options,
            "-o",
            "ExitOnForwardFailure=yes",
            "-o",
            f"ConnectTimeout={max(int(self.connect_timeout), 1)}",
            "-f",
            "-N",
            "-M",
            "-S",
            str(control_path),
            "-L",
            f"{local_port}:127.0.0.1:{remote_port}",
            ssh_target,
        ]
        self._run_command(
            command,
            check=True,
            error_prefix=f"ssh tunnel to {ssh_target}:{remote_port}",
            capture_output=True,
            timeout=self.connect_timeout + 5,
        )
        tunnel = SshTunnel(
            tunnel_id=tunnel_id,
            ssh_target=ssh_target,
            local_port=local_port,
            remote_port=remote_port,
            control_path=control_path,
        )
        try:
            yield tunnel
        finally:
            self.close_tunnel(tunnel)

    def close_tunnel(self, tunnel: SshTunnel) -> None:
        """Stop the control master behind *tunnel*."""
        self._run_command(
            [self.ssh_bin, "-S", str(tunnel.control_path), "-O", "exit", tunnel.ssh_target],
            check=False,
            error_prefix="ssh tunnel close",
            capture_output=True,
        )
        tunnel.control_path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
        capture_output: bool,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=capture_output,
                text=True,
                check=False,
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            raise RemoteError(f"{args[0]} not found: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise RemoteError(f"{error_prefix} timed out after {timeout:.0f}s") from exc
        if check and result.returncode != 0:
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise RemoteError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


@dataclass(frozen=True)
class RemoteDeployResult:
    """Outcome of a completed remote deploy."""

    target: RemoteTarget
    stages: tuple[str, ...]


@dataclass(slots=True)
class RemoteDeployer:
    """Copy a scaffolded instance to a remote host and start it there."""

    ssh: SshProvider
    docker_bin: str = "docker"

    def deploy(self, local_dir: Path, target: RemoteTarget) -> RemoteDeployResult:
        """Run mkdir, rsync and ``docker compose up -d --build`` in order."""
        try:
            self.ssh.run(target.ssh_target, ["mkdir", "-p", target.path])
        except RemoteError as exc:
            raise RemoteDeployError(
                "mkdir", f"Failed to create {target.path} on {target.ssh_target}: {exc}"
            ) from exc
        try:
            self.ssh.sync(local_dir, target.ssh_target, target.path)
        except RemoteError as exc:
            raise RemoteDeployError(
                "sync", f"Failed to sync {local_dir} to {target.ssh_target}:{target.path}: {exc}"
            ) from exc
        try:
            self.ssh.run(
                target.ssh_target,
                [self.docker_bin, "compose", "up", "-d", "--build"],
                cwd=target.path,
            )
        except RemoteError as exc:
            raise RemoteStartError(
                f"Files synced to {target.ssh_target}:{target.path} but the instance is not running: {exc}"
            ) from exc
        return RemoteDeployResult(target=target, stages=("mkdir", "sync", "start"))


def _free_local_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


__all__ = [
    "DEFAULT_REMOTE_ROOT",
    "RemoteDeployError",
    "RemoteDeployResult",
    "RemoteDeployer",
    "RemoteError",
    "RemoteStartError",
    "RemoteTarget",
    "SshProvider",
    "SshTunnel",
    "validate_remote_path",
]
