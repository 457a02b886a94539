"""Docker Compose provider for managing instance containers."""
from __future__ import annotations

import json
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path

from ..remote import SshProvider
from .instance_status_provider import ContainerInspection


class ComposeError(RuntimeError):
    """Raised when docker or docker compose operations fail."""


@dataclass(frozen=True)
class ComposeLocation:
    """Where an instance's compose project lives.

    ``ssh_target`` is ``None`` for local instances; otherwise ``directory`` is
    the path on the remote host.
    """

    directory: str
    ssh_target: str | None = None

    @property
    def is_remote(self) -> bool:
        """Return True when commands must run over SSH."""
        return self.ssh_target is not None


@dataclass(slots=True)
class ComposeProvider:
    """Drive ``docker compose`` and ``docker`` for hatchctl instances."""

    ssh: SshProvider = field(default_factory=SshProvider)
    docker_bin: str = "docker"
    container_prefix: str = "hatchery-"
    docker_host: str = ""

    def container_name(self, instance: str) -> str:
        """Return the container name for *instance*."""
        return f"{self.container_prefix}{instance}"

    def for_docker_host(self, docker_host: str) -> ComposeProvider:
        """Return a copy that targets *docker_host* through ``DOCKER_HOST``."""
        return replace(self, docker_host=docker_host)

    def up(
        self, location: ComposeLocation, *, build: bool = False
    ) -> subprocess.CompletedProcess[str]:
        """Start the project in the background."""
        args = ["up", "-d"]
        if build:
            args.append("--build")
        return self._compose(location, args)

    def down(
        self,
        location: ComposeLocation,
        *,
        volumes: bool = False,
        remove_orphans: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Stop and remove the project's containers."""
        args = ["down"]
        if volumes:
            args.append("--volumes")
        if remove_orphans:
            args.append("--remove-orphans")
        return self._compose(location, args)

    def build(
        self, location: ComposeLocation, *, pull: bool = True, no_cache: bool = False
    ) -> subprocess.CompletedProcess[str]:
        """Rebuild the project image.

        *pull* refreshes base images; *no_cache* reruns every layer so packages
        installed during the build are fetched again.
        """
        args = ["build"]
        if pull:
            args.append("--pull")
        if no_cache:
            args.append("--no-cache")
        return self._compose(location, args)

    def recreate(self, location: ComposeLocation) -> subprocess.CompletedProcess[str]:
        """Recreate containers from the current image."""
        return self._compose(location, ["up", "-d", "--force-recreate"])

    def logs(
        self,
        container: str,
        *,
        ssh_target: str | None = None,
        follow: bool = False,
        tail: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Stream or return ``docker logs`` output for *container*."""
        args: list[str] = [self.docker_bin, "logs"]
        if follow:
            args.append("-f")
        if tail is not None:
            args.extend(["--tail", str(tail)])
        args.append(container)
        return self._docker(
            args,
            ssh_target=ssh_target,
            error_prefix=f"{self.docker_bin} logs {container}",
            capture_output=not follow,
        )

    def inspect(self, container: str, *, ssh_target: str | None = None) -> ContainerInspection | None:
        """Return the container state, or ``None`` when it does not exist."""
        args = [self.docker_bin, "inspect", "--type", "container", "-f", "{{json .State}}", container]
        result = self._docker(
            args,
            ssh_target=ssh_target,
            error_prefix=f"{self.docker_bin} inspect {container}",
            capture_output=True,
            check=False,
        )
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            if "no such" in stderr.lower():
                return None
            message = stderr or (result.stdout or "").strip() or "no output"
            raise ComposeError(
                f"{self.docker_bin} inspect {container} failed (exit {result.returncode}): {message}"
            )
        try:
            state = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ComposeError(f"Unexpected docker inspect output for {container}: {exc}") from exc
        if not isinstance(state, Mapping):
            raise ComposeError(f"Unexpected docker inspect output for {container}.")
        started_at = state.get("StartedAt")
        return ContainerInspection(
            status=str(state.get("Status", "unknown")),
            started_at=started_at if isinstance(started_at, str) else None,
        )

    def copy_from(self, container: str, source: str, destination: Path) -> subprocess.CompletedProcess[str]:
        """Copy *source* out of *container* into the local *destination*."""
        return self._docker(
            [self.docker_bin, "cp", f"{container}:{source}", str(destination)],
            ssh_target=None,
            error_prefix=f"{self.docker_bin} cp {container}:{source}",
            capture_output=True,
        )

    # ------------------------------------------------------------------
    def _compose(self, location: ComposeLocation, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        argv = [self.docker_bin, "compose", *args]
        joined = " ".join(args)
        error_prefix = f"{self.docker_bin} compose {joined}"
        if location.ssh_target is not None:
            command = self.ssh.remote_command(location.ssh_target, argv, cwd=location.directory)
            return self._run_command(
                command,
                check=True,
                error_prefix=f"{error_prefix} on {location.ssh_target}",
                capture_output=True,
            )
        if not Path(location.directory).is_dir():
            raise ComposeError(
                f"{error_prefix} failed: instance directory {location.directory} does not exist"
            )
        return self._run_command(
            argv,
            check=True,
            error_prefix=error_prefix,
            capture_output=True,
            cwd=location.directory,
        )

    def _docker(
        self,
        argv: Sequence[str],
        *,
        ssh_target: str | None,
        error_prefix: str,
        capture_output: bool,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = list(argv)
        if ssh_target is not None:
            command = self.ssh.remote_command(ssh_target, argv)
        return self._run_command(
            command,
            check=check,
            error_prefix=error_prefix,
            capture_output=capture_output,
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
        capture_output: bool,
        cwd: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        env = None
        if self.docker_host:
            env = {**os.environ, "DOCKER_HOST": self.docker_host}
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                capture_output=capture_output,
                text=True,
                check=False,
                cwd=cwd,
                env=env,
            )
        except FileNotFoundError as exc:
            raise ComposeError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = result.stdout or ""
            stderr = result.stderr or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise ComposeError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["ComposeError", "ComposeLocation", "ComposeProvider"]
