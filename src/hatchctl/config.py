"""Configuration loader for hatchctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``/etc/hatchctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``HATCHCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export HATCHCTL_PORTS__BASE=20000
    export HATCHCTL_HEALTH__TIMEOUT=2.5

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "HATCHCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PortsConfig:
    """Port allocation bounds."""

    base: int = 18789
    limit: int = 19000

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"base": self.base, "limit": self.limit}


@dataclass(frozen=True)
class DockerConfig:
    """Container-control surface settings."""

    docker_bin: str = "docker"
    container_prefix: str = "hatchery-"
    container_port: int = 18789

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "docker_bin": self.docker_bin,
            "container_prefix": self.container_prefix,
            "container_port": self.container_port,
        }


@dataclass(frozen=True)
class RemoteConfig:
    """Remote execution settings used for SSH deploys and tunnels."""

    ssh_bin: str = "ssh"
    rsync_bin: str = "rsync"
    default_root: str = "/opt/hatchery/instances"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "ssh_bin": self.ssh_bin,
            "rsync_bin": self.rsync_bin,
            "default_root": self.default_root,
        }


@dataclass(frozen=True)
class HealthConfig:
    """Health probe timeouts (seconds)."""

    timeout: float = 5.0
    connect_timeout: float = 3.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"timeout": self.timeout, "connect_timeout": self.connect_timeout}


@dataclass(frozen=True)
class SnapshotConfig:
    """Managed host and container path used for snapshots."""

    docker_host: str = ""
    state_path: str = "/home/openclaw/.openclaw"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"docker_host": self.docker_host, "state_path": self.state_path}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for hatchctl."""

    config_file: Path
    root_dir: Path
    instances_dir: Path
    registry_file: Path
    archives_dir: Path
    snapshots_dir: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path | None
    ports: PortsConfig
    docker: DockerConfig
    remote: RemoteConfig
    health: HealthConfig
    snapshot: SnapshotConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "root_dir": str(self.root_dir),
            "instances_dir": str(self.instances_dir),
            "registry_file": str(self.registry_file),
            "archives_dir": str(self.archives_dir),
            "snapshots_dir": str(self.snapshots_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir) if self.templates_dir else None,
            "ports": self.ports.to_dict(),
            "docker": self.docker.to_dict(),
            "remote": self.remote.to_dict(),
            "health": self.health.to_dict(),
            "snapshot": self.snapshot.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/hatchctl/config.yml",
    "root_dir": "~/.hatchery",
    # The following paths are derived from root_dir when absent.
    "instances_dir": None,
    "registry_file": None,
    "archives_dir": None,
    "snapshots_dir": None,
    "logs_dir": None,
    "runtime_dir": None,
    "templates_dir": None,
    "ports": {
        "base": 18789,
        "limit": 19000,
    },
    "docker": {
        "docker_bin": "docker",
        "container_prefix": "hatchery-",
        "container_port": 18789,
    },
    "remote": {
        "ssh_bin": "ssh",
        "rsync_bin": "rsync",
        "default_root": "/opt/hatchery/instances",
    },
    "health": {
        "timeout": 5.0,
        "connect_timeout": 3.0,
    },
    "snapshot": {
        "docker_host": "",
        "state_path": "/home/openclaw/.openclaw",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    "ports": {"base", "limit"},
    "docker": {"docker_bin", "container_prefix", "container_port"},
    "remote": {"ssh_bin", "rsync_bin", "default_root"},
    "health": {"timeout", "connect_timeout"},
    "snapshot": {"docker_host", "state_path"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        section_map = _as_dict(value, section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    root_dir = _to_path(raw.get("root_dir"))

    def _derived(key: str, default: Path) -> Path:
        value = raw.get(key)
        return _to_path(value) if value else default

    templates_value = raw.get("templates_dir")
    templates_dir = _to_path(templates_value) if templates_value else None

    ports_mapping = _as_dict(raw.get("ports"), "ports")
    base = _expect_int(ports_mapping.get("base"), "ports.base", default=18789)
    limit = _expect_int(ports_mapping.get("limit"), "ports.limit", default=19000)
    if not 1 <= base <= 65535:
        raise ConfigError(f"ports.base must be between 1 and 65535. Got {base}.")
    if not base <= limit <= 65535:
        raise ConfigError(
            f"ports.limit must be between ports.base ({base}) and 65535. Got {limit}."
        )
    ports = PortsConfig(base=base, limit=limit)

    docker_mapping = _as_dict(raw.get("docker"), "docker")
    container_port = _expect_int(
        docker_mapping.get("container_port"), "docker.container_port", default=18789
    )
    if not 1 <= container_port <= 65535:
        raise ConfigError(
            f"docker.container_port must be between 1 and 65535. Got {container_port}."
        )
    docker = DockerConfig(
        docker_bin=str(docker_mapping.get("docker_bin", "docker")),
        container_prefix=str(docker_mapping.get("container_prefix", "hatchery-")),
        container_port=container_port,
    )

    remote_mapping = _as_dict(raw.get("remote"), "remote")
    default_root = str(remote_mapping.get("default_root", "/opt/hatchery/instances"))
    if not default_root.startswith("/"):
        raise ConfigError(f"remote.default_root must be an absolute path. Got {default_root!r}.")
    remote = RemoteConfig(
        ssh_bin=str(remote_mapping.get("ssh_bin", "ssh")),
        rsync_bin=str(remote_mapping.get("rsync_bin", "rsync")),
        default_root=default_root.rstrip("/") or "/",
    )

    health_mapping = _as_dict(raw.get("health"), "health")
    health = HealthConfig(
        timeout=_expect_positive_float(health_mapping.get("timeout"), "health.timeout", default=5.0),
        connect_timeout=_expect_positive_float(
            health_mapping.get("connect_timeout"), "health.connect_timeout", default=3.0
        ),
    )

    snapshot_mapping = _as_dict(raw.get("snapshot"), "snapshot")
    docker_host_value = snapshot_mapping.get("docker_host")
    snapshot = SnapshotConfig(
        docker_host=str(docker_host_value) if docker_host_value else "",
        state_path=str(snapshot_mapping.get("state_path", "/home/openclaw/.openclaw")),
    )

    return AppConfig(
        config_file=config_file,
        root_dir=root_dir,
        instances_dir=_derived("instances_dir", root_dir / "instances"),
        registry_file=_derived("registry_file", root_dir / "fleet.json"),
        archives_dir=_derived("archives_dir", root_dir / "archives"),
        snapshots_dir=_derived("snapshots_dir", root_dir / "snapshots"),
        logs_dir=_derived("logs_dir", root_dir / "logs"),
        runtime_dir=_derived("runtime_dir", root_dir / "run"),
        templates_dir=templates_dir,
        ports=ports,
        docker=docker,
        remote=remote,
        health=health,
        snapshot=snapshot,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "DockerConfig",
    "HealthConfig",
    "PortsConfig",
    "RemoteConfig",
    "SnapshotConfig",
    "load_config",
]
