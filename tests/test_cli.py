"""Tests for the hatchctl CLI."""
from __future__ import annotations

import json
import re
import subprocess
from collections.abc import Sequence
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from hatchctl import __version__
from hatchctl.cli import app
from hatchctl.providers import ComposeError, ComposeProvider
from hatchctl.remote import RemoteDeployer, RemoteStartError, RemoteTarget
from hatchctl.state import FleetRegistry

runner = CliRunner()


def _prepare_environment(tmp_path: Path, **config_overrides: object) -> tuple[dict[str, str], Path]:
    """Return CLI env vars pointing at a temp config, plus the hatchery root."""
    payload: dict[str, object] = {"root_dir": str(tmp_path / "hatchery")}
    payload.update(config_overrides)
    config_file = tmp_path / "config.yml"
    config_file.write_text(yaml.safe_dump(payload), encoding="utf-8")
    return {"HATCHCTL_CONFIG_FILE": str(config_file)}, tmp_path / "hatchery"


def _extract_json(output: str) -> dict[str, object]:
    """Extract the first JSON object embedded in *output*."""
    start = output.find("{")
    end = output.rfind("}")
    assert start != -1 and end != -1, f"No JSON payload found in output: {output}"
    return json.loads(output[start : end + 1])


class DockerStub:
    """Replacement for ``ComposeProvider._run_command``."""

    def __init__(self, *, running: Sequence[str] = (), failing: Sequence[str] = ()) -> None:
        self.running = set(running)
        self.failing = set(failing)
        self.calls: list[tuple[list[str], str | None]] = []

    def __call__(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
        capture_output: bool,
        cwd: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        argv = list(args)
        self.calls.append((argv, cwd))
        if "inspect" in argv:
            container = argv[-1]
            if container.removeprefix("hatchery-") in self.running:
                payload = '{"Status":"running","StartedAt":"2026-05-01T12:00:00Z"}'
                return subprocess.CompletedProcess(argv, 0, payload, "")
            return subprocess.CompletedProcess(argv, 1, "", f"Error: No such object: {container}")
        if cwd is not None and Path(cwd).name in self.failing:
            raise ComposeError(f"{error_prefix} failed (exit 1): boom")
        return subprocess.CompletedProcess(argv, 0, "", "")


@pytest.fixture
def docker(monkeypatch: pytest.MonkeyPatch) -> DockerStub:
    """Stub out every docker invocation."""
    stub = DockerStub()
    monkeypatch.setattr(ComposeProvider, "_run_command", stub)
    return stub


def _create(env: dict[str, str], *args: str) -> None:
    result = runner.invoke(app, ["create", *args], env=env)
    assert result.exit_code == 0, result.output


def test_version_option_outputs_package_version(tmp_path: Path) -> None:
    """CLI ``--version`` flag emits the package version."""
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["--version"], env=env)

    assert result.exit_code == 0
    assert f"hatchctl {__version__}" in result.stdout


def test_invocation_without_subcommand_shows_help(tmp_path: Path) -> None:
    """Calling the CLI without a subcommand shows help output."""
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, env=env)

    assert result.exit_code == 0
    assert "Fleet registry and lifecycle manager" in result.stdout


def test_create_assigns_sequential_ports(tmp_path: Path) -> None:
    """Two creates get the base port and the next one."""
    env, root = _prepare_environment(tmp_path)

    first = runner.invoke(app, ["create", "alpha"], env=env)
    second = runner.invoke(app, ["create", "beta"], env=env)

    assert first.exit_code == 0, first.output
    assert "Created instance 'alpha'" in first.stdout
    assert "Next steps:" in first.stdout
    assert second.exit_code == 0, second.output
    registry = FleetRegistry(root / "fleet.json")
    assert registry.get("alpha").port == 18789  # type: ignore[union-attr]
    assert registry.get("beta").port == 18790  # type: ignore[union-attr]
    assert (root / "instances" / "beta" / "docker-compose.yml").exists()


def test_create_duplicate_is_conflict(tmp_path: Path) -> None:
    """Creating an existing name exits with the conflict code and changes nothing."""
    env, root = _prepare_environment(tmp_path)
    _create(env, "alpha")

    result = runner.invoke(app, ["create", "alpha"], env=env)

    assert result.exit_code == 5
    assert "already exists" in result.stdout
    assert [name for name, _ in FleetRegistry(root / "fleet.json").list()] == ["alpha"]


def test_create_taken_port_is_conflict(tmp_path: Path) -> None:
    """An explicit port already in use is rejected."""
    env, root = _prepare_environment(tmp_path)
    _create(env, "alpha")

    result = runner.invoke(app, ["create", "beta", "--port", "18789"], env=env)

    assert result.exit_code == 5
    assert not (root / "instances" / "beta").exists()


def test_create_invalid_name(tmp_path: Path) -> None:
    """Invalid names are validation errors."""
    env, root = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["create", "Bad Name"], env=env)

    assert result.exit_code == 2
    assert not (root / "fleet.json").exists()


def test_create_path_requires_host(tmp_path: Path) -> None:
    """--path without --host is rejected."""
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["create", "alpha", "--path", "/srv/alpha"], env=env)

    assert result.exit_code == 2
    assert "--path requires --host" in result.stdout


def test_create_remote_start_failure_keeps_entry(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A failed remote start exits non-zero but keeps the registry entry."""
    env, root = _prepare_environment(tmp_path)

    def fake_deploy(self: RemoteDeployer, local_dir: Path, target: RemoteTarget) -> None:
        raise RemoteStartError("compose up failed")

    monkeypatch.setattr(RemoteDeployer, "deploy", fake_deploy)

    result = runner.invoke(app, ["create", "alpha", "--host", "ssh://ops@box"], env=env)

    assert result.exit_code == 4
    record = FleetRegistry(root / "fleet.json").get("alpha")
    assert record is not None
    assert record.ssh_target == "ops@box"


def test_create_rejects_bad_remote_url(tmp_path: Path) -> None:
    """Remote URLs must use the ssh scheme."""
    env, root = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["create", "alpha", "--host", "http://box"], env=env)

    assert result.exit_code == 2
    assert not (root / "instances" / "alpha").exists()


def test_destroy_with_archive(tmp_path: Path, docker: DockerStub) -> None:
    """Destroy archives the directory, then unregisters and deletes it."""
    env, root = _prepare_environment(tmp_path)
    _create(env, "alpha")

    result = runner.invoke(app, ["destroy", "alpha", "--force", "--archive"], env=env)

    assert result.exit_code == 0, result.output
    assert "Destroyed instance 'alpha'" in result.stdout
    assert not (root / "instances" / "alpha").exists()
    assert FleetRegistry(root / "fleet.json").get("alpha") is None
    assert len(list((root / "archives").glob("alpha-*.tar.gz"))) == 1
    down_argv, down_cwd = docker.calls[0]
    assert down_argv == ["docker", "compose", "down", "--volumes", "--remove-orphans"]
    assert down_cwd == str(root / "instances" / "alpha")


def test_destroy_declined_changes_nothing(tmp_path: Path, docker: DockerStub) -> None:
    """Answering no at the prompt leaves the instance intact."""
    env, root = _prepare_environment(tmp_path)
    _create(env, "alpha")

    result = runner.invoke(app, ["destroy", "alpha"], env=env, input="n\n")

    assert result.exit_code == 0
    assert "Aborted" in result.stdout
    assert (root / "instances" / "alpha").exists()
    assert FleetRegistry(root / "fleet.json").get("alpha") is not None
    assert docker.calls == []


def test_destroy_unknown_instance(tmp_path: Path, docker: DockerStub) -> None:
    """Destroying a missing instance is a validation error."""
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["destroy", "nope", "--force"], env=env)

    assert result.exit_code == 2
    assert "not found" in result.stdout


def test_start_all_reports_partial_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """One failing instance makes the batch exit non-zero after all run."""
    env, _ = _prepare_environment(tmp_path)
    _create(env, "alpha")
    _create(env, "beta")
    stub = DockerStub(failing=["alpha"])
    monkeypatch.setattr(ComposeProvider, "_run_command", stub)

    result = runner.invoke(app, ["start", "--all"], env=env)

    assert result.exit_code == 4
    assert "1 succeeded, 1 failed" in result.stdout
    assert len(stub.calls) == 2


def test_batch_outcomes_are_right_aligned(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Outcome labels are padded to a common width before styling."""
    env, _ = _prepare_environment(tmp_path)
    _create(env, "alpha")
    _create(env, "beta")
    monkeypatch.setattr(ComposeProvider, "_run_command", DockerStub(failing=["alpha"]))

    result = runner.invoke(app, ["start", "--all"], env=env)

    lines = re.sub(r"\x1b\[[0-9;]*m", "", result.stdout).splitlines()
    assert any(line.startswith(" failed alpha: ") for line in lines), result.stdout
    assert any(line.startswith("success beta: Started on port 18790") for line in lines), result.stdout


def test_start_name_and_all_conflict(tmp_path: Path, docker: DockerStub) -> None:
    """NAME and --all are mutually exclusive."""
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["start", "alpha", "--all"], env=env)

    assert result.exit_code == 2


def test_stop_with_empty_fleet(tmp_path: Path, docker: DockerStub) -> None:
    """Batch actions on an empty fleet succeed quietly."""
    env, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["stop"], env=env)

    assert result.exit_code == 0
    assert "No instances registered." in result.stdout


def test_status_json_includes_orphans(tmp_path: Path, docker: DockerStub) -> None:
    """Status reports running, stopped and unregistered instances."""
    env, root = _prepare_environment(tmp_path)
    _create(env, "alpha")
    _create(env, "beta")
    (root / "instances" / "ghost").mkdir()
    docker.running.add("alpha")

    result = runner.invoke(app, ["status", "--json"], env=env)

    assert result.exit_code == 0, result.output
    payload = _extract_json(result.stdout)
    states = {item["name"]: item for item in payload["instances"]}  # type: ignore[union-attr]
    assert states["alpha"]["state"] == "running"
    assert states["beta"]["state"] == "not-created"
    assert states["ghost"]["registered"] is False


def test_logs_missing_container(tmp_path: Path, docker: DockerStub) -> None:
    """Logs for a container that was never created fail clearly."""
    env, _ = _prepare_environment(tmp_path)
    _create(env, "alpha")

    result = runner.invoke(app, ["logs", "alpha", "--no-follow"], env=env)

    assert result.exit_code == 4
    assert "not found" in result.stdout


def test_monitor_with_nothing_running(tmp_path: Path, docker: DockerStub) -> None:
    """Monitor succeeds when no instance is running."""
    env, _ = _prepare_environment(tmp_path)
    _create(env, "alpha")

    result = runner.invoke(app, ["monitor", "--json"], env=env)

    assert result.exit_code == 0, result.output
    payload = _extract_json(result.stdout)
    assert payload["healthy"] is True
    assert payload["skipped"] == ["alpha"]


def test_ports_list_reports_assignments(tmp_path: Path) -> None:
    """`ports list` renders current port assignments."""
    env, _ = _prepare_environment(tmp_path)
    _create(env, "alpha")
    _create(env, "beta", "--port", "19500")

    result = runner.invoke(app, ["ports", "list"], env=env)

    assert result.exit_code == 0
    assert "alpha" in result.stdout
    assert "19500" in result.stdout

    json_result = runner.invoke(app, ["ports", "list", "--json"], env=env)
    assert json_result.exit_code == 0
    payload = json.loads(json_result.stdout)
    assert payload == {"ports": [{"port": 18789, "name": "alpha"}, {"port": 19500, "name": "beta"}]}


def test_corrupt_registry_is_environment_error(tmp_path: Path) -> None:
    """An unreadable registry exits with the environment code."""
    env, root = _prepare_environment(tmp_path)
    root.mkdir(parents=True)
    (root / "fleet.json").write_text("{not json", encoding="utf-8")

    result = runner.invoke(app, ["ports", "list"], env=env)

    assert result.exit_code == 3
    assert "corrupted" in result.stdout


def test_out_of_range_port_in_registry_is_environment_error(tmp_path: Path) -> None:
    """A hand-edited entry with an impossible port is rejected on load."""
    env, root = _prepare_environment(tmp_path)
    root.mkdir(parents=True)
    (root / "fleet.json").write_text(
        json.dumps({"revision": 1, "instances": {"alpha": {"port": -5, "created": "x"}}}),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["ports", "list", "--json"], env=env)

    assert result.exit_code == 3
    output = re.sub(r"\x1b\[[0-9;]*m", "", result.stdout)
    assert "out-of-range port -5" in output
    assert '"ports"' not in output


def test_config_show_json(tmp_path: Path) -> None:
    """`config show --json` emits the resolved configuration."""
    env, root = _prepare_environment(tmp_path, ports={"base": 20000, "limit": 20100})

    result = runner.invoke(app, ["config", "show", "--json"], env=env)

    assert result.exit_code == 0
    payload = _extract_json(result.stdout)
    assert payload["root_dir"] == str(root)
    assert payload["registry_file"] == str(root / "fleet.json")
    assert payload["ports"] == {"base": 20000, "limit": 20100}


def test_invalid_config_is_environment_error(tmp_path: Path) -> None:
    """Configuration errors exit with the environment code."""
    env, _ = _prepare_environment(tmp_path, bogus=True)

    result = runner.invoke(app, ["config", "show"], env=env)

    assert result.exit_code == 3
    assert "Configuration error" in result.stdout


def test_operations_are_logged(tmp_path: Path) -> None:
    """Every command appends a structured record."""
    env, root = _prepare_environment(tmp_path)
    _create(env, "alpha")

    lines = (root / "logs" / "operations.jsonl").read_text(encoding="utf-8").splitlines()
    record = json.loads(lines[-1])

    assert record["command"] == "create"
    assert record["result"]["status"] == "success"
    assert record["target"] == {"kind": "instance", "name": "alpha"}
