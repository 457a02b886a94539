"""Structured operation logging for hatchctl.

Every CLI command runs inside :meth:`StructuredLogger.operation`, which yields an
:class:`OperationScope`. Commands record intermediate steps and a final result;
when the scope exits a single JSON record is appended to ``operations.jsonl``
and a one-line summary to ``hatchctl.log``. Logging failures never break the
command being logged: the logger disables itself and carries on.
"""
from __future__ import annotations

import getpass
import json
import logging
import os
import secrets
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from . import __version__

_LOG = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    """Return a JSON-safe representation of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


def _sanitize_mapping(value: Mapping[str, object] | None) -> dict[str, object]:
    return {str(key): _sanitize(item) for key, item in (value or {}).items()}


@dataclass(slots=True)
class OperationScope:
    """Mutable record of a single CLI operation."""

    command: str
    args: dict[str, object]
    target: dict[str, object]
    operation_id: str
    started_at: str
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record an intermediate step (``success``, ``warning``, ``error``, ``skipped``)."""
        step: dict[str, object] = {"name": name, "status": status, "at": _now_iso()}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
        **extra: object,
    ) -> None:
        """Mark the operation as successful."""
        self._finish("success", message, changed=changed, context=context, extra=extra)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] = (),
        errors: Sequence[str] = (),
        changed: int = 0,
        context: Mapping[str, object] | None = None,
        **extra: object,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._finish(
            "warning",
            message,
            changed=changed,
            context=context,
            extra={"warnings": list(warnings), "errors": list(errors), **extra},
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
        **extra: object,
    ) -> None:
        """Mark the operation as failed."""
        self._finish(
            "error",
            message,
            changed=0,
            context=context,
            extra={"errors": list(errors or [message]), "rc": rc, **extra},
        )

    def _finish(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        context: Mapping[str, object] | None,
        extra: Mapping[str, object],
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
        }
        for key, value in extra.items():
            result[key] = _sanitize(value)
        if context:
            result["context"] = _sanitize(context)
        self.result = result


class StructuredLogger:
    """Append operation records to ``operations.jsonl`` and ``hatchctl.log``."""

    def __init__(self, logs_dir: Path) -> None:
        self._logs_dir = logs_dir.expanduser()
        self._operations_log_path = self._logs_dir / "operations.jsonl"
        self._human_log_path = self._logs_dir / "hatchctl.log"
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _LOG.warning("Operation logging disabled; cannot create %s: %s", self._logs_dir, exc)
            self._enabled = False

    @property
    def operations_log_path(self) -> Path:
        """Return the JSONL operations log path."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(
            command=command,
            args=_sanitize_mapping(args),
            target=_sanitize_mapping(target),
            operation_id=f"{datetime.now(tz=UTC):%Y%m%dT%H%M%S}-{secrets.token_hex(3)}",
            started_at=_now_iso(),
        )
        started = time.monotonic()
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"Unhandled {type(exc).__name__}: {exc}", rc=1)
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.", changed=0)
            duration_ms = int((time.monotonic() - started) * 1000)
            self._write(scope, duration_ms)

    # ------------------------------------------------------------------
    def _write(self, scope: OperationScope, duration_ms: int) -> None:
        if not self._enabled:
            return
        result = scope.result or {}
        record = {
            "id": scope.operation_id,
            "started_at": scope.started_at,
            "finished_at": _now_iso(),
            "duration_ms": duration_ms,
            "command": scope.command,
            "args": scope.args,
            "target": scope.target,
            "steps": scope.steps,
            "result": result,
            "context": {
                "hatchctl_version": __version__,
                "pid": os.getpid(),
                "user": _current_user(),
            },
        }
        human = (
            f"{scope.started_at} {str(result.get('status', 'unknown')).upper():<7} "
            f"{scope.command}: {result.get('message', '')}"
        )
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
            with self._human_log_path.open("a", encoding="utf-8") as handle:
                handle.write(human + "\n")
        except OSError as exc:
            _LOG.warning("Operation logging disabled after write failure: %s", exc)
            self._enabled = False


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):  # pragma: no cover - environment specific
        return "unknown"


__all__ = ["OperationScope", "StructuredLogger"]
