"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from hatchctl.config import AppConfig, load_config


def write_config(tmp_path: Path, **overrides: object) -> Path:
    """Write a config file rooted under *tmp_path* and return its path."""
    payload: dict[str, object] = {"root_dir": str(tmp_path / "hatchery")}
    payload.update(overrides)
    config_file = tmp_path / "config.yml"
    config_file.write_text(yaml.safe_dump(payload), encoding="utf-8")
    return config_file


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Return a configuration whose directories live under ``tmp_path``."""
    return load_config(config_file=write_config(tmp_path), env={})
