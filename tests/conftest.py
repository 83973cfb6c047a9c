"""
Shared pytest fixtures for pgtestbed tests.

No cluster or Docker daemon is needed: ``oc`` and ``docker`` are reached
through ``subprocess.run`` and ``shutil.which``, both patched here or in
the individual tests.
"""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Ensure pgtestbed package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pgtestbed.config import TestbedConfig


@pytest.fixture
def which():
    """Every CLI tool resolves to ``/usr/bin/<name>``."""
    with patch("shutil.which", side_effect=lambda name: f"/usr/bin/{name}") as mock_which:
        yield mock_which


@pytest.fixture
def templates(tmp_path: Path) -> dict[str, Path]:
    """Template files; their content is opaque to the harness."""
    paths = {
        "ephemeral_template": tmp_path / "postgresql-ephemeral-template.json",
        "persistent_template": tmp_path / "postgresql-persistent-template.json",
        "replication_template": tmp_path / "postgresql_replica.json",
    }
    for path in paths.values():
        path.write_text("{}", encoding="utf-8")
    return paths


@pytest.fixture
def config(tmp_path: Path, templates: dict[str, Path]) -> TestbedConfig:
    return TestbedConfig(
        image_name="centos/postgresql-96-centos7",
        version="9.6",
        os="centos7",
        output_dir=tmp_path / "out",
        run_id="abcdef123456",
        ready_timeout=0,
        **templates,
    )


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is called."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
