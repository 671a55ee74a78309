"""
Pytest configuration og shared fixtures.
"""

import os
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock, Mock

import pytest

from storage_engine.config import Settings
from storage_engine.core.commands import CommandRunner
from storage_engine.core.events.event_bus import DomainEventBus
from storage_engine.core.locks import ResourceLocks
from storage_engine.models import Volume, VolumeClass
from tests.helpers import ok_result


@pytest.fixture
def owner() -> str:
    """Owner of the test process, so chown always succeeds without root."""
    return f"{os.getuid()}:{os.getgid()}"


@pytest.fixture
def make_volume(tmp_path: Path, owner: str) -> Callable[..., Volume]:
    def _make(name: str, volume_class: VolumeClass = VolumeClass.PERSISTENT, **kwargs) -> Volume:
        kwargs.setdefault("path", str(tmp_path / "volumes" / name))
        kwargs.setdefault("owner", owner)
        kwargs.setdefault("mode", 0o750)
        return Volume(name=name, volume_class=volume_class, **kwargs)

    return _make


@pytest.fixture
def mount_dir(tmp_path: Path) -> Path:
    path = tmp_path / "mnt" / "docker-data"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def make_settings(tmp_path: Path, mount_dir: Path) -> Callable[..., Settings]:
    def _make(**overrides) -> Settings:
        values = dict(
            volumes=[],
            mount_point=str(mount_dir),
            fstab_path=str(tmp_path / "fstab"),
            recover_retry_delay_seconds=0,
            repository_token_file=str(tmp_path / "kopia-repository-token"),
            service_state_dirs={},
            restore_targets={},
            log_file_path=str(tmp_path / "logs" / "storage_engine.log"),
        )
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def event_bus() -> DomainEventBus:
    return DomainEventBus()


@pytest.fixture
def locks() -> ResourceLocks:
    return ResourceLocks(mode="fail_fast", timeout_seconds=1.0)


@pytest.fixture
def runner() -> Mock:
    """CommandRunner whose every command succeeds unless a test says otherwise."""
    mock_runner = Mock(spec=CommandRunner)
    mock_runner.run = AsyncMock(side_effect=lambda argv, **kwargs: ok_result(*argv))
    return mock_runner
