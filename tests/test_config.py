import pytest
from pydantic import ValidationError

from storage_engine.config import Settings
from storage_engine.models import VolumeClass
from storage_engine.services.volume_registry import VolumeRegistry


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.mount_point == "/mnt/docker-data"
    assert settings.recover_max_attempts == 10
    assert settings.lock_mode == "fail_fast"
    assert settings.volume_capacity_threshold.critical_at == 95.0
    assert settings.mount_capacity_threshold.warn_at == 80.0


def test_default_volumes_form_a_valid_registry():
    registry = VolumeRegistry(Settings(_env_file=None).volumes)

    assert "homebridge" in registry
    assert [v.name for v in registry.by_class(VolumeClass.MEDIA)] == ["media"]
    assert all(v.volume_class == VolumeClass.PERSISTENT for v in registry.backup_eligible())


def test_retention_only_for_cache_and_persistent():
    settings = Settings(_env_file=None, cache_retention_days=3)

    assert settings.retention_days == {VolumeClass.CACHE: 3, VolumeClass.PERSISTENT: 30}


def test_environment_override(monkeypatch):
    monkeypatch.setenv("STORAGE_ENGINE_REMOTE_HOST", "10.4.0.51")
    monkeypatch.setenv("STORAGE_ENGINE_LOCK_MODE", "block")

    settings = Settings(_env_file=None)

    assert settings.remote_host == "10.4.0.51"
    assert settings.lock_mode == "block"


def test_invalid_lock_mode_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, lock_mode="queue")


def test_settings_are_frozen():
    settings = Settings(_env_file=None)

    with pytest.raises(ValidationError):
        settings.remote_host = "elsewhere"
