import json

import pytest

from pitchup import (
    ActiveHoursConfig, ConfigError, ConfigManager, DeliveryConfig, EngineConfig, SchedulerConfig,
    WindowConfig, get_storage_root
)


def test_defaults():
    config = EngineConfig()
    assert (config.active_hours.start_hour, config.active_hours.end_hour) == (8, 22)
    assert (config.scheduler.min_delay_sec, config.scheduler.max_delay_sec) == (1800.0, 10800.0)
    assert (config.window.window_sec, config.window.recording_sec) == (120.0, 60.0)
    assert config.delivery.record_url == "https://pitch-up.vercel.app/record"


def test_save_and_load(tmp_path):
    manager = ConfigManager(str(tmp_path / "engine_config.json"))
    config = EngineConfig(
        active_hours=ActiveHoursConfig(start_hour=9, end_hour=18, timezone="Europe/Berlin"),
        scheduler=SchedulerConfig(min_delay_sec=600, max_delay_sec=1200),
        delivery=DeliveryConfig(app_url="https://example.test/")
    )
    manager.save_config(config)

    loaded = manager.load_config()
    assert loaded == config
    assert loaded.delivery.record_url == "https://example.test/record"


def test_corrupt_or_invalid_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "engine_config.json"
    manager = ConfigManager(str(path))

    path.write_text("{not json")
    assert manager.load_config() == EngineConfig()

    path.write_text(json.dumps({"engine_config": {"scheduler": {"min_delay_sec": 500, "max_delay_sec": 100}}}))
    assert manager.load_config() == EngineConfig()

    manager.purge_config()
    assert not path.exists()


def test_from_dict_ignores_unknown_keys():
    config = EngineConfig.from_dict({"window": {"window_sec": 90, "legacy": True}, "extra": 1})
    assert config.window.window_sec == 90
    assert config.window.recording_sec == 60.0


def test_validation():
    with pytest.raises(ConfigError):
        SchedulerConfig(min_delay_sec=100, max_delay_sec=50)
    with pytest.raises(ConfigError):
        WindowConfig(window_sec=120, late_threshold_sec=200)
    with pytest.raises(ConfigError):
        ActiveHoursConfig(jitter_max_sec=-1)


def test_storage_root_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("PITCHUP_STORAGE_ROOT", str(tmp_path))
    assert get_storage_root() == tmp_path
    assert ConfigManager().config_path == tmp_path / "engine_config.json"

    monkeypatch.delenv("PITCHUP_STORAGE_ROOT")
    assert str(get_storage_root()) == "storage"
