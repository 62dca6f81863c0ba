"""
Tests for the tracking configuration loader.
"""

import os
import pytest
import yaml

from src.healing_dashboard.core.config_loader import ConfigurationError, TrackingConfigLoader
from src.healing_dashboard.core.models.execution_models import TrackingConfiguration


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "config" / "tracking.yaml"


def write_yaml(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data), encoding="utf-8")


class TestTrackingConfigLoader:
    """Loading, validation and saving."""

    def test_missing_file_gives_defaults(self, config_path):
        config = TrackingConfigLoader(str(config_path)).load_config()

        assert config == TrackingConfiguration()

    def test_partial_file_is_merged_with_defaults(self, config_path):
        write_yaml(config_path, {"tracking": {"watchdog": {"timeout": 10}}})

        config = TrackingConfigLoader(str(config_path)).load_config()

        assert config.watchdog_timeout == 10.0
        assert config.execution_timeout == 300
        assert config.stop_mode == "kill_process_group"

    @pytest.mark.parametrize("override", [
        {"watchdog": {"timeout": 0}},
        {"execution": {"timeout": 99999}},
        {"execution": {"expected_exit_codes": []}},
        {"stop": {"mode": "ask_nicely"}},
        {"stop": {"grace_period": -1}},
        {"execution": {"timeout": "soon"}},
    ])
    def test_invalid_values_are_rejected(self, config_path, override):
        write_yaml(config_path, {"tracking": override})

        with pytest.raises(ConfigurationError):
            TrackingConfigLoader(str(config_path)).load_config()

    def test_invalid_yaml_is_rejected(self, config_path):
        config_path.parent.mkdir(parents=True)
        config_path.write_text("tracking: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            TrackingConfigLoader(str(config_path)).load_config()

    def test_save_then_reload(self, config_path):
        loader = TrackingConfigLoader(str(config_path))
        loader.save_config(TrackingConfiguration(watchdog_timeout=5.0, expected_exit_codes=[0]))

        reloaded = TrackingConfigLoader(str(config_path)).load_config()

        assert reloaded.watchdog_timeout == 5.0
        assert reloaded.expected_exit_codes == [0]

    def test_save_rejects_invalid_config(self, config_path):
        with pytest.raises(ConfigurationError):
            TrackingConfigLoader(str(config_path)).save_config(TrackingConfiguration(stop_mode="nope"))
        assert not config_path.exists()

    def test_cache_follows_file_changes(self, config_path):
        write_yaml(config_path, {"tracking": {"watchdog": {"timeout": 10}}})
        loader = TrackingConfigLoader(str(config_path))
        first = loader.load_config()
        assert loader.load_config() is first

        write_yaml(config_path, {"tracking": {"watchdog": {"timeout": 20}}})
        stat = config_path.stat()
        os.utime(config_path, (stat.st_atime, stat.st_mtime + 10))

        assert loader.load_config().watchdog_timeout == 20.0
