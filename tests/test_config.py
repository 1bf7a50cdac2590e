from pathlib import Path

import pytest
import yaml

from pose_sync.common.config import default_config, load_config
from pose_sync.common.enums import LogLevel
from pose_sync.common.errors import ConfigError


def test_missing_file_yields_defaults(tmp_path):
    config = load_config(str(tmp_path / "absent.yaml"))
    assert config == default_config()
    assert config['source']['buffer_size'] == 5
    assert config['pipeline']['smoothing']['enabled'] is False
    assert config['logging']['level'] == LogLevel.INFO


def test_overrides_are_merged_with_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "model:\n"
        "  model_complexity: 2\n"
        "pipeline:\n"
        "  smoothing:\n"
        "    enabled: true\n"
        "logging:\n"
        "  level: DEBUG\n"
    )
    config = load_config(str(path))

    assert config['model']['model_complexity'] == 2
    assert config['model']['min_detection_confidence'] == 0.5
    assert config['pipeline']['smoothing'] == {'enabled': True, 'min_cutoff': 0.5, 'beta': 0.05, 'd_cutoff': 1.0}
    assert config['logging']['level'] == LogLevel.DEBUG


def test_empty_file_yields_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(str(path)) == default_config()


@pytest.mark.parametrize("text", [
    "model:\n  model_complexity: 7\n",
    "source:\n  buffer_size: 0\n",
    "camera:\n  source: 0\n",
    "- just\n- a list\n",
])
def test_invalid_config_raises(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_malformed_yaml_raises(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("model: [unclosed\n")
    with pytest.raises(yaml.YAMLError):
        load_config(str(path))


def test_shipped_config_is_valid():
    config = load_config(str(Path(__file__).resolve().parents[1] / "config.yaml"))
    assert config['visualization']['window_name'] == "Pose Sync"
