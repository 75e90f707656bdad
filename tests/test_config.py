"""Тесты загрузки config.yaml"""
import pytest

from config import Settings, load_config
from errors import ConfigurationError


def test_missing_file_gives_defaults(tmp_path):
    settings = load_config(str(tmp_path / "absent.yaml"))
    assert settings == Settings()
    assert settings.port == 5995
    assert settings.fpr == 0.001


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(str(path)) == Settings()


def test_values_override_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("port: 6000\nsplit: word\nredaction_salt: other\n")
    settings = load_config(str(path))
    assert (settings.port, settings.split, settings.redaction_salt) == (6000, 'word', 'other')
    assert settings.tile_size == 5


@pytest.mark.parametrize("content", [
    "fpr: 2\n",
    "split: sentence\n",
    "tile_size: 0\n",
    "port: [1, 2\n",
    "- just\n- a list\n",
])
def test_invalid_config(tmp_path, content):
    path = tmp_path / "config.yaml"
    path.write_text(content)
    with pytest.raises(ConfigurationError) as info:
        load_config(str(path))
    assert info.value.phase == "config"
