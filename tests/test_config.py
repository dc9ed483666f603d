import logging

import pytest
import yaml

from geostage.config import CONFIG_ENV_VAR, DEFAULT_CONFIG, get_setting, load_config
from geostage.utils import setup_logging


def test_defaults_when_no_file(tmp_path, monkeypatch):
    monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "absent.yaml"))
    assert load_config() == DEFAULT_CONFIG


def test_file_values_override_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"sampling": {"seed": 11}, "extra": {"key": "value"}}))
    config = load_config(path)
    assert config["sampling"]["seed"] == 11
    assert config["sampling"]["max_attempts"] == DEFAULT_CONFIG["sampling"]["max_attempts"]
    assert config["extra"]["key"] == "value"


def test_env_var_selects_file(tmp_path, monkeypatch):
    path = tmp_path / "env.yaml"
    path.write_text(yaml.safe_dump({"raster": {"resampling": "nearest"}}))
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    assert get_setting("raster.resampling") == "nearest"


def test_missing_explicit_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")


def test_non_mapping_config_raises(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(path)


def test_get_setting():
    config = {"a": {"b": 1, "c": None}}
    assert get_setting("a.b", config=config) == 1
    assert get_setting("a.c", default=5, config=config) == 5
    assert get_setting("a.missing", default="x", config=config) == "x"
    assert get_setting("a.b.deeper", config=config) is None


def test_setup_logging_rejects_unknown_level():
    with pytest.raises(ValueError):
        setup_logging("LOUD")


def test_setup_logging_quietens_gdal_loggers():
    setup_logging("INFO")
    assert logging.getLogger("rasterio").level == logging.WARNING
