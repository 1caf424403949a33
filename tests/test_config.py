#!/usr/bin/env python3
"""Tests for configuration loading."""

import logging

import pytest

from gearwear import Config, load_config
from gearwear.config import LOG_FORMAT, configure_logging


class TestConfig:
    """Tests for the Config dataclass."""

    def test_defaults(self):
        config = Config()
        assert config.max_retries == 3
        assert config.log_level == "INFO"
        assert config.store_path is None

    def test_max_retries_at_least_one(self):
        with pytest.raises(ValueError):
            Config(max_retries=0)


class TestLoadConfig:
    """Tests for load_config."""

    def test_no_sources(self):
        assert load_config(environ={}) == Config()

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "gearwear.yaml"
        path.write_text("max_retries: 7\nlog_level: DEBUG\n")
        config = load_config(path, environ={})
        assert config.max_retries == 7
        assert config.log_level == "DEBUG"

    def test_environment_wins(self, tmp_path):
        path = tmp_path / "gearwear.yaml"
        path.write_text("max_retries: 7\n")
        config = load_config(
            path, environ={"GEARWEAR_MAX_RETRIES": "2", "GEARWEAR_STORE_PATH": "g.yaml"}
        )
        assert config.max_retries == 2
        assert config.store_path == "g.yaml"

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "gearwear.yaml"
        path.write_text("retries: 7\n")
        with pytest.raises(ValueError):
            load_config(path, environ={})

    def test_empty_file(self, tmp_path):
        path = tmp_path / "gearwear.yaml"
        path.write_text("")
        assert load_config(path, environ={}) == Config()


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_sets_level_and_format(self, monkeypatch):
        calls = {}
        monkeypatch.setattr(logging, "basicConfig", lambda **kw: calls.update(kw))
        configure_logging(Config(log_level="debug"))
        assert calls == {"level": "DEBUG", "format": LOG_FORMAT}
