"""
Tests for configuration loading
"""

import json
import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from utils.config import ClaudiaConfig, default_config_path, load_config, merge_configs
from utils.errors import ConfigError, ExitCode


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in [name for name in os.environ if name.startswith("CLAUDIA_")]:
        monkeypatch.delenv(var)


def test_defaults():
    """Test the documented defaults"""
    config = ClaudiaConfig()
    assert config.max_continue == 50
    assert config.idle_timeout == 60
    assert config.loop_window == 20
    assert config.loop_threshold == 3
    assert config.countdown_interval == 30
    assert config.default_backoff == 3600
    assert config.grace_period == 5
    assert config.agent_command == "claude"
    assert config.agent_args == ["--dangerously-skip-permissions"]
    assert config.continue_text == "Continue"


def test_load_without_file_uses_defaults(tmp_path):
    """Test that a missing default config file is fine"""
    config = load_config(str(tmp_path / ".claudia.json"))
    assert config == ClaudiaConfig()


def test_file_environment_and_override_precedence(tmp_path, monkeypatch):
    """Test file < environment < explicit overrides"""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"max_continue": 10, "idle_timeout": 30, "log_level": "INFO"}), encoding="utf-8")
    monkeypatch.setenv("CLAUDIA_MAX_CONTINUE", "7")

    config = load_config(str(path), {"log_level": "DEBUG"})

    assert config.max_continue == 7
    assert config.idle_timeout == 30
    assert config.log_level == "DEBUG"


def test_environment_values_are_coerced(monkeypatch):
    """Test that numeric environment strings validate"""
    monkeypatch.setenv("CLAUDIA_IDLE_TIMEOUT", "120")
    assert load_config().idle_timeout == 120.0


def test_invalid_json_raises(tmp_path):
    """Test a malformed config file"""
    path = tmp_path / "config.json"
    path.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_non_object_raises(tmp_path):
    """Test a config file that is not a JSON object"""
    path = tmp_path / "config.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_invalid_value_raises(tmp_path):
    """Test validation failures"""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"loop_window": 1}), encoding="utf-8")
    with pytest.raises(ConfigError) as excinfo:
        load_config(str(path))
    assert excinfo.value.exit_code == ExitCode.RUNTIME_ERROR


def test_default_config_path(tmp_path):
    """Test that the config lives beside the task file"""
    assert default_config_path(tmp_path / "TODO.md") == tmp_path.resolve() / ".claudia.json"


def test_merge_configs():
    """Test that later dictionaries win"""
    assert merge_configs({"a": 1, "b": 1}, {}, {"b": 2}) == {"a": 1, "b": 2}
