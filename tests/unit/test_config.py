#!/usr/bin/env python3
"""
Tests for Config Manager and node identity loading
"""

import tempfile
from pathlib import Path

import pytest
import yaml

from data_transmit.config_manager import (
    DEFAULT_COLLECTOR_URL,
    ConfigManager,
    ConfigValidationError,
    IdentityError,
    load_node_id,
)


@pytest.fixture
def write_config():
    """Write a config dict to a temporary YAML file"""
    paths = []

    def _write(config):
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            yaml.dump(config, f)
            paths.append(f.name)
            return f.name

    yield _write

    for path in paths:
        Path(path).unlink(missing_ok=True)


def test_defaults_without_config_file():
    """Test built-in defaults are used when no file is given"""
    cm = ConfigManager()

    assert cm.get("collector.url") == DEFAULT_COLLECTOR_URL
    assert cm.get("collector.build_id") == "git"
    assert cm.get("backlog.policy") == "quota"
    assert cm.retry_interval_seconds() == 180
    assert cm.retry_threshold_seconds() == 180


def test_file_values_override_defaults(write_config):
    """Test YAML values are merged over the defaults"""
    path = write_config({
        "uploads_root": "/srv/uploads",
        "collector": {"url": "http://collector.local/upload/"},
        "retry": {"interval_minutes": 30, "threshold_seconds": 600},
        "backlog": {"quota_bytes": 1000},
    })

    cm = ConfigManager(path)

    assert cm.get("uploads_root") == "/srv/uploads"
    assert cm.get("collector.url") == "http://collector.local/upload/"
    # Untouched keys in the same section keep their defaults
    assert cm.get("collector.build_id") == "git"
    assert cm.get("collector.verify_ssl") is True
    assert cm.retry_interval_seconds() == 1800
    assert cm.retry_threshold_seconds() == 600
    assert cm.get("backlog.quota_bytes") == 1000


def test_env_vars_expanded(write_config, monkeypatch):
    """Test ${VAR} is expanded in string values"""
    monkeypatch.setenv("SPOOL_BASE", "/data")
    path = write_config({"uploads_root": "${SPOOL_BASE}/uploads"})

    cm = ConfigManager(path)

    assert cm.get("uploads_root") == "/data/uploads"


def test_empty_file_uses_defaults(temp_dir):
    """Test an empty config file is accepted"""
    path = temp_dir / "empty.yaml"
    path.write_text("")

    cm = ConfigManager(str(path))

    assert cm.get("collector.url") == DEFAULT_COLLECTOR_URL


def test_load_nonexistent_file():
    """Test an explicit config path must exist"""
    with pytest.raises(FileNotFoundError):
        ConfigManager("/nonexistent/path/config.yaml")


def test_get_missing_key_returns_default():
    """Test dot-notation lookup falls back to the default"""
    cm = ConfigManager()

    assert cm.get("missing.key", "fallback") == "fallback"
    assert cm.get("collector.missing") is None


@pytest.mark.parametrize("config, message", [
    ({"collector": {"url": "ftp://collector/upload"}}, "collector.url"),
    ({"collector": {"url": ""}}, "collector.url"),
    ({"collector": {"build_id": ""}}, "collector.build_id"),
    ({"collector": {"verify_ssl": "yes"}}, "collector.verify_ssl"),
    ({"collector": {"read_timeout_seconds": 0}}, "read_timeout_seconds"),
    ({"retry": {"interval_minutes": 0}}, "retry.interval_minutes"),
    ({"retry": {"threshold_seconds": -1}}, "retry.threshold_seconds"),
    ({"backlog": {"policy": "both"}}, "backlog.policy"),
    ({"backlog": {"quota_bytes": -5}}, "backlog.quota_bytes"),
    ({"backlog": {"quota_bytes": 1.5}}, "backlog.quota_bytes"),
    ({"failures": {"report_file": ""}}, "failures.report_file"),
    ({"uploads_root": ""}, "uploads_root"),
    ({"collector": None}, "collector must be a mapping"),
])
def test_invalid_values_rejected(write_config, config, message):
    """Test validation rejects bad values"""
    path = write_config(config)

    with pytest.raises(ConfigValidationError, match=message):
        ConfigManager(path)


def test_max_age_must_exceed_retry_threshold(write_config):
    """Test the max_age policy needs a cutoff beyond the retry threshold"""
    path = write_config({
        "retry": {"interval_minutes": 3},
        "backlog": {"policy": "max_age", "max_age_seconds": 60},
    })

    with pytest.raises(ConfigValidationError, match="max_age_seconds"):
        ConfigManager(path)


def test_max_age_policy_valid(write_config):
    """Test a valid max_age configuration loads"""
    path = write_config({
        "retry": {"interval_minutes": 3},
        "backlog": {"policy": "max_age", "max_age_seconds": 3600},
    })

    cm = ConfigManager(path)

    assert cm.get("backlog.policy") == "max_age"
    assert cm.get("backlog.max_age_seconds") == 3600


def test_reload_keeps_config_on_error(write_config):
    """Test a broken file on reload keeps the previous configuration"""
    path = write_config({"backlog": {"quota_bytes": 1000}})
    cm = ConfigManager(path)

    Path(path).write_text("backlog:\n  policy: nonsense\n")
    result = cm.reload_config()

    assert result["backlog"]["quota_bytes"] == 1000
    assert cm.get("backlog.policy") == "quota"


def test_load_node_id(node_id_file):
    """Test the first 14 bytes are the node id"""
    assert load_node_id(str(node_id_file)) == b"OW0123456789AB"


def test_load_node_id_too_short(temp_dir):
    """Test a short identity file is rejected"""
    path = temp_dir / "node_id"
    path.write_text("OW01")

    with pytest.raises(IdentityError, match="too short"):
        load_node_id(str(path))


def test_load_node_id_missing(temp_dir):
    """Test a missing identity file is rejected"""
    with pytest.raises(IdentityError, match="Cannot read"):
        load_node_id(str(temp_dir / "missing"))


def test_load_node_id_keeps_raw_bytes(temp_dir):
    """Test an identity that is not valid UTF-8 is returned unchanged"""
    path = temp_dir / "node_id"
    path.write_bytes(b"OW\xff\xfe0123456789\n")

    assert load_node_id(str(path)) == b"OW\xff\xfe0123456789"
