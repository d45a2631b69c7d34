#!/usr/bin/env python3
"""
Configuration Manager for Data Transmit
Loads, validates, and manages YAML configuration and the node identity

Every setting has a built-in default so the service can start without a
config file. A YAML file, when given, is merged over the defaults.
"""

import copy
import logging
import os
import signal
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import yaml

logger = logging.getLogger(__name__)

NODE_ID_LENGTH = 14
DEFAULT_COLLECTOR_URL = "https://localhost:8001/upload/"
VALID_BACKLOG_POLICIES = ["quota", "max_age"]

DEFAULT_CONFIG: Dict[str, Any] = {
    "uploads_root": "/var/spool/data-transmit",
    "node_id_file": "/etc/data-transmit/node_id",
    "collector": {
        "url": DEFAULT_COLLECTOR_URL,
        "build_id": "git",
        "verify_ssl": True,
        "connect_timeout_seconds": 30,
        "read_timeout_seconds": 300,
    },
    "retry": {
        "interval_minutes": 3,
        "threshold_seconds": None,
    },
    "backlog": {
        "policy": "quota",
        "quota_bytes": 5 * 1024**2,
        "max_age_seconds": 4 * 86400,
    },
    "failures": {
        "report_file": "/var/lib/data-transmit/failures",
    },
}


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    This exception is raised when the configuration file is malformed
    or contains invalid values.
    """

    pass


class IdentityError(Exception):
    """Raised when the node identity file is missing or too short."""

    pass


def load_node_id(path: str, length: int = NODE_ID_LENGTH) -> bytes:
    """
    Read the fixed-length node identity.

    Exactly ``length`` bytes are read from the start of the file; anything
    after them (such as a trailing newline) is ignored. The bytes are kept
    as read and escaped byte for byte when sent to the collector.

    Args:
        path: Path to the node identity file
        length: Number of bytes making up the identity

    Returns:
        bytes: Node identity

    Raises:
        IdentityError: If the file cannot be read or holds fewer than length bytes
    """
    try:
        with open(path, "rb") as f:
            raw = f.read(length)
    except OSError as e:
        raise IdentityError(f"Cannot read node id from {path}: {e}") from e

    if len(raw) != length:
        raise IdentityError(
            f"Node id file {path} is too short: expected {length} bytes, got {len(raw)}"
        )

    return raw


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge overrides into a copy of defaults."""
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """
    Manages system configuration from an optional YAML file.

    Features:
    - Built-in defaults for every setting
    - Load and validate YAML config
    - Hot-reload validation on SIGHUP signal
    - Dot-notation access to nested values

    Example:
        >>> config = ConfigManager('/etc/data-transmit/config.yaml')
        >>> url = config.get('collector.url')
        >>> config.retry_interval_seconds()
        180

    Attributes:
        config_path (Optional[Path]): Path to the configuration file
        config (dict): Effective configuration (defaults + file)
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config manager and load configuration.

        Args:
            config_path: Path to YAML config file (None uses built-in defaults)

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML syntax is invalid
            ConfigValidationError: If validation fails
        """
        self.config_path = Path(config_path) if config_path else None
        self.config: Dict[str, Any] = {}
        signal.signal(signal.SIGHUP, self._handle_reload_signal)
        self.load_config()

    def load_config(self) -> Dict[str, Any]:
        """Load and validate configuration from YAML file over the defaults."""
        overrides: Dict[str, Any] = {}

        if self.config_path is not None:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Config file not found: {self.config_path}")

            with open(self.config_path, "r") as f:
                loaded = yaml.safe_load(f)

            if loaded is None:
                logger.warning(f"Config file {self.config_path} is empty, using defaults")
            elif not isinstance(loaded, dict):
                raise ConfigValidationError("Config file must contain a mapping at top level")
            else:
                overrides = loaded

        config = self._expand_env_vars(_merge(DEFAULT_CONFIG, overrides))
        self.validate_config(config)
        self.config = config

        if self.config_path is not None:
            logger.info(f"Loaded config from {self.config_path}")
        else:
            logger.info("No config file given, using built-in defaults")
        return self.config

    def reload_config(self) -> Dict[str, Any]:
        """
        Reload configuration from disk (SIGHUP handler).

        NOTE: Config changes require service restart - SIGHUP only validates.
        """
        logger.info("Reloading configuration...")

        try:
            old_config = copy.deepcopy(self.config)
            new_config = self.load_config()

            changed = [
                section
                for section in ("uploads_root", "node_id_file", "collector", "retry", "backlog", "failures")
                if old_config.get(section) != new_config.get(section)
            ]
            if changed:
                logger.warning(f"Config changes detected: {', '.join(changed)}")
                logger.warning("These changes will NOT take effect until service restart!")

            logger.info("Config validation successful (changes require restart)")
            return new_config

        except Exception as e:
            logger.error(f"Failed to reload config: {e}")
            logger.info("Keeping existing configuration")
            return self.config

    def _expand_env_vars(self, config: Any) -> Any:
        """Recursively expand ~ and ${VAR} in string configuration values."""
        if isinstance(config, dict):
            return {key: self._expand_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._expand_env_vars(item) for item in config]
        elif isinstance(config, str):
            return os.path.expandvars(os.path.expanduser(config))
        else:
            return config

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """Validate configuration schema and values."""
        for key in ("uploads_root", "node_id_file"):
            if not isinstance(config.get(key), str) or not config[key]:
                raise ConfigValidationError(f"{key} must be a non-empty string")

        for section in ("collector", "retry", "backlog", "failures"):
            if not isinstance(config.get(section), dict):
                raise ConfigValidationError(f"{section} must be a mapping")

        self._validate_collector_config(config["collector"])
        self._validate_retry_config(config["retry"])
        self._validate_backlog_config(config["backlog"], config["retry"])

        report_file = config["failures"].get("report_file")
        if not isinstance(report_file, str) or not report_file:
            raise ConfigValidationError("failures.report_file must be a non-empty string")

        logger.debug("Configuration validated successfully")
        return True

    def _validate_collector_config(self, collector: Dict[str, Any]) -> None:
        """Validate collector configuration section."""
        url = collector.get("url")
        if not isinstance(url, str) or not url:
            raise ConfigValidationError("collector.url must be a non-empty string")

        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigValidationError(f"collector.url must be an http(s) URL, got: {url}")

        build_id = collector.get("build_id")
        if not isinstance(build_id, str) or not build_id:
            raise ConfigValidationError("collector.build_id must be a non-empty string")

        if not isinstance(collector.get("verify_ssl"), bool):
            raise ConfigValidationError("collector.verify_ssl must be boolean")

        for key in ("connect_timeout_seconds", "read_timeout_seconds"):
            value = collector.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigValidationError(f"collector.{key} must be a positive number")

    def _validate_retry_config(self, retry: Dict[str, Any]) -> None:
        """Validate retry configuration section."""
        interval = retry.get("interval_minutes")
        if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
            raise ConfigValidationError("retry.interval_minutes must be a positive number")

        threshold = retry.get("threshold_seconds")
        if threshold is not None:
            if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or threshold < 0:
                raise ConfigValidationError("retry.threshold_seconds must be >= 0")

    def _validate_backlog_config(self, backlog: Dict[str, Any], retry: Dict[str, Any]) -> None:
        """Validate backlog bounding policy section."""
        policy = backlog.get("policy")
        if policy not in VALID_BACKLOG_POLICIES:
            raise ConfigValidationError(
                f"backlog.policy must be one of {VALID_BACKLOG_POLICIES}, got: {policy}"
            )

        quota = backlog.get("quota_bytes")
        if isinstance(quota, bool) or not isinstance(quota, int) or quota < 0:
            raise ConfigValidationError("backlog.quota_bytes must be an integer >= 0")

        if policy == "max_age":
            max_age = backlog.get("max_age_seconds")
            if isinstance(max_age, bool) or not isinstance(max_age, (int, float)) or max_age <= 0:
                raise ConfigValidationError("backlog.max_age_seconds must be a positive number")

            threshold = retry.get("threshold_seconds")
            if threshold is None:
                threshold = retry["interval_minutes"] * 60
            if max_age <= threshold:
                raise ConfigValidationError(
                    f"backlog.max_age_seconds ({max_age}) must be greater than "
                    f"the retry threshold ({threshold})"
                )

    def _handle_reload_signal(self, signum, frame):
        """Signal handler for SIGHUP."""
        self.reload_config()

    def get(self, key: str, default=None) -> Any:
        """
        Get configuration value by dot-separated key path.

        Examples:
            >>> config.get('collector.url')  # 'https://localhost:8001/upload/'
            >>> config.get('missing.key', 'default')  # 'default'
        """
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def retry_interval_seconds(self) -> float:
        """Sweeper period in seconds."""
        return self.get("retry.interval_minutes") * 60

    def retry_threshold_seconds(self) -> float:
        """Spool age a file needs before a sweep retries it (defaults to the period)."""
        threshold = self.get("retry.threshold_seconds")
        if threshold is None:
            return self.retry_interval_seconds()
        return threshold
