"""Configuration loading and management for webjobs."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from loguru import logger

from webjobs.models import WebJobsConfig

# Default paths
DEFAULT_CONFIG_DIR = Path.home() / ".webjobs"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "webjobs.yaml"

# Environment overrides for the filesystem roots
ENV_JOBS_ROOT = "WEBJOBS_ROOT"
ENV_DATA_ROOT = "WEBJOBS_DATA"


class ConfigError(Exception):
    """Configuration error."""

    pass


def load_yaml_file(path: Path) -> dict:
    """Load a YAML file."""
    if not path.exists():
        return {}

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config file {path}: expected a mapping, got {type(data).__name__}")

    return data


def _apply_env_overrides(config: WebJobsConfig) -> WebJobsConfig:
    jobs_root = os.environ.get(ENV_JOBS_ROOT)
    data_root = os.environ.get(ENV_DATA_ROOT)
    if jobs_root:
        config.paths.jobs_root = jobs_root
    if data_root:
        config.paths.data_root = data_root
    return config


def load_config(config_path: Path | None = None) -> WebJobsConfig:
    """Load the main webjobs configuration."""
    path = config_path or DEFAULT_CONFIG_FILE

    if not path.exists():
        logger.debug(f"Config file not found at {path}, using defaults")
        return _apply_env_overrides(WebJobsConfig())

    try:
        data = load_yaml_file(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    try:
        config = WebJobsConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e

    logger.debug(f"Loaded config from {path}")
    return _apply_env_overrides(config)


def create_default_config(config_path: Path | None = None) -> Path:
    """Write a default configuration file if none exists."""
    path = config_path or DEFAULT_CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)

    if not path.exists():
        config = WebJobsConfig()
        with open(path, "w") as f:
            yaml.safe_dump(
                config.model_dump(mode="json"),
                f,
                default_flow_style=False,
                sort_keys=False,
            )
        logger.info(f"Created default config at {path}")

    config = load_config(path)
    config.paths.get_jobs_root().joinpath("continuous").mkdir(parents=True, exist_ok=True)
    config.paths.get_data_root().mkdir(parents=True, exist_ok=True)
    return path


class Settings:
    """Live settings backed by the config file.

    Each getter re-reads the file, so values such as the restart interval can
    be changed without restarting the supervisor process. An unreadable file
    falls back to the last good configuration. Settings built from a config
    object alone never reload.
    """

    def __init__(self, config_path: Path | None = None, config: WebJobsConfig | None = None):
        self._config_path = config_path
        self._reload = config is None or config_path is not None
        self._config = config or load_config(config_path)

    def _current(self) -> WebJobsConfig:
        if not self._reload:
            return self._config
        try:
            self._config = load_config(self._config_path)
        except ConfigError as e:
            logger.warning(f"Keeping previous settings: {e}")
        return self._config

    def get_restart_interval(self) -> float:
        """Seconds to wait before restarting a job that went down."""
        return self._current().supervisor.restart_interval
