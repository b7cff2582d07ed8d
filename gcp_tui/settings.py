"""
Persisted operator choices and the rules for the effective startup scope.
"""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel, ValidationError

from .auth import PROJECT_ENV_VARS
from .helpers import DEFAULT_RESOURCE, DEFAULT_ZONE

logger = logging.getLogger(__name__)

APP_DIR_NAME = "tgcp"
CONFIG_FILENAME = "config.yaml"
LOG_FILENAME = "tgcp.log"
ZONE_ENV_VAR = "CLOUDSDK_COMPUTE_ZONE"


def config_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    environ = os.environ if environ is None else environ
    base = environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / APP_DIR_NAME


def config_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    return config_dir(environ) / CONFIG_FILENAME


def log_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    return config_dir(environ) / LOG_FILENAME


class UserConfig(BaseModel):
    """Last-used project, zone and resource key."""

    project: Optional[str] = None
    zone: Optional[str] = None
    last_resource: Optional[str] = None

    @classmethod
    def load(cls, path: Path) -> "UserConfig":
        """
        Reads the config file. A missing, unreadable or malformed file yields
        the defaults.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            return cls()
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not read config %s: %s", path, e)
            return cls()

        if data is None:
            return cls()
        if not isinstance(data, dict):
            logger.warning("Ignoring config %s: expected a mapping", path)
            return cls()
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring invalid config %s: %s", path, e)
            return cls()

    def save(self, path: Path) -> bool:
        """Writes the config file. Returns False, after logging, if that fails."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                yaml.safe_dump(self.model_dump(exclude_none=True), f, sort_keys=True)
        except OSError as e:
            logger.warning("Could not save config %s: %s", path, e)
            return False
        logger.debug("Saved config to %s", path)
        return True


def effective_project(
    cli_project: Optional[str],
    config: UserConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """
    CLI flag, then the project environment variables, then the saved config.
    Returns None when the credentials or metadata server must be asked.
    """
    if cli_project:
        return cli_project
    environ = os.environ if environ is None else environ
    for name in PROJECT_ENV_VARS:
        if environ.get(name):
            return environ[name]
    return config.project or None


def effective_zone(
    cli_zone: Optional[str],
    config: UserConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    if cli_zone:
        return cli_zone
    environ = os.environ if environ is None else environ
    if environ.get(ZONE_ENV_VAR):
        return environ[ZONE_ENV_VAR]
    return config.zone or DEFAULT_ZONE


def initial_resource(config: UserConfig, known_keys) -> str:
    if config.last_resource and config.last_resource in known_keys:
        return config.last_resource
    return DEFAULT_RESOURCE
