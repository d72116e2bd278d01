"""
Configuration loader — reads nixdesk.yml into a ProvisionConfig.

The config file is optional: no file means stock defaults. Lookup order:

    --config PATH  >  $NIXDESK_CONFIG  >  nixdesk.yml walking up from cwd
                   >  ~/.config/nixdesk/nixdesk.yml
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from nixdesk.core.errors import ProvisionError
from nixdesk.core.models.config import ProvisionConfig

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "nixdesk.yml"
USER_CONFIG_PATH = Path("~/.config/nixdesk") / CONFIG_FILE


class ConfigError(ProvisionError):
    """Raised when configuration is invalid or unreadable."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Locate nixdesk.yml.

    Args:
        start_dir: Directory to start the upward search from (default: cwd).

    Returns:
        Path to the config file, or None if there is none.
    """
    env_path = os.environ.get("NIXDESK_CONFIG")
    if env_path:
        return Path(env_path)

    current = (start_dir or Path.cwd()).resolve()
    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    user_config = USER_CONFIG_PATH.expanduser()
    if user_config.is_file():
        return user_config
    return None


def load_config(path: Path | None = None) -> ProvisionConfig:
    """Load and validate configuration.

    Args:
        path: Explicit config path. If None, searches (see module docs);
            finding nothing yields the defaults.

    Returns:
        Validated ProvisionConfig.

    Raises:
        ConfigError: If an explicit file is missing, or any file is invalid.
    """
    if path is None:
        path = find_config_file()
        if path is None:
            logger.debug("No %s found — using defaults", CONFIG_FILE)
            return ProvisionConfig()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        config = ProvisionConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Loaded config from %s", path)
    return config
