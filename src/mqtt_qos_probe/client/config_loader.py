"""
Configuration Loader.

Responsible for reading the YAML configuration file. Every section is
optional: components fall back to their built-in defaults.
"""
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Union

from mqtt_qos_probe.client.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


def load_config(config_path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Loads the YAML configuration file.
    """
    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Config file not found at {path}. Using defaults.")
        return {}

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to parse config file: {e}")
        raise ConfigError(f"Cannot read {path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"{path} must hold a mapping at the top level, got {type(config).__name__}")

    logger.info(f"Loaded configuration from {path}")
    return config
