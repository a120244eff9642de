"""YAML configuration loader.

Reads config/chunkreview.yaml (or the file named by CHUNKREVIEW_CONFIG)
once and serves nested values by key path. A missing file is not an
error: callers always pass a default.
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CHUNKREVIEW_CONFIG"


def get_config_path() -> Path:
    """Path of the active config file."""
    override = os.getenv(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return Path(__file__).parent.parent.parent.parent / "config" / "chunkreview.yaml"


@lru_cache(maxsize=1)
def load_config() -> Dict[str, Any]:
    """Load and cache the YAML config as a dict ({} if the file is absent)."""
    config_path = get_config_path()
    if not config_path.exists():
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")
    logger.debug(f"Loaded config from {config_path}")
    return data


def reload_config() -> None:
    """Drop the cached config so the next access re-reads the file."""
    load_config.cache_clear()


def get_config_value(*keys: str, default: Any = None) -> Any:
    """Read a nested config value, e.g. get_config_value("chunkreview", "chunked_analysis", "max_retries")."""
    current: Any = load_config()
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current
