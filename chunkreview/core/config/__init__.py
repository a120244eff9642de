"""Configuration access for chunkreview."""

from .config_loader import get_config_path, get_config_value, load_config, reload_config

__all__ = ["get_config_path", "get_config_value", "load_config", "reload_config"]
