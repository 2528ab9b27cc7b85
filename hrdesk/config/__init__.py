"""Configuration module for hrdesk."""

from hrdesk.config.loader import get_config_path, load_config
from hrdesk.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
