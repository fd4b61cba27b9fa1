"""Configuration module for brprelay."""

from brprelay.config.loader import load_config, save_config, get_config_path
from brprelay.config.schema import Config, PeerConfig, RelayConfig, ServerConfig, DEFAULT_RELAY_PATH
from brprelay.config.access import get_config, clear_config_cache

__all__ = [
    "Config",
    "ServerConfig",
    "RelayConfig",
    "PeerConfig",
    "DEFAULT_RELAY_PATH",
    "load_config",
    "save_config",
    "get_config_path",
    "get_config",
    "clear_config_cache",
]
