"""Process-wide config cache.

``brprelay serve`` reads the config before starting uvicorn and the app
lifespan reads it again; both must get the same object unless a reload is
asked for.
"""

from __future__ import annotations

import threading
from pathlib import Path

from brprelay.config.loader import get_config_path, load_config
from brprelay.config.schema import Config

_lock = threading.RLock()
_configs: dict[Path, Config] = {}


def _resolve(config_path: Path | None) -> Path:
    return Path(config_path or get_config_path()).expanduser().resolve()


def get_config(*, config_path: Path | None = None, force_reload: bool = False) -> Config:
    """Return the cached config for ``config_path`` (default file), loading it on first use."""
    path = _resolve(config_path)
    with _lock:
        config = None if force_reload else _configs.get(path)
        if config is None:
            config = _configs[path] = load_config(path)
        return config


def clear_config_cache(*, config_path: Path | None = None) -> None:
    """Forget one cached file, or every file when no path is given."""
    with _lock:
        if config_path is None:
            _configs.clear()
        else:
            _configs.pop(_resolve(config_path), None)
