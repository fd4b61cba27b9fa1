"""File logging for long-running commands (``serve``, ``peer``)."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

_sinks: dict[str, tuple[int, Path]] = {}


def get_log_dir() -> Path:
    return Path.home() / ".brprelay" / "logs"


def ensure_rotating_log_file(name: str, level: str = "INFO") -> Path:
    """Attach ``~/.brprelay/logs/<name>.log`` to loguru once per process and return its path."""
    if name in _sinks:
        return _sinks[name][1]
    log_path = get_log_dir() / f"{name}.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    sink_id = logger.add(
        str(log_path),
        level=level,
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        encoding="utf-8",
        backtrace=False,
        diagnose=False,
    )
    _sinks[name] = (sink_id, log_path)
    return log_path
