# common/config.py
from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml

from common.constants import (
    DEFAULT_HISTOGRAM_BUCKETS,
    DEFAULT_PROGRESS_INTERVAL,
    DEFAULT_RETRY_ATTEMPTS,
    ROOM_PLACEMENT_RETRIES,
)

log = structlog.get_logger()

# --- Paths relative to the project root ---
PROJECT_DIR = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_DIR / "config"
CONFIG_FILE = CONFIG_DIR / "config.yaml"


def load_yaml_config(config_path: Path, config_name: str) -> Dict[str, Any]:
    """Loads a generic YAML configuration file."""
    if not config_path.is_file():
        log.error(f"{config_name} config file not found", path=str(config_path))
        raise FileNotFoundError(
            f"{config_name} configuration file not found: {config_path}"
        )
    try:
        with config_path.open("r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f)
        if config_data is None:
            log.warning(f"{config_name} config file is empty.", path=str(config_path))
            return {}
        log.info(f"{config_name} config loaded", path=str(config_path))
        return config_data
    except yaml.YAMLError as e:
        log.error(
            f"Error parsing YAML for {config_name}",
            path=str(config_path),
            error=str(e),
            exc_info=True,
        )
        raise


@dataclass(frozen=True)
class EngineSettings:
    """Tunables read from the ``engine`` section of ``config.yaml``."""

    workers: Optional[int] = None
    histogram_buckets: int = DEFAULT_HISTOGRAM_BUCKETS
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL
    placement_retries: int = ROOM_PLACEMENT_RETRIES
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineSettings":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            log.warning("Ignoring unknown engine settings", keys=unknown)
        values = {k: v for k, v in data.items() if k in known}
        settings = cls(**values)
        if settings.histogram_buckets < 1:
            raise ValueError("histogram_buckets must be >= 1")
        if settings.progress_interval < 1:
            raise ValueError("progress_interval must be >= 1")
        if settings.workers is not None and settings.workers < 1:
            raise ValueError("workers must be >= 1 when set")
        return settings

    @property
    def logging_level(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO


def load_settings(config_path: Path = CONFIG_FILE) -> EngineSettings:
    """Read engine settings, falling back to defaults when no file exists."""
    if not config_path.is_file():
        log.debug("No engine config file; using defaults", path=str(config_path))
        return EngineSettings()
    config = load_yaml_config(config_path, "Engine")
    return EngineSettings.from_dict(config.get("engine", {}) or {})


__all__ = ["EngineSettings", "load_settings", "load_yaml_config", "CONFIG_FILE"]
