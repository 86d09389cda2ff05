"""Realtime service configuration.

Loads settings from a single YAML file (``lms_realtime.settings.yaml``)
into nested pydantic models. Missing files are not an error: every field
has a default, so a bare checkout runs with an in-memory store.

Example settings file::

    server:
      port: 8080
    logging:
      level: debug
    realtime:
      echo_chat_to_sender: false
      reject_unknown_paths: true
    storage:
      backend: duckdb
      db_path: data/chat_messages.duckdb
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("lms_realtime.settings.yaml")

# DuckDB's special path for a non-persistent database; never resolved
IN_MEMORY_DB = ":memory:"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8000


class LoggingConfig(BaseModel):
    level: str = "info"


class RealtimeConfig(BaseModel):
    """Fan-out behaviour for course channels and notification bindings."""
    echo_chat_to_sender:  bool = False
    reject_unknown_paths: bool = True
    user_id_param:        str  = "userId"
    max_body_length:      int  = Field(default=4000, gt=0)


class StorageConfig(BaseModel):
    backend: Literal["memory", "duckdb"] = "memory"
    db_path: str = "chat_messages.duckdb"


class AppConfig(BaseModel):
    server:   ServerConfig   = Field(default_factory=ServerConfig)
    logging:  LoggingConfig  = Field(default_factory=LoggingConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    storage:  StorageConfig  = Field(default_factory=StorageConfig)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load *settings_path* (or the default settings file) into an AppConfig.

    A relative ``storage.db_path`` is resolved against the directory that
    holds the settings file.
    """
    path = Path(settings_path) if settings_path is not None else SETTINGS_FILE
    data = _load_yaml(path)

    config = AppConfig(**data)

    db_path = Path(config.storage.db_path)
    if (
        (data.get("storage") or {}).get("db_path")
        and config.storage.db_path != IN_MEMORY_DB
        and not db_path.is_absolute()
    ):
        config.storage.db_path = str(path.resolve().parent / db_path)

    logger.info(
        "Config loaded (server=%s:%s, storage=%s, reject_unknown_paths=%s)",
        config.server.host,
        config.server.port,
        config.storage.backend,
        config.realtime.reject_unknown_paths,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Replace the process-wide config (``None`` forces a reload)."""
    global _config
    _config = config
