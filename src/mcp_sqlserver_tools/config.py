"""
Startup configuration - appsettings.json with environment overrides
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError

log = logging.getLogger(__name__)

CONFIG_FILE_NAME = "appsettings.json"

ENV_CONNECTION_STRING = "MCP_SQLSERVER_CONNECTION_STRING"
ENV_DEBUG = "MCP_SQLSERVER_DEBUG"
ENV_LOG_PATH = "MCP_SQLSERVER_LOG_PATH"


def _parse_flag(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


class ConnectionStrings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    default_connection: Optional[str] = Field(default=None, alias="DefaultConnection")


class AppSettings(BaseModel):
    """Settings read from appsettings.json"""

    model_config = ConfigDict(populate_by_name=True)

    connection_strings: ConnectionStrings = Field(default_factory=ConnectionStrings, alias="ConnectionStrings")
    debug_mode: bool = Field(default=False, alias="DebugMode")
    log_path: Optional[Path] = Field(default=None, alias="LogPath")

    @field_validator("debug_mode", mode="before")
    @classmethod
    def _debug_flag(cls, value: Any) -> bool:
        return _parse_flag(value)

    @field_validator("log_path", mode="before")
    @classmethod
    def _empty_log_path(cls, value: Any) -> Any:
        return value or None

    @property
    def connection_string(self) -> Optional[str]:
        return self.connection_strings.default_connection


def load_settings(config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> AppSettings:
    """Load settings, raising ConfigError when no usable connection string is found"""
    environ = os.environ if environ is None else environ
    path = Path(config_path) if config_path else Path.cwd() / CONFIG_FILE_NAME

    data: Any = {}
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ConfigError(f"Could not read configuration file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {path} must contain a JSON object")
        log.info("configuration loaded from %s", path)
    elif not environ.get(ENV_CONNECTION_STRING):
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        settings = AppSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    updates = {}
    if environ.get(ENV_CONNECTION_STRING):
        updates["connection_strings"] = ConnectionStrings(default_connection=environ[ENV_CONNECTION_STRING])
    if ENV_DEBUG in environ:
        updates["debug_mode"] = _parse_flag(environ[ENV_DEBUG])
    if environ.get(ENV_LOG_PATH):
        updates["log_path"] = Path(environ[ENV_LOG_PATH])
    if updates:
        settings = settings.model_copy(update=updates)

    if not settings.connection_string:
        raise ConfigError(f"Connection string 'DefaultConnection' not found in {path.name}")

    if settings.log_path is None:
        # fall back to the directory holding the config file
        settings = settings.model_copy(update={"log_path": path.resolve().parent})

    return settings
