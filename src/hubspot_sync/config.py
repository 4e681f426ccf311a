"""
Configuration and logging setup.

Settings come from ~/.hubspot-sync/config.json, overridden by environment
variables (a .env file in the working directory is loaded first).
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from hubspot_sync.store import DEFAULT_STATE_DIR


class SyncSettings(BaseModel):
    """Validated runtime settings."""

    client_id: str | None = None
    client_secret: str | None = None
    tenant_file: Path = DEFAULT_STATE_DIR / "tenant.json"
    events_file: Path = DEFAULT_STATE_DIR / "events.jsonl"

    page_size: int = Field(100, ge=1, le=200)
    offset_ceiling: int = Field(9900, ge=1)
    batch_threshold: int = Field(2000, ge=1)
    max_in_flight_flushes: int = Field(4, ge=1)
    max_retries: int = Field(4, ge=0)
    base_delay_seconds: float = Field(5.0, ge=0)
    requests_per_interval: int = Field(100, ge=1)
    interval_seconds: float = Field(10.0, gt=0)

    log_level: str = "INFO"
    json_logs: bool = False

    @property
    def has_oauth_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)


ENV_MAPPINGS = {
    "client_id": "HUBSPOT_CID",
    "client_secret": "HUBSPOT_CS",
    "tenant_file": "HUBSPOT_SYNC_TENANT_FILE",
    "events_file": "HUBSPOT_SYNC_EVENTS_FILE",
    "page_size": "HUBSPOT_SYNC_PAGE_SIZE",
    "batch_threshold": "HUBSPOT_SYNC_BATCH_THRESHOLD",
    "max_retries": "HUBSPOT_SYNC_MAX_RETRIES",
    "base_delay_seconds": "HUBSPOT_SYNC_BASE_DELAY",
    "log_level": "HUBSPOT_SYNC_LOG_LEVEL",
    "json_logs": "HUBSPOT_SYNC_JSON_LOGS",
}


def get_config_path() -> Path:
    return Path(os.environ.get("HUBSPOT_SYNC_CONFIG", DEFAULT_STATE_DIR / "config.json"))


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """
    Load raw configuration values.

    Priority:
    1. Environment variables
    2. Config file values
    """
    config: dict[str, Any] = {}

    path = config_path or get_config_path()
    if path.exists():
        with open(path) as f:
            config = json.load(f)

    for config_key, env_var in ENV_MAPPINGS.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            continue
        if env_value.lower() in ("true", "yes"):
            config[config_key] = True
        elif env_value.lower() in ("false", "no"):
            config[config_key] = False
        else:
            config[config_key] = env_value

    return config


def load_settings(config_path: Path | None = None, dotenv: bool = True) -> SyncSettings:
    if dotenv:
        load_dotenv()
    return SyncSettings.model_validate(load_config(config_path))


def configure_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """
    Route structlog through stdlib logging.

    JSON output for production, colored console output otherwise.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", level=numeric_level, stream=sys.stderr)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
