from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from connectors.base import (
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_TIMEOUT_SECONDS,
    SUPPORTED_METHODS,
    ConnectorConfig,
    DeliveryMode,
)
from core.errors import ConfigError
from core.log_format import LOG_FORMATS

DEFAULT_CONFIG_PATH = "./config.yaml"
TOKEN_ENV_VAR = "DYNATRACE_API_TOKEN"

_ENV_PLACEHOLDER = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


@dataclass(frozen=True)
class SourceSettings:
    base_url: str
    tenant: str
    api_token: str
    problem_selector: str | None = None
    page_size: int | None = None


@dataclass(frozen=True)
class Settings:
    source: SourceSettings
    interval_seconds: int
    database_path: str
    connectors: list[ConnectorConfig] = field(default_factory=list)
    log_level: str = "INFO"
    log_format: str = "pretty"


def _section(data: dict[str, Any], key: str, required: bool = True) -> dict[str, Any]:
    value = data.get(key)
    if value is None:
        if required:
            raise ConfigError(f"Missing '{key}' section")
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return value


def _expand_env(value: str) -> str:
    """Replace a whole-value ``${VAR}`` with the environment value, if set."""
    m = _ENV_PLACEHOLDER.match(value)
    if m and m.group(1) in os.environ:
        return os.environ[m.group(1)]
    return value


def _parse_connector(raw: Any, index: int) -> ConnectorConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"Connector #{index} must be a mapping")

    name = str(raw.get("name") or "").strip()
    if not name:
        raise ConfigError("Connector name cannot be empty")

    url = str(raw.get("url") or "")
    if not url:
        raise ConfigError(f"Connector '{name}' URL cannot be empty")
    if not url.startswith(("http://", "https://")):
        raise ConfigError(f"Connector '{name}' URL must start with http:// or https://")

    method = str(raw.get("method", "POST")).upper()
    if method not in SUPPORTED_METHODS:
        raise ConfigError(f"Connector '{name}' method must be one of {', '.join(SUPPORTED_METHODS)}")

    headers = raw.get("headers") or {}
    if not isinstance(headers, dict):
        raise ConfigError(f"Connector '{name}' headers must be a mapping")
    headers = {str(k): _expand_env(str(v)) for k, v in headers.items()}

    try:
        timeout = float(raw.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS))
        attempts = int(raw.get("retry_attempts", DEFAULT_RETRY_ATTEMPTS))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Connector '{name}' has a non-numeric setting", cause=exc) from exc
    if timeout <= 0:
        raise ConfigError(f"Connector '{name}' timeout_seconds must be greater than 0")
    if attempts < 1:
        raise ConfigError(f"Connector '{name}' retry_attempts must be at least 1")

    verify_ssl = raw.get("verify_ssl", True)
    batch_mode = raw.get("batch_mode", False)
    for key, value in (("verify_ssl", verify_ssl), ("batch_mode", batch_mode)):
        if not isinstance(value, bool):
            raise ConfigError(f"Connector '{name}' {key} must be true or false, got {value!r}")
    mode = DeliveryMode.BATCH if batch_mode else DeliveryMode.INDIVIDUAL

    return ConnectorConfig(
        name=name,
        url=url,
        method=method,
        headers=headers,
        timeout_seconds=timeout,
        retry_attempts=attempts,
        verify_ssl=verify_ssl,
        mode=mode,
    )


def parse_settings(data: dict[str, Any], api_token: str | None) -> Settings:
    """Validate a parsed YAML document and build ``Settings``."""
    source = _section(data, "dynatrace")
    polling = _section(data, "polling")
    database = _section(data, "database")
    logging_cfg = _section(data, "logging", required=False)

    base_url = str(source.get("base_url") or "")
    tenant = str(source.get("tenant") or "")
    if not base_url:
        raise ConfigError("Dynatrace base_url cannot be empty")
    if not tenant:
        raise ConfigError("Dynatrace tenant cannot be empty")
    if not api_token:
        raise ConfigError(f"{TOKEN_ENV_VAR} environment variable is required")

    page_size = source.get("page_size")
    try:
        interval = int(polling.get("interval_seconds", 0))
        page_size = int(page_size) if page_size is not None else None
    except (TypeError, ValueError) as exc:
        raise ConfigError("polling.interval_seconds and page_size must be integers", cause=exc) from exc
    if interval <= 0:
        raise ConfigError("polling.interval_seconds must be greater than 0")

    db_path = str(database.get("path") or "")
    if not db_path:
        raise ConfigError("database.path cannot be empty")

    raw_connectors = data.get("connectors") or []
    if not isinstance(raw_connectors, list) or not raw_connectors:
        raise ConfigError("At least one connector must be configured")
    connectors = [_parse_connector(raw, i) for i, raw in enumerate(raw_connectors)]

    log_format = str(logging_cfg.get("format", "pretty")).lower()
    if log_format not in LOG_FORMATS:
        raise ConfigError(f"logging.format must be one of {', '.join(LOG_FORMATS)}, got '{log_format}'")

    seen: set[str] = set()
    for c in connectors:
        if c.name in seen:
            raise ConfigError(f"Duplicate connector name '{c.name}'")
        seen.add(c.name)

    return Settings(
        source=SourceSettings(
            base_url=base_url,
            tenant=tenant,
            api_token=api_token,
            problem_selector=source.get("problem_selector") or None,
            page_size=page_size,
        ),
        interval_seconds=interval,
        database_path=db_path,
        connectors=connectors,
        log_level=str(logging_cfg.get("level", "INFO")).upper(),
        log_format=log_format,
    )


def load_settings(path: str | os.PathLike[str]) -> Settings:
    """Load and validate settings from a YAML file.

    The API token is read from the environment; a local ``.env`` file is
    loaded first if present.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}. "
            "Create one from config.example.yaml or pass --config."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read config file '{config_path}'", cause=exc) from exc
    if not isinstance(data, dict):
        raise ConfigError("Config YAML must be a mapping")

    load_dotenv()
    return parse_settings(data, os.getenv(TOKEN_ENV_VAR))
