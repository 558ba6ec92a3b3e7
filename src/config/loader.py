"""Load the YAML configuration file and apply environment overrides."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from config.exporter_config import ExporterConfig
from helpers.constants import (
    APP_LOGGER,
    CONFIG_PATH,
    EXPORTER_PORT_OVERRIDE,
    POLLING_INTERVAL_OVERRIDE,
)
from helpers.errors import ConfigError


def _error_path(loc: tuple) -> str:
    path = "config"
    for part in loc:
        path += f"[{part}]" if isinstance(part, int) else f".{part}"
    return path


def parse_config(data: Any) -> ExporterConfig:
    """Validate a decoded configuration mapping.

    Every pydantic error is reported as ``<path>: <message>`` inside one
    :class:`ConfigError`.
    """
    try:
        return ExporterConfig.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{_error_path(err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigError(f"invalid config: {problems}") from exc


def load_config(
    path: str | None = None,
    port_override: str | None = None,
    interval_override: str | None = None,
) -> ExporterConfig:
    """Read, override and validate the configuration.

    ``EXPORTER_PORT`` / ``POLLING_INTERVAL`` env variables win over the file.
    """
    config_path = Path(path or CONFIG_PATH)
    try:
        with config_path.open(encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except OSError as exc:
        raise ConfigError(f"reading config {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"parsing config {config_path}: {exc}") from exc

    if raw is None:
        raise ConfigError(f"config {config_path} is empty")
    if not isinstance(raw, dict):
        raise ConfigError(f"config {config_path} must be a mapping")

    port = EXPORTER_PORT_OVERRIDE if port_override is None else port_override
    interval = POLLING_INTERVAL_OVERRIDE if interval_override is None else interval_override
    if port:
        raw["exporter_port"] = port
    if interval:
        raw["polling_interval"] = interval

    cfg = parse_config(raw)
    APP_LOGGER.info(msg="Configuration loaded", path=str(config_path), **cfg.as_dict())
    return cfg
