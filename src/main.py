"""Entry point: load config, build the collector, serve until SIGINT/SIGTERM."""

import sys

import uvicorn

from config.loader import load_config
from fastapi_app.app import create_app
from helpers.constants import APP_LOGGER, SHUTDOWN_GRACE_SECONDS
from helpers.errors import ClientInitError, ConfigError
from services.cost_collector import CostCollector


def main() -> int:
    try:
        config = load_config()
    except ConfigError as exc:
        APP_LOGGER.error(msg="Failed to load config file", error=str(exc))
        return 1

    try:
        collector = CostCollector(config)
    except ClientInitError as exc:
        APP_LOGGER.error(msg="Failed to create exporter", error=str(exc))
        return 1

    # uvicorn handles SIGINT/SIGTERM and drains requests for the grace period
    uvicorn.run(
        create_app(collector),
        host="0.0.0.0",
        port=config.exporter_port,
        timeout_graceful_shutdown=SHUTDOWN_GRACE_SECONDS,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
