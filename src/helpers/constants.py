"""Manage all constants / shared ressources."""

import os

from helpers.logger import ExporterLogger

# Generic Global Env Variables
TRUE_VALUES = ("true", "1", "yes")

# Debug Mode / Level for the Logger
DEBUG_MODE = os.environ.get("DEBUG_MODE", default="False").lower() in TRUE_VALUES
APP_LOGGER = ExporterLogger(debug=DEBUG_MODE)
APP_LOGGER.debug(msg="Logger Up&Ready!")

# Path of the YAML configuration (metrics + target accounts)
CONFIG_PATH = os.environ.get("CONFIG_PATH", default="config.yaml")

# Optional overrides of the YAML values (empty = use the file)
EXPORTER_PORT_OVERRIDE = os.environ.get("EXPORTER_PORT", default="")
POLLING_INTERVAL_OVERRIDE = os.environ.get("POLLING_INTERVAL", default="")

# Defaults when the YAML file does not set them
DEFAULT_EXPORTER_PORT = 9090
DEFAULT_POLLING_INTERVAL_SECONDS = 28800

# Cost Explorer is a global service served from us-east-1
AWS_REGION = os.environ.get("AWS_REGION", default="us-east-1")
ROLE_SESSION_NAME = os.environ.get("ROLE_SESSION_NAME", default="aws-cost-exporter")

# Seconds given to in-flight HTTP requests when the server stops
SHUTDOWN_GRACE_SECONDS = int(os.environ.get("SHUTDOWN_GRACE_SECONDS", default=10))

# Exclude accounts whose role cannot be assumed instead of aborting startup
SKIP_UNREACHABLE_ACCOUNTS = (
    os.environ.get("SKIP_UNREACHABLE_ACCOUNTS", default="False").lower() in TRUE_VALUES
)

# Fixed label names and values
ACCOUNT_ID_LABEL = "account_id"
CHARGE_TYPE_LABEL = "charge_type"
DEFAULT_RECORD_TYPES = ["Usage"]

# Internal metrics
INTERNAL_METRIC_PREFIX = "aws_cost_exporter_"
SCRAPE_ERRORS_METRIC = "aws_cost_exporter_scrape_errors"
SCRAPE_DURATION_METRIC = "aws_cost_exporter_scrape_duration_seconds"
