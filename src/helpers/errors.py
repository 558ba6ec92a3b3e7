"""Error taxonomy of the cost exporter."""

from __future__ import annotations


class CostExporterError(Exception):
    """Base class for every error raised by the exporter."""


class ConfigError(CostExporterError):
    """Configuration file is missing, unreadable or invalid (fatal at startup)."""


class ClientInitError(CostExporterError):
    """Cost Explorer client could not be built for an account."""

    def __init__(self, account_id: str, message: str) -> None:
        super().__init__(f"account {account_id}: {message}")
        self.account_id = account_id


class FetchError(CostExporterError):
    """A cost query failed (transport, API or malformed amount)."""


class PublishInconsistencyError(CostExporterError):
    """A realized label tuple does not fit the metric's label schema."""


class RefreshError(CostExporterError):
    """One or more accounts failed during a refresh cycle.

    The snapshot has already been published for the accounts that succeeded;
    ``failed`` maps each failed account id to its error message.
    """

    def __init__(self, failed: dict[str, str]) -> None:
        super().__init__(f"{len(failed)} accounts failed to fetch")
        self.failed = failed
