"""Core cost-refresh orchestrator.

This module ties together:
  • Cost Explorer (per-account billing queries)
  • Label schemas (fixed label layout per gauge)
  • The metric snapshot (what ``/metrics`` exposes)

A refresh fetches every account concurrently, then clears and repopulates the
snapshot in one locked step.  An account that fails is left out of that
refresh without affecting the others.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from prometheus_client import CollectorRegistry, Counter, Histogram

from config.exporter_config import AccountConfig, ExporterConfig, MetricConfig
from helpers.constants import (
    APP_LOGGER,
    SCRAPE_DURATION_METRIC,
    SCRAPE_ERRORS_METRIC,
    SKIP_UNREACHABLE_ACCOUNTS,
)
from helpers.errors import ClientInitError, FetchError, PublishInconsistencyError, RefreshError
from helpers.utils import now_utc, period_for
from services.label_schema import LabelSchema
from services.snapshot import MetricSnapshot, Rows
from wrappers.cost_explorer import CostExplorerWrapper, CostQuery, CostResult

ClientFactory = Callable[[AccountConfig], CostExplorerWrapper]
LOGGER = APP_LOGGER.bind(component="collector")


def build_query(metric: MetricConfig) -> CostQuery:
    """Cost Explorer query for one metric, with a window relative to now."""
    group_by: list[dict[str, str]] = []
    if metric.grouped:
        group_by = [{"Type": g.type, "Key": g.key} for g in metric.group_by.groups]
    return CostQuery(
        period=period_for(metric.granularity, metric.data_delay_days),
        granularity=metric.granularity,
        metric_type=metric.metric_type,
        record_types=metric.record_types,
        group_by=group_by,
        tag_filters=metric.tag_filters,
    )


@dataclass
class AccountOutcome:
    """Result-or-error of one account task."""

    account: AccountConfig
    results: dict[str, CostResult] = field(default_factory=dict)
    error: FetchError | None = None


@dataclass
class RefreshSummary:
    started_at: str = ""
    duration_seconds: float = 0.0
    refreshed_accounts: list[str] = field(default_factory=list)
    failed_accounts: dict[str, str] = field(default_factory=dict)
    published_rows: int = 0
    skipped_rows: int = 0
    skipped: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "duration_seconds": round(self.duration_seconds, 3),
            "refreshed_accounts": list(self.refreshed_accounts),
            "failed_accounts": dict(self.failed_accounts),
            "published_rows": self.published_rows,
            "skipped_rows": self.skipped_rows,
            "skipped": self.skipped,
        }


class CostCollector:
    """Fetches costs for every account and republishes them as gauges."""

    def __init__(
        self,
        config: ExporterConfig,
        client_factory: ClientFactory | None = None,
        skip_unreachable_accounts: bool | None = None,
    ) -> None:
        self.config = config
        self.registry = CollectorRegistry()
        self.scrape_errors = Counter(
            SCRAPE_ERRORS_METRIC,
            "Total number of scrape errors",
            registry=self.registry,
        )
        self.scrape_duration = Histogram(
            SCRAPE_DURATION_METRIC,
            "Duration of cost data scraping",
            registry=self.registry,
        )

        sample = config.target_aws_accounts[0]
        self.schemas = {
            m.metric_name: LabelSchema.for_metric(sample, m) for m in config.metrics
        }
        for account in config.target_aws_accounts[1:]:
            if not self.schemas[config.metrics[0].metric_name].matches(account):
                LOGGER.warning(
                    msg="Account label keys differ from the first account; its rows will be skipped",
                    account_id=account.account_id,
                    label_keys=account.sorted_label_keys(),
                    expected=sample.sorted_label_keys(),
                )

        self.snapshot = MetricSnapshot(self.schemas.values())
        self.registry.register(self.snapshot)

        skip = SKIP_UNREACHABLE_ACCOUNTS if skip_unreachable_accounts is None else skip_unreachable_accounts
        factory = client_factory or CostExplorerWrapper
        self.clients: dict[str, CostExplorerWrapper] = {}
        for account in config.target_aws_accounts:
            try:
                self.clients[account.account_id] = factory(account)
            except ClientInitError as exc:
                if not skip:
                    raise
                LOGGER.error(
                    msg="Account excluded: Cost Explorer client unavailable",
                    account_id=account.account_id,
                    error=str(exc),
                )
        if not self.clients:
            raise ClientInitError("*", "no account could be initialised")

        self._refresh_lock = asyncio.Lock()
        self.last_refresh: RefreshSummary | None = None

        LOGGER.info(
            msg="CostCollector initialised.",
            metrics=len(self.schemas),
            accounts=len(self.clients),
        )

    @property
    def accounts(self) -> list[AccountConfig]:
        return [a for a in self.config.target_aws_accounts if a.account_id in self.clients]

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_lock.locked()

    # ── public entry point ────────────────────────────────────────────────

    async def refresh(self) -> RefreshSummary:
        """Fetch every account, then replace the snapshot.

        Raises :class:`RefreshError` (after publishing) when some accounts
        failed.  A call made while another refresh runs is skipped.
        """
        if self._refresh_lock.locked():
            LOGGER.warning(msg="Refresh already in progress, skipping")
            return RefreshSummary(started_at=now_utc().isoformat(), skipped=True)

        async with self._refresh_lock:
            summary = RefreshSummary(started_at=now_utc().isoformat())
            start = time.perf_counter()
            with self.scrape_duration.time():
                outcomes = await self._fetch_all()
                staged, skipped_rows = self._stage(o for o in outcomes if o.error is None)
                summary.published_rows = self.snapshot.replace(staged)
            summary.skipped_rows = skipped_rows
            summary.duration_seconds = time.perf_counter() - start

            for outcome in outcomes:
                account_id = outcome.account.account_id
                if outcome.error is None:
                    summary.refreshed_accounts.append(account_id)
                else:
                    summary.failed_accounts[account_id] = str(outcome.error)

            self.last_refresh = summary
            LOGGER.info(msg="Refresh complete", **summary.as_dict())

        if summary.failed_accounts:
            raise RefreshError(summary.failed_accounts)
        return summary

    # ── fetch ─────────────────────────────────────────────────────────────

    async def _fetch_all(self) -> list[AccountOutcome]:
        accounts = self.accounts
        gathered = await asyncio.gather(
            *(asyncio.to_thread(self._fetch_account_costs, a) for a in accounts),
            return_exceptions=True,
        )
        outcomes: list[AccountOutcome] = []
        for account, item in zip(accounts, gathered):
            if not isinstance(item, BaseException):
                outcomes.append(AccountOutcome(account=account, results=item))
                continue
            # cancellation and interpreter exits still abort the cycle
            if not isinstance(item, Exception):
                raise item
            error = item
            if not isinstance(error, FetchError):
                error = FetchError(f"unexpected error: {item!r}")
                error.__cause__ = item
            LOGGER.error(
                msg="Failed to fetch costs",
                account_id=account.account_id,
                error=str(error),
            )
            self.scrape_errors.inc()
            outcomes.append(AccountOutcome(account=account, error=error))
        return outcomes

    def _fetch_account_costs(self, account: AccountConfig) -> dict[str, CostResult]:
        """Run every metric query for one account; the first failure aborts it."""
        client = self.clients[account.account_id]
        results: dict[str, CostResult] = {}
        for metric in self.config.metrics:
            try:
                results[metric.metric_name] = client.get_cost_and_usage(build_query(metric))
            except FetchError as exc:
                raise FetchError(f"metric {metric.metric_name}: {exc}") from exc
            except Exception as exc:  # pylint: disable=broad-except
                raise FetchError(f"metric {metric.metric_name}: unexpected error: {exc!r}") from exc
        return results

    # ── publish ───────────────────────────────────────────────────────────

    def _stage(self, outcomes) -> tuple[dict[str, Rows], int]:
        """Turn per-account results into label rows; returns ``(rows, skipped)``."""
        staged: dict[str, Rows] = {name: {} for name in self.schemas}
        skipped = 0
        for outcome in outcomes:
            for metric in self.config.metrics:
                result = outcome.results.get(metric.metric_name)
                if result is None:
                    continue
                schema = self.schemas[metric.metric_name]
                for group_keys, amount in self._rows_for(metric, result):
                    try:
                        labels = schema.values(outcome.account, group_keys)
                    except PublishInconsistencyError as exc:
                        LOGGER.error(msg="Row skipped", error=str(exc))
                        skipped += 1
                        continue
                    rows = staged[metric.metric_name]
                    rows[labels] = rows.get(labels, 0.0) + amount
        return staged, skipped

    @staticmethod
    def _rows_for(metric: MetricConfig, result: CostResult) -> list[tuple[list[str], float]]:
        """``(group keys, amount)`` pairs after minor-cost merging."""
        if not metric.grouped:
            return [([], result.total)]

        merge = metric.group_by.merge_minor_cost if metric.group_by.merge_enabled else None
        rows: list[tuple[list[str], float]] = []
        merged_minor = 0.0
        for group in result.groups:
            if merge is not None and group.amount < merge.threshold:
                merged_minor += group.amount
                continue
            rows.append((group.keys, group.amount))

        if merged_minor > 0:
            rows.append(([merge.tag_value] * len(metric.group_by.groups), merged_minor))
        return rows
