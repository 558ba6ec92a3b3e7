"""Wrapper for AWS Cost Explorer (GetCostAndUsage) behind a cross-account role.

One wrapper is built per target account.  The role is assumed once at
construction so that a bad role / trust policy fails fast; the resulting
credentials refresh themselves before they expire.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import boto3
from botocore.credentials import CredentialProvider, RefreshableCredentials
from botocore.exceptions import BotoCoreError, ClientError
from botocore.session import get_session

from config.exporter_config import AccountConfig, TagFilter
from helpers.constants import APP_LOGGER, AWS_REGION, DEFAULT_RECORD_TYPES, ROLE_SESSION_NAME
from helpers.errors import ClientInitError, FetchError
from helpers.utils import Period


@dataclass
class CostQuery:
    """A single GetCostAndUsage request, built per (account, metric)."""

    period: Period
    granularity: str
    metric_type: str
    record_types: list[str] = field(default_factory=list)
    group_by: list[dict[str, str]] = field(default_factory=list)
    tag_filters: list[TagFilter] = field(default_factory=list)


@dataclass
class CostGroup:
    keys: list[str]
    amount: float
    unit: str = ""


@dataclass
class CostResult:
    """Flattened result of every page and every time bucket."""

    total: float = 0.0
    groups: list[CostGroup] = field(default_factory=list)


def build_filter(record_types: list[str], tag_filters: list[TagFilter]) -> dict[str, Any]:
    """Record-type dimension filter, ANDed with one EQUALS filter per tag."""
    base = {
        "Dimensions": {
            "Key": "RECORD_TYPE",
            "Values": list(record_types or DEFAULT_RECORD_TYPES),
        }
    }
    if not tag_filters:
        return base

    expressions = [base]
    for tf in tag_filters:
        expressions.append(
            {
                "Tags": {
                    "Key": tf.tag_key,
                    "Values": list(tf.tag_values),
                    "MatchOptions": ["EQUALS"],
                }
            }
        )
    return {"And": expressions}


def _parse_amount(metric: dict[str, Any], what: str) -> float:
    raw = metric["Amount"]
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise FetchError(f"parsing {what} amount {raw!r}: {exc}") from exc


class AssumeRoleProvider(CredentialProvider):
    """Credential provider yielding refreshable STS AssumeRole credentials."""

    METHOD = "sts-assume-role"
    CANONICAL_NAME = "aws-cost-exporter-assume-role"

    def __init__(self, account: AccountConfig) -> None:
        super().__init__()
        self.account = account
        self.sts = boto3.client("sts", region_name=AWS_REGION)

    def _fetch(self) -> dict[str, str]:
        creds = self.sts.assume_role(
            RoleArn=self.account.role_arn,
            RoleSessionName=ROLE_SESSION_NAME,
        )["Credentials"]
        return {
            "access_key": creds["AccessKeyId"],
            "secret_key": creds["SecretAccessKey"],
            "token": creds["SessionToken"],
            "expiry_time": creds["Expiration"].isoformat(),
        }

    def load(self) -> RefreshableCredentials:
        return RefreshableCredentials.create_from_metadata(
            metadata=self._fetch(),
            refresh_using=self._fetch,
            method=self.METHOD,
        )


def _assumed_role_session(account: AccountConfig) -> boto3.Session:
    """Boto3 session whose credential chain starts with the account role."""
    botocore_session = get_session()
    resolver = botocore_session.get_component("credential_provider")
    resolver.insert_before("env", AssumeRoleProvider(account))
    # resolve now so a bad role or trust policy fails at construction
    botocore_session.get_credentials()
    return boto3.Session(botocore_session=botocore_session, region_name=AWS_REGION)


class CostExplorerWrapper:
    """Object to wrap Cost Explorer interactions for one account."""

    def __init__(self, account: AccountConfig, client: Any = None) -> None:
        self.account = account
        self.log = APP_LOGGER.bind(component="cost_explorer", account_id=account.account_id)
        if client is not None:
            self.client = client
            return
        try:
            session = _assumed_role_session(account)
            self.client = session.client("ce", region_name=AWS_REGION)
        except (BotoCoreError, ClientError) as exc:
            raise ClientInitError(
                account.account_id, f"assuming role {account.role_arn}: {exc}"
            ) from exc
        self.log.info(
            msg="Cost Explorer client initialised",
            role_arn=account.role_arn,
        )

    # ── public ────────────────────────────────────────────────────────────

    def get_cost_and_usage(self, query: CostQuery) -> CostResult:
        """Run ``query`` through every page and flatten the rows.

        Only the ``query.metric_type`` field is read; rows where it is missing
        or null are skipped.  A malformed amount raises :class:`FetchError`.
        """
        result = CostResult()
        if query.period.is_empty:
            self.log.debug(
                msg="Empty billing window, skipping query",
                start=query.period.start.isoformat(),
            )
            return result

        request = self._build_request(query)
        while True:
            try:
                page = self.client.get_cost_and_usage(**request)
            except (BotoCoreError, ClientError) as exc:
                raise FetchError(f"fetching cost data: {exc}") from exc

            for by_time in page.get("ResultsByTime", []):
                self._accumulate(by_time, query.metric_type, result)

            token = page.get("NextPageToken")
            if not token:
                break
            request["NextPageToken"] = token

        self.log.debug(
            msg="Cost data fetched",
            metric_type=query.metric_type,
            groups=len(result.groups),
            total=result.total,
        )
        return result

    # ── internals ─────────────────────────────────────────────────────────

    @staticmethod
    def _build_request(query: CostQuery) -> dict[str, Any]:
        request: dict[str, Any] = {
            "TimePeriod": query.period.as_dict(),
            "Granularity": query.granularity,
            "Metrics": [query.metric_type],
            "Filter": build_filter(query.record_types, query.tag_filters),
        }
        if query.group_by:
            request["GroupBy"] = query.group_by
        return request

    @staticmethod
    def _accumulate(by_time: dict[str, Any], metric_type: str, result: CostResult) -> None:
        groups = by_time.get("Groups") or []
        for group in groups:
            metric = (group.get("Metrics") or {}).get(metric_type)
            if not metric or metric.get("Amount") is None:
                continue
            result.groups.append(
                CostGroup(
                    keys=list(group.get("Keys") or []),
                    amount=_parse_amount(metric, "cost"),
                    unit=metric.get("Unit") or "",
                )
            )

        if not groups and by_time.get("Total"):
            metric = by_time["Total"].get(metric_type)
            if metric and metric.get("Amount") is not None:
                result.total += _parse_amount(metric, "total")
