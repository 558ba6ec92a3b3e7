"""Shared pytest fixtures used across all test modules."""

import copy
import os
from typing import Any

import pytest

# Ensure required env vars are set for test imports
os.environ.setdefault("DEBUG_MODE", "True")
os.environ.setdefault("CONFIG_PATH", "/tmp/aws_cost_exporter_test_config.yaml")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("SKIP_UNREACHABLE_ACCOUNTS", "False")
os.environ.setdefault("EXPORTER_PORT", "")
os.environ.setdefault("POLLING_INTERVAL", "")

from config.loader import parse_config  # noqa: E402
from helpers.errors import FetchError  # noqa: E402
from wrappers.cost_explorer import CostGroup, CostResult  # noqa: E402

BASE_CONFIG: dict[str, Any] = {
    "exporter_port": 9090,
    "polling_interval": "8h",
    "metrics": [
        {
            "metric_name": "aws_daily_cost",
            "metric_description": "Daily unblended cost",
            "granularity": "DAILY",
            "data_delay_days": 1,
            "metric_type": "UnblendedCost",
        },
        {
            "metric_name": "aws_team_cost",
            "metric_description": "Month-to-date cost per team",
            "granularity": "MONTHLY",
            "data_delay_days": 1,
            "metric_type": "UnblendedCost",
            "record_types": ["Usage", "Tax"],
            "group_by": {
                "enabled": True,
                "groups": [
                    {
                        "type": "TAG",
                        "key": "team",
                        "label_name": "team",
                        "alias": {
                            "label_name": "team_name",
                            "map": {"payments": "Payments Team"},
                        },
                    }
                ],
                "merge_minor_cost": {
                    "enabled": True,
                    "threshold": 5.0,
                    "tag_value": "other",
                },
            },
        },
    ],
    "target_aws_accounts": [
        {"account_id": "111111111111", "assumed_role_name": "cost-exporter", "labels": {"env": "prod", "bu": "core"}},
        {"account_id": "222222222222", "assumed_role_name": "cost-exporter", "labels": {"env": "dev", "bu": "core"}},
        {"account_id": "333333333333", "assumed_role_name": "cost-exporter", "labels": {"env": "stg", "bu": "data"}},
    ],
}


class FakeCostExplorer:
    """Stands in for CostExplorerWrapper: canned results per metric type/grouping."""

    def __init__(self, account, total: float = 0.0, groups=None, fail: bool = False, error=None) -> None:
        self.account = account
        self.total = total
        self.groups = groups or []
        self.fail = fail
        self.error = error
        self.queries = []

    def get_cost_and_usage(self, query):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        if self.fail:
            raise FetchError("fetching cost data: throttled")
        if query.group_by:
            return CostResult(groups=[CostGroup(keys=list(k), amount=a, unit="USD") for k, a in self.groups])
        return CostResult(total=self.total)


@pytest.fixture
def config_dict() -> dict[str, Any]:
    """A fresh, mutable copy of the reference configuration."""
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def exporter_config(config_dict):
    return parse_config(config_dict)


@pytest.fixture
def fake_clients():
    """Registry of fakes by account id plus a client factory building them."""
    clients: dict[str, FakeCostExplorer] = {}
    settings: dict[str, dict[str, Any]] = {}

    def factory(account):
        client = FakeCostExplorer(account, **settings.get(account.account_id, {}))
        clients[account.account_id] = client
        return client

    factory.clients = clients
    factory.settings = settings
    return factory
