"""Unit tests for wrappers.cost_explorer (GetCostAndUsage + role assumption)."""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from config.exporter_config import AccountConfig, TagFilter
from helpers.errors import ClientInitError, FetchError
from helpers.utils import Period
from wrappers.cost_explorer import CostExplorerWrapper, CostQuery, _assumed_role_session, build_filter

ACCOUNT = AccountConfig(account_id="111111111111", assumed_role_name="cost-exporter")
PERIOD = Period(start=date(2024, 3, 1), end=date(2024, 3, 14))


def _client_error(code: str = "LimitExceededException") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, "GetCostAndUsage")


def _group(keys, amount, metric="UnblendedCost"):
    return {"Keys": keys, "Metrics": {metric: {"Amount": amount, "Unit": "USD"}}}


class TestBuildFilter:
    def test_defaults_to_usage(self):
        assert build_filter([], []) == {
            "Dimensions": {"Key": "RECORD_TYPE", "Values": ["Usage"]}
        }

    def test_tags_are_anded_with_record_types(self):
        expr = build_filter(
            ["Usage", "Tax"],
            [TagFilter("env", ["prod"]), TagFilter("team", ["a", "b"])],
        )
        assert expr["And"][0] == {
            "Dimensions": {"Key": "RECORD_TYPE", "Values": ["Usage", "Tax"]}
        }
        assert expr["And"][1] == {
            "Tags": {"Key": "env", "Values": ["prod"], "MatchOptions": ["EQUALS"]}
        }
        assert expr["And"][2]["Tags"]["Values"] == ["a", "b"]
        assert len(expr["And"]) == 3


class TestGetCostAndUsage:
    """Tests for paging and result normalisation."""

    def _make_wrapper(self) -> CostExplorerWrapper:
        return CostExplorerWrapper(ACCOUNT, client=MagicMock())

    def test_ungrouped_totals_are_summed_across_pages(self):
        wrapper = self._make_wrapper()
        wrapper.client.get_cost_and_usage.side_effect = [
            {
                "ResultsByTime": [{"Total": {"UnblendedCost": {"Amount": "1.5", "Unit": "USD"}}, "Groups": []}],
                "NextPageToken": "page-2",
            },
            {"ResultsByTime": [{"Total": {"UnblendedCost": {"Amount": "2.25", "Unit": "USD"}}}]},
        ]

        result = wrapper.get_cost_and_usage(
            CostQuery(period=PERIOD, granularity="MONTHLY", metric_type="UnblendedCost")
        )

        assert result.total == pytest.approx(3.75)
        assert result.groups == []
        assert wrapper.client.get_cost_and_usage.call_count == 2
        second_call = wrapper.client.get_cost_and_usage.call_args_list[1].kwargs
        assert second_call["NextPageToken"] == "page-2"

    def test_request_shape(self):
        wrapper = self._make_wrapper()
        wrapper.client.get_cost_and_usage.return_value = {"ResultsByTime": []}

        wrapper.get_cost_and_usage(
            CostQuery(
                period=PERIOD,
                granularity="MONTHLY",
                metric_type="AmortizedCost",
                group_by=[{"Type": "TAG", "Key": "team"}],
            )
        )

        kwargs = wrapper.client.get_cost_and_usage.call_args.kwargs
        assert kwargs["TimePeriod"] == {"Start": "2024-03-01", "End": "2024-03-14"}
        assert kwargs["Granularity"] == "MONTHLY"
        assert kwargs["Metrics"] == ["AmortizedCost"]
        assert kwargs["GroupBy"] == [{"Type": "TAG", "Key": "team"}]
        assert kwargs["Filter"]["Dimensions"]["Values"] == ["Usage"]
        assert "NextPageToken" not in kwargs

    def test_grouped_rows(self):
        wrapper = self._make_wrapper()
        wrapper.client.get_cost_and_usage.return_value = {
            "ResultsByTime": [
                {
                    "Total": {},
                    "Groups": [
                        _group(["team$payments"], "12.5"),
                        _group(["team$search"], "0.75"),
                    ],
                }
            ]
        }

        result = wrapper.get_cost_and_usage(
            CostQuery(period=PERIOD, granularity="MONTHLY", metric_type="UnblendedCost",
                      group_by=[{"Type": "TAG", "Key": "team"}])
        )

        assert [(g.keys, g.amount, g.unit) for g in result.groups] == [
            (["team$payments"], 12.5, "USD"),
            (["team$search"], 0.75, "USD"),
        ]
        assert result.total == 0.0

    def test_missing_or_null_amounts_are_skipped(self):
        wrapper = self._make_wrapper()
        wrapper.client.get_cost_and_usage.return_value = {
            "ResultsByTime": [
                {
                    "Groups": [
                        _group(["a"], "1.0", metric="BlendedCost"),
                        {"Keys": ["b"], "Metrics": {"UnblendedCost": {"Amount": None}}},
                        _group(["c"], "3.0"),
                    ]
                }
            ]
        }

        result = wrapper.get_cost_and_usage(
            CostQuery(period=PERIOD, granularity="DAILY", metric_type="UnblendedCost",
                      group_by=[{"Type": "DIMENSION", "Key": "SERVICE"}])
        )

        assert [g.keys for g in result.groups] == [["c"]]

    def test_malformed_amount_is_a_fetch_error(self):
        wrapper = self._make_wrapper()
        wrapper.client.get_cost_and_usage.return_value = {
            "ResultsByTime": [{"Groups": [_group(["a"], "not-a-number")]}]
        }

        with pytest.raises(FetchError, match="not-a-number"):
            wrapper.get_cost_and_usage(
                CostQuery(period=PERIOD, granularity="DAILY", metric_type="UnblendedCost",
                          group_by=[{"Type": "DIMENSION", "Key": "SERVICE"}])
            )

    def test_malformed_total_is_a_fetch_error(self):
        wrapper = self._make_wrapper()
        wrapper.client.get_cost_and_usage.return_value = {
            "ResultsByTime": [{"Total": {"UnblendedCost": {"Amount": "1,5"}}}]
        }
        with pytest.raises(FetchError, match="total amount"):
            wrapper.get_cost_and_usage(
                CostQuery(period=PERIOD, granularity="DAILY", metric_type="UnblendedCost")
            )

    def test_api_error_is_wrapped(self):
        wrapper = self._make_wrapper()
        wrapper.client.get_cost_and_usage.side_effect = _client_error()

        with pytest.raises(FetchError) as excinfo:
            wrapper.get_cost_and_usage(
                CostQuery(period=PERIOD, granularity="DAILY", metric_type="UnblendedCost")
            )
        assert isinstance(excinfo.value.__cause__, ClientError)

    def test_empty_window_skips_the_api(self):
        wrapper = self._make_wrapper()
        empty = Period(start=date(2024, 3, 1), end=date(2024, 3, 1))

        result = wrapper.get_cost_and_usage(
            CostQuery(period=empty, granularity="MONTHLY", metric_type="UnblendedCost")
        )

        assert result.total == 0.0
        wrapper.client.get_cost_and_usage.assert_not_called()


class TestClientConstruction:
    """Role assumption at construction."""

    @staticmethod
    def _sts() -> MagicMock:
        sts = MagicMock()
        sts.assume_role.return_value = {
            "Credentials": {
                "AccessKeyId": "AKIA",
                "SecretAccessKey": "secret",
                "SessionToken": "token",
                "Expiration": datetime(2099, 1, 1, tzinfo=timezone.utc),
            }
        }
        return sts

    def test_assumes_role_and_builds_ce_client(self):
        sts = self._sts()
        with (
            patch("wrappers.cost_explorer.boto3.client", return_value=sts),
            patch("wrappers.cost_explorer.boto3.Session") as mock_session_cls,
        ):
            wrapper = CostExplorerWrapper(ACCOUNT)

        sts.assume_role.assert_called_once()
        assert sts.assume_role.call_args.kwargs["RoleArn"] == ACCOUNT.role_arn
        mock_session_cls.return_value.client.assert_called_once_with("ce", region_name="us-east-1")
        assert wrapper.client is mock_session_cls.return_value.client.return_value

    def test_assume_role_failure_is_client_init_error(self):
        sts = MagicMock()
        sts.assume_role.side_effect = _client_error("AccessDenied")
        with patch("wrappers.cost_explorer.boto3.client", return_value=sts):
            with pytest.raises(ClientInitError) as excinfo:
                CostExplorerWrapper(ACCOUNT)
        assert excinfo.value.account_id == "111111111111"
        assert "AccessDenied" in str(excinfo.value)

    def test_role_credentials_take_precedence_over_env(self, monkeypatch):
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "ENVKEY")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "envsecret")
        sts = self._sts()
        with patch("wrappers.cost_explorer.boto3.client", return_value=sts):
            session = _assumed_role_session(ACCOUNT)

        credentials = session.get_credentials()
        assert credentials.method == "sts-assume-role"
        assert credentials.get_frozen_credentials().access_key == "AKIA"
