"""Label names and label values of each cost gauge.

The names of a metric are fixed once at startup from the first configured
account; every published row must realize exactly that many values in the
same order.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from config.exporter_config import AccountConfig, MetricConfig
from helpers.constants import ACCOUNT_ID_LABEL, CHARGE_TYPE_LABEL
from helpers.errors import PublishInconsistencyError


def build_label_names(sample_account: AccountConfig, metric: MetricConfig) -> list[str]:
    """``account_id``, sorted account label keys, ``charge_type``, group labels."""
    names = [ACCOUNT_ID_LABEL]
    names.extend(sample_account.sorted_label_keys())
    names.append(CHARGE_TYPE_LABEL)
    names.extend(metric.group_label_names())
    return names


def build_label_values(
    account: AccountConfig,
    metric: MetricConfig,
    group_keys: Sequence[str] | None = None,
) -> tuple[str, ...]:
    """Label values in the order of :func:`build_label_names`.

    Positions without a group key realize to ``""``.
    """
    keys = list(group_keys or [])
    values = [account.account_id]
    values.extend(account.labels[key] for key in account.sorted_label_keys())
    values.append(metric.charge_type)

    if metric.grouped:
        for i, group in enumerate(metric.group_by.groups):
            key_value = group.realize(keys[i]) if i < len(keys) else ""
            values.append(key_value)
            if group.alias is not None:
                values.append(group.alias.resolve(key_value))

    return tuple(values)


@dataclass(frozen=True)
class LabelSchema:
    """Frozen label layout of one metric."""

    metric: MetricConfig
    names: tuple[str, ...]
    account_label_keys: tuple[str, ...]

    @classmethod
    def for_metric(cls, sample_account: AccountConfig, metric: MetricConfig) -> LabelSchema:
        return cls(
            metric=metric,
            names=tuple(build_label_names(sample_account, metric)),
            account_label_keys=tuple(sample_account.sorted_label_keys()),
        )

    def matches(self, account: AccountConfig) -> bool:
        return tuple(account.sorted_label_keys()) == self.account_label_keys

    def values(
        self, account: AccountConfig, group_keys: Sequence[str] | None = None
    ) -> tuple[str, ...]:
        """Realize and check one row; raises :class:`PublishInconsistencyError`."""
        if not self.matches(account):
            raise PublishInconsistencyError(
                f"metric {self.metric.metric_name}: account {account.account_id} "
                f"has label keys {account.sorted_label_keys()}, "
                f"schema expects {list(self.account_label_keys)}"
            )
        values = build_label_values(account, self.metric, group_keys)
        if len(values) != len(self.names):
            raise PublishInconsistencyError(
                f"metric {self.metric.metric_name}: {len(values)} label values "
                f"for {len(self.names)} label names"
            )
        return values
