"""Pydantic models describing the exporter configuration (metrics + target accounts).

Field bounds live on the models; checks spanning several entries (unique
metric names, label clashes) run in the root ``model_validator``.
``config.loader`` turns any ``ValidationError`` into a ``ConfigError``.
"""

from __future__ import annotations

import re
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from helpers.constants import (
    ACCOUNT_ID_LABEL,
    CHARGE_TYPE_LABEL,
    DEFAULT_EXPORTER_PORT,
    DEFAULT_POLLING_INTERVAL_SECONDS,
    DEFAULT_RECORD_TYPES,
    INTERNAL_METRIC_PREFIX,
)

MAX_GROUPS = 2

METRIC_NAME_PATTERN = r"^[a-zA-Z_:][a-zA-Z0-9_:]*$"
LABEL_NAME_PATTERN = r"^[a-zA-Z_][a-zA-Z0-9_]*$"
LABEL_NAME_RE = re.compile(LABEL_NAME_PATTERN)
DURATION_RE = re.compile(r"^(\d+)([smhd])$")
DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: Any) -> int:
    """Return seconds from an int or a ``<n>s|m|h|d`` string."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, int):
        seconds = value
    elif isinstance(value, str) and value.strip().isdigit():
        seconds = int(value.strip())
    elif isinstance(value, str) and DURATION_RE.match(value.strip()):
        amount, unit = DURATION_RE.match(value.strip()).groups()
        seconds = int(amount) * DURATION_UNITS[unit]
    else:
        raise ValueError(f"invalid duration {value!r}")
    if seconds < 1:
        raise ValueError("duration must be at least 1s")
    return seconds


def _upper(value: Any) -> Any:
    return value.upper() if isinstance(value, str) else value


def _none_as_empty(value: Any) -> Any:
    return [] if value is None else value


class _ConfigModel(BaseModel):
    # YAML reads unquoted account ids and label values as numbers
    model_config = ConfigDict(coerce_numbers_to_str=True)


# ── metric definition ─────────────────────────────────────────────────────


class TagFilter(_ConfigModel):
    """Keep only costs whose tag ``tag_key`` equals one of ``tag_values``."""

    tag_key: str = Field(min_length=1)
    tag_values: list[str] = Field(min_length=1, description="Accepted tag values")


class AliasConfig(_ConfigModel):
    """Second label carrying a friendly name for each group key."""

    label_name: str = Field(pattern=LABEL_NAME_PATTERN)
    map: dict[str, str] = Field(default_factory=dict)

    @field_validator("map", mode="before")
    @classmethod
    def _map_or_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    def resolve(self, key: str) -> str:
        """Mapped value of ``key``; unmapped (or empty) keys pass through."""
        if key == "":
            return key
        return self.map.get(key, key)


class GroupConfig(_ConfigModel):
    type: Literal["DIMENSION", "TAG", "COST_CATEGORY"]
    key: str = Field(min_length=1)
    label_name: str = Field(pattern=LABEL_NAME_PATTERN)
    alias: Optional[AliasConfig] = None

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, v: Any) -> Any:
        return _upper(v)

    def realize(self, raw_key: str) -> str:
        """Label value of a raw Cost Explorer group key.

        Tag keys come back as ``<tag_key>$<value>``; only the value is kept.
        """
        if self.type == "TAG":
            prefix = f"{self.key}$"
            if raw_key.startswith(prefix):
                return raw_key[len(prefix):]
        return raw_key


class MergeMinorCostConfig(_ConfigModel):
    """Roll rows cheaper than ``threshold`` into one ``tag_value`` row."""

    enabled: bool = False
    threshold: float = Field(default=0.0, ge=0.0)
    tag_value: str = Field(default="other", min_length=1)


class GroupByConfig(_ConfigModel):
    enabled: bool = False
    groups: list[GroupConfig] = Field(default_factory=list, max_length=MAX_GROUPS)
    merge_minor_cost: Optional[MergeMinorCostConfig] = None

    @field_validator("groups", mode="before")
    @classmethod
    def _groups_or_empty(cls, v: Any) -> Any:
        return _none_as_empty(v)

    @model_validator(mode="after")
    def _groups_when_enabled(self) -> GroupByConfig:
        if self.enabled and not self.groups:
            raise ValueError("groups is required when group_by is enabled")
        return self

    @property
    def merge_enabled(self) -> bool:
        return self.merge_minor_cost is not None and self.merge_minor_cost.enabled


class MetricConfig(_ConfigModel):
    """One exposed gauge and the Cost Explorer query behind it."""

    metric_name: str = Field(pattern=METRIC_NAME_PATTERN)
    metric_type: str = Field(min_length=1, description="e.g. UnblendedCost")
    granularity: Literal["DAILY", "MONTHLY"]
    metric_description: str = ""
    data_delay_days: int = Field(default=0, ge=0)
    record_types: list[str] = Field(default_factory=list)
    tag_filters: list[TagFilter] = Field(default_factory=list)
    group_by: Optional[GroupByConfig] = None

    @field_validator("granularity", mode="before")
    @classmethod
    def _upper_granularity(cls, v: Any) -> Any:
        return _upper(v)

    @field_validator("record_types", "tag_filters", mode="before")
    @classmethod
    def _lists_or_empty(cls, v: Any) -> Any:
        return _none_as_empty(v)

    @model_validator(mode="after")
    def _default_description(self) -> MetricConfig:
        if not self.metric_description:
            self.metric_description = self.metric_name
        return self

    @property
    def grouped(self) -> bool:
        return self.group_by is not None and self.group_by.enabled

    @property
    def effective_record_types(self) -> list[str]:
        return self.record_types or list(DEFAULT_RECORD_TYPES)

    @property
    def charge_type(self) -> str:
        return ",".join(self.effective_record_types)

    def group_label_names(self) -> list[str]:
        names: list[str] = []
        if not self.grouped:
            return names
        for group in self.group_by.groups:
            names.append(group.label_name)
            if group.alias is not None:
                names.append(group.alias.label_name)
        return names


# ── accounts ──────────────────────────────────────────────────────────────


class AccountConfig(_ConfigModel):
    account_id: str = Field(min_length=1)
    assumed_role_name: str = Field(min_length=1)
    labels: dict[str, str] = Field(default_factory=dict)

    @field_validator("labels", mode="before")
    @classmethod
    def _labels_or_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("labels")
    @classmethod
    def _valid_label_names(cls, v: dict[str, str]) -> dict[str, str]:
        for key in v:
            if not LABEL_NAME_RE.match(key):
                raise ValueError(f"'{key}' is not a valid label name")
        reserved = sorted({ACCOUNT_ID_LABEL, CHARGE_TYPE_LABEL} & set(v))
        if reserved:
            raise ValueError(f"labels {reserved} are reserved")
        return v

    @property
    def role_arn(self) -> str:
        return f"arn:aws:iam::{self.account_id}:role/{self.assumed_role_name}"

    def sorted_label_keys(self) -> list[str]:
        return sorted(self.labels)


# ── root ──────────────────────────────────────────────────────────────────


class ExporterConfig(_ConfigModel):
    metrics: list[MetricConfig] = Field(min_length=1)
    target_aws_accounts: list[AccountConfig] = Field(min_length=1)
    exporter_port: int = Field(default=DEFAULT_EXPORTER_PORT, ge=1, le=65535)
    polling_interval: int = Field(
        default=DEFAULT_POLLING_INTERVAL_SECONDS,
        description="Seconds, or a <n>s|m|h|d string",
    )

    @field_validator("polling_interval", mode="before")
    @classmethod
    def _parse_interval(cls, v: Any) -> int:
        return parse_duration(v)

    @model_validator(mode="after")
    def _check_unique_names(self) -> ExporterConfig:
        seen_metrics: set[str] = set()
        for metric in self.metrics:
            if metric.metric_name.startswith(INTERNAL_METRIC_PREFIX):
                raise ValueError(
                    f"metric_name '{metric.metric_name}' uses the reserved prefix '{INTERNAL_METRIC_PREFIX}'"
                )
            if metric.metric_name in seen_metrics:
                raise ValueError(f"duplicate metric_name '{metric.metric_name}'")
            seen_metrics.add(metric.metric_name)

        account_keys = set(self.target_aws_accounts[0].labels)
        for metric in self.metrics:
            taken = {ACCOUNT_ID_LABEL, CHARGE_TYPE_LABEL} | account_keys
            for name in metric.group_label_names():
                if name in taken:
                    raise ValueError(
                        f"metric {metric.metric_name}: label '{name}' is used twice"
                    )
                taken.add(name)
        return self

    def as_dict(self) -> dict[str, Any]:
        """Summary for startup logs."""
        return {
            "exporter_port": self.exporter_port,
            "polling_interval": self.polling_interval,
            "metrics": [m.metric_name for m in self.metrics],
            "accounts": [a.account_id for a in self.target_aws_accounts],
        }
