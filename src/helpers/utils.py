"""Utility functions for date/time operations (billing query windows)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone


@dataclass(frozen=True)
class Period:
    """Half-open date interval ``[start, end)`` sent to Cost Explorer."""

    start: date
    end: date

    @property
    def is_empty(self) -> bool:
        return self.start >= self.end

    def as_dict(self) -> dict[str, str]:
        return {"Start": self.start.isoformat(), "End": self.end.isoformat()}


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def _adjusted_today(delay_days: int, now: datetime | None) -> date:
    current = now or now_utc()
    return current.astimezone(timezone.utc).date() - timedelta(days=delay_days)


def daily_period(delay_days: int, now: datetime | None = None) -> Period:
    """One-day window ending ``delay_days`` before today's UTC midnight."""
    end = _adjusted_today(delay_days, now)
    return Period(start=end - timedelta(days=1), end=end)


def monthly_period(delay_days: int, now: datetime | None = None) -> Period:
    """Month-to-date window of the month containing ``today - delay_days``.

    When the adjusted day is the 1st the window is empty (``start == end``).
    """
    end = _adjusted_today(delay_days, now)
    return Period(start=end.replace(day=1), end=end)


def period_for(granularity: str, delay_days: int, now: datetime | None = None) -> Period:
    """Dispatch on granularity (``DAILY`` or ``MONTHLY``)."""
    if granularity == "DAILY":
        return daily_period(delay_days, now)
    return monthly_period(delay_days, now)
