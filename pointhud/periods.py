"""
Calendar periods and their canonical ids.

    day    2025-10-08
    week   2025-W42   ISO week, Monday to Sunday, UTC
    month  2025-10    calendar month, UTC

Ids are derived from the calendar only, so the same id always maps to the
same start and end day.
"""
from __future__ import annotations

import re
from datetime import date, timedelta
from typing import NamedTuple

from dateutil.relativedelta import relativedelta

from .errors import InvalidPeriod
from .utils import utc_today

PERIOD_KINDS = ("day", "week", "month")

_DAY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_WEEK_RE = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


class Period(NamedTuple):
    kind: str
    period_id: str
    start: date
    end: date

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


def _check_kind(kind: str) -> str:
    k = (kind or "").strip().lower()
    # accept the job names of the scheduler as aliases
    k = {"daily": "day", "weekly": "week", "monthly": "month"}.get(k, k)
    if k not in PERIOD_KINDS:
        raise InvalidPeriod(kind, None, f"unknown period kind, expected one of {', '.join(PERIOD_KINDS)}")
    return k


def normalize_kind(kind: str) -> str:
    return _check_kind(kind)


def period_containing(kind: str, d: date) -> Period:
    kind = _check_kind(kind)
    if kind == "day":
        return Period("day", d.isoformat(), d, d)
    if kind == "week":
        iso_year, iso_week, _ = d.isocalendar()
        start = d - timedelta(days=d.weekday())
        return Period("week", f"{iso_year}-W{iso_week:02d}", start, start + timedelta(days=6))
    start = d.replace(day=1)
    end = start + relativedelta(months=1) - timedelta(days=1)
    return Period("month", f"{d.year}-{d.month:02d}", start, end)


def parse_period(kind: str, period_id: str, today: date | None = None) -> Period:
    """
    Resolve a canonical id to its boundaries. Raises InvalidPeriod for ids
    that do not match the kind, name a non-existent date, or start in the future.
    """
    kind = _check_kind(kind)
    pid = (period_id or "").strip()
    try:
        if kind == "day":
            m = _DAY_RE.match(pid)
            if not m:
                raise InvalidPeriod(kind, period_id, "expected YYYY-MM-DD")
            start = date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        elif kind == "week":
            m = _WEEK_RE.match(pid)
            if not m:
                raise InvalidPeriod(kind, period_id, "expected YYYY-Www")
            start = date.fromisocalendar(int(m.group(1)), int(m.group(2)), 1)
        else:
            m = _MONTH_RE.match(pid)
            if not m:
                raise InvalidPeriod(kind, period_id, "expected YYYY-MM")
            start = date(int(m.group(1)), int(m.group(2)), 1)
    except ValueError as e:
        raise InvalidPeriod(kind, period_id, str(e)) from e

    period = period_containing(kind, start)
    if period.period_id != pid:
        raise InvalidPeriod(kind, period_id, f"not a canonical id (did you mean {period.period_id}?)")
    if period.start > (today or utc_today()):
        raise InvalidPeriod(kind, period_id, "period starts in the future")
    return period


def previous_period(period: Period) -> Period:
    return period_containing(period.kind, period.start - timedelta(days=1))


def latest_completed(kind: str, today: date | None = None) -> Period:
    """The most recent period that ended before `today`."""
    return previous_period(period_containing(kind, today or utc_today()))


def default_period(kind: str, today: date | None = None) -> Period:
    # day: yesterday, week: the week containing yesterday, month: the previous month
    kind = _check_kind(kind)
    today = today or utc_today()
    if kind == "month":
        return latest_completed("month", today)
    return period_containing(kind, today - timedelta(days=1))
