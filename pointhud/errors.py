"""
Error taxonomy of the point ledger.

StoreUnavailable is raised for transient persistence failures and is left to
the caller to retry. AccountAggregationFailed and GapDetected describe
per-account problems that are logged and isolated, never fatal to a run.
"""
from __future__ import annotations

from datetime import date
from typing import Sequence


class PointHudError(Exception):
    """Base class for every error raised by pointhud."""


class StoreUnavailable(PointHudError):
    """The database could not be reached or refused the operation."""


class InvalidPeriod(PointHudError):
    def __init__(self, period_kind: str, period_id: str | None, reason: str):
        self.period_kind = period_kind
        self.period_id = period_id
        self.reason = reason
        super().__init__(f"invalid {period_kind} period {period_id!r}: {reason}")


class AccountAggregationFailed(PointHudError):
    def __init__(self, account_id: str, cause: BaseException | None = None):
        self.account_id = account_id
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown error"
        super().__init__(f"aggregation failed for account {account_id!r} ({detail})")


class GapDetected(PointHudError):
    """A chart series had days without a usable snapshot; those days show zero gain."""

    def __init__(self, account_id: str, missing_days: Sequence[date]):
        self.account_id = account_id
        self.missing_days = list(missing_days)
        days = ", ".join(d.isoformat() for d in self.missing_days)
        super().__init__(f"account {account_id!r} has no snapshot for: {days}")


class LeaderboardNotFound(PointHudError):
    def __init__(self, period_kind: str, period_id: str | None = None):
        self.period_kind = period_kind
        self.period_id = period_id
        what = f"{period_kind}/{period_id}" if period_id else f"any completed {period_kind} period"
        super().__init__(f"no leaderboard snapshot for {what}")


class Unauthorized(PointHudError):
    """Trigger call without a valid operator credential."""


class AggregationCancelled(PointHudError):
    """A builder run was stopped before its snapshot was written."""
