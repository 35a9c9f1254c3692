"""
Value types passed between the stores, the engines and the query interface.
All of them are frozen pydantic models so they can be handed to consumers
after the database session that produced them is closed.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .errors import GapDetected
from .utils import leaderboard_key, snapshot_key


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Counters(_Frozen):
    account_id: str
    display_name: Optional[str] = None
    points: int = 0
    items: int = 0


class ActivityEvent(_Frozen):
    """Validated outcome of an external classifier, as it crosses into the ledger."""

    is_positive_event: bool
    points_awarded: Optional[int] = Field(default=None, ge=0)


class SnapshotPoint(_Frozen):
    account_id: str
    day: date
    points: int
    items: int
    is_synthetic: bool = False
    written_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        return snapshot_key(self.account_id, self.day)


class WindowDelta(_Frozen):
    account_id: str
    window_start: date
    window_end: date
    points_start: int
    points_end: int
    points_gained: int
    items_start: int
    items_end: int
    items_gained: int


class SeriesPoint(_Frozen):
    label: str
    day: date
    points_gained: int
    items_gained: int = 0


class WindowSeries(_Frozen):
    account_id: str
    start: date
    end: date
    points: List[SeriesPoint]
    missing_days: List[date] = Field(default_factory=list)

    @property
    def gap_warning(self) -> Optional[GapDetected]:
        if not self.missing_days:
            return None
        return GapDetected(self.account_id, self.missing_days)

    def as_pairs(self) -> List[Tuple[str, int]]:
        return [(p.label, p.points_gained) for p in self.points]


class LeaderboardEntry(_Frozen):
    rank: int = Field(ge=1)
    account_id: str
    display_name: str
    initials: str
    points_gained: int
    cumulative_points_at_end: int
    items_gained: int


class LeaderboardSnapshot(_Frozen):
    period_kind: str
    period_id: str
    period_start: date
    period_end: date
    generated_at: datetime
    top_n: int
    entries: List[LeaderboardEntry]

    @property
    def key(self) -> str:
        return leaderboard_key(self.period_kind, self.period_id)


class AccountSummary(_Frozen):
    account_id: str
    period_kind: str
    period_id: str
    points_start: int
    points_end: int
    points_gained: int
    items_gained: int
    generated_at: datetime


class AggregationResult(_Frozen):
    period_kind: str
    period_id: str
    entry_count: int
    evaluated: int = 0
    failed_accounts: List[str] = Field(default_factory=list)


class BackfillReport(_Frozen):
    target_day: date
    start_day: date
    accounts: int = 0
    written: int = 0
    batches: int = 0
    seeded: int = 0
