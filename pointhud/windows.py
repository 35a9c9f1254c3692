"""
WindowDeltaEngine: gains over calendar windows from a sparse snapshot series.

Two modes:

* chart mode (`day_gain`, `series`): every displayed day is computed on its
  own from the nearest snapshots, so a gap never breaks the whole series.
* ranking mode (`boundary_delta`): only the net change between the period
  boundaries counts, so missing days inside a period cost nothing.

In both modes a snapshot without an earlier baseline yields zero gain; the
first tracked day of an account never shows its whole history as a spike.
Negative raw deltas are clamped to zero and logged.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Optional, Tuple

from .config import Settings, settings as default_settings
from .records import Counters, SeriesPoint, SnapshotPoint, WindowDelta, WindowSeries
from .snapshots import SnapshotStore
from .utils import account_key, daterange, utc_today

log = logging.getLogger(__name__)


def clamped_gain(account_id: str, start: int, end: int, counter: str, where: str) -> int:
    raw = end - start
    if raw < 0:
        log.warning(
            "ledger decrease for %s: %s went %d -> %d (%s), counted as 0",
            account_key(account_id), counter, start, end, where,
        )
        return 0
    return raw


class WindowDeltaEngine:
    def __init__(self, snapshots: SnapshotStore, settings: Settings | None = None):
        self.snapshots = snapshots
        self.settings = settings or default_settings

    # ------------------------------------------------------------ chart mode

    def _day(self, account_id: str, d: date) -> Tuple[int, int, bool]:
        """(points_gained, items_gained, missing) for a single day."""
        last = self.snapshots.read_last_before_or_at(account_id, d)
        if last is None:
            return 0, 0, False
        if (d - last.day).days > self.settings.gap_tolerance_days:
            return 0, 0, True
        prev = self.snapshots.read_last_before(account_id, last.day)
        if prev is None:
            return 0, 0, False
        where = f"{prev.day.isoformat()}..{last.day.isoformat()}"
        return (
            clamped_gain(account_id, prev.points, last.points, "points", where),
            clamped_gain(account_id, prev.items, last.items, "items", where),
            False,
        )

    def day_gain(self, account_id: str, d: date) -> int:
        return self._day(account_id, d)[0]

    def series(self, account_id: str, days: int = 7, end_day: date | None = None) -> WindowSeries:
        """Per-day gains for the `days` days ending at `end_day` (inclusive), oldest first."""
        if days < 1:
            raise ValueError("days must be >= 1")
        end = end_day or utc_today()
        start = end - timedelta(days=days - 1)

        points, missing = [], []
        for d in daterange(start, end):
            p, i, is_missing = self._day(account_id, d)
            if is_missing:
                missing.append(d)
            points.append(SeriesPoint(label=d.isoformat(), day=d, points_gained=p, items_gained=i))

        series = WindowSeries(account_id=account_id, start=start, end=end, points=points, missing_days=missing)
        if missing:
            log.warning("%s", series.gap_warning)
        return series

    # ---------------------------------------------------------- ranking mode

    def _baseline(self, account_id: str, start: date, end: date) -> Optional[SnapshotPoint]:
        before = self.snapshots.read_last_before(account_id, start)
        if before is not None:
            return before
        # no history before the window: the first snapshot inside it is the baseline
        return self.snapshots.read_first_on_or_after(account_id, start, until=end)

    def boundary_delta(
        self,
        account_id: str,
        start: date,
        end: date,
        current: Counters | None = None,
    ) -> WindowDelta:
        if end < start:
            raise ValueError(f"window end {end} before start {start}")

        end_snap = self.snapshots.read_last_before_or_at(account_id, end)
        if end_snap is not None:
            points_end, items_end = end_snap.points, end_snap.items
        else:
            points_end = current.points if current else 0
            items_end = current.items if current else 0

        baseline = self._baseline(account_id, start, end)
        if baseline is None:
            points_start, items_start = points_end, items_end
        else:
            points_start, items_start = baseline.points, baseline.items

        where = f"{start.isoformat()}..{end.isoformat()}"
        return WindowDelta(
            account_id=account_id,
            window_start=start,
            window_end=end,
            points_start=points_start,
            points_end=points_end,
            points_gained=clamped_gain(account_id, points_start, points_end, "points", where),
            items_start=items_start,
            items_end=items_end,
            items_gained=clamped_gain(account_id, items_start, items_end, "items", where),
        )
