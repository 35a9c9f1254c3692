"""
SnapshotStore: per-account daily series of cumulative counters.

One row per (account, day); a repeat write for the same day overwrites the
counters. The nearest-snapshot lookups are single ordered index scans on the
unique (account_id, day) index, one query each.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import Settings, settings as default_settings
from .db import store_errors
from .models import DailySnapshot
from .records import SnapshotPoint
from .utils import chunked, snapshot_key, utc_now, utc_today

log = logging.getLogger(__name__)


def _point(row: DailySnapshot) -> SnapshotPoint:
    return SnapshotPoint(
        account_id=row.account_id,
        day=row.day,
        points=row.points or 0,
        items=row.items or 0,
        is_synthetic=bool(row.is_synthetic),
        written_at=row.written_at,
    )


class SnapshotStore:
    def __init__(self, session: Session, settings: Settings | None = None):
        self.session = session
        self.settings = settings or default_settings

    # ------------------------------------------------------------------ writes

    def _upsert(self, account_id: str, day: date, points: int, items: int, is_synthetic: bool) -> str:
        s = self.session
        row = (
            s.query(DailySnapshot)
            .filter(DailySnapshot.account_id == account_id)
            .filter(DailySnapshot.day == day)
            .one_or_none()
        )
        values = {
            "account_id": account_id,
            "day": day,
            "points": int(points),
            "items": int(items),
            "is_synthetic": bool(is_synthetic),
            "written_at": utc_now(),
        }
        if row is None:
            s.add(DailySnapshot(**values))
            return "insert"
        for k, v in values.items():
            setattr(row, k, v)
        return "update"

    def write_snapshot(
        self,
        account_id: str,
        day: date,
        points: int,
        items: int,
        is_synthetic: bool = False,
    ) -> SnapshotPoint:
        """Idempotent upsert of the cumulative counters for one account and day."""
        s = self.session
        with store_errors(s):
            try:
                res = self._upsert(account_id, day, points, items, is_synthetic)
                try:
                    s.flush()
                except IntegrityError:
                    # a concurrent writer inserted the same day first
                    s.rollback()
                    res = self._upsert(account_id, day, points, items, is_synthetic)
                s.commit()
            except Exception:
                s.rollback()
                raise
        log.debug("%s %s points=%d items=%d", res, snapshot_key(account_id, day), points, items)
        return SnapshotPoint(account_id=account_id, day=day, points=int(points), items=int(items),
                             is_synthetic=bool(is_synthetic))

    def write_batch(self, rows: Sequence[SnapshotPoint]) -> int:
        """
        Write all rows in one transaction. The store rejects batches above
        max_batch_size; callers chunk larger workloads themselves.
        """
        limit = self.settings.max_batch_size
        if len(rows) > limit:
            raise ValueError(f"batch of {len(rows)} writes exceeds the limit of {limit}")
        if not rows:
            return 0
        s = self.session
        with store_errors(s):
            try:
                for r in rows:
                    self._upsert(r.account_id, r.day, r.points, r.items, r.is_synthetic)
                    s.flush()
                s.commit()
            except Exception:
                s.rollback()
                raise
        return len(rows)

    def snapshot_all(self, counter_store, day: date | None = None) -> int:
        """Persist the current counters of every account as the snapshot for `day`."""
        the_day = day or utc_today()
        rows = [
            SnapshotPoint(account_id=c.account_id, day=the_day, points=c.points, items=c.items)
            for c in counter_store.list_accounts()
        ]
        written = 0
        for chunk in chunked(rows, self.settings.effective_batch_size()):
            written += self.write_batch(chunk)
        log.info("daily snapshot %s: %d accounts", the_day.isoformat(), written)
        return written

    # ------------------------------------------------------------------- reads

    def _first(self, stmt) -> Optional[SnapshotPoint]:
        with store_errors(self.session):
            row = self.session.execute(stmt.limit(1)).scalar_one_or_none()
        return _point(row) if row is not None else None

    def read_snapshot(self, account_id: str, day: date) -> Optional[SnapshotPoint]:
        return self._first(
            select(DailySnapshot)
            .where(DailySnapshot.account_id == account_id, DailySnapshot.day == day)
        )

    def read_range(self, account_id: str, from_day: date, to_day: date) -> List[SnapshotPoint]:
        with store_errors(self.session):
            rows = self.session.execute(
                select(DailySnapshot)
                .where(
                    DailySnapshot.account_id == account_id,
                    DailySnapshot.day >= from_day,
                    DailySnapshot.day <= to_day,
                )
                .order_by(DailySnapshot.day.asc())
            ).scalars().all()
        return [_point(r) for r in rows]

    def read_last_before_or_at(self, account_id: str, day: date) -> Optional[SnapshotPoint]:
        return self._first(
            select(DailySnapshot)
            .where(DailySnapshot.account_id == account_id, DailySnapshot.day <= day)
            .order_by(DailySnapshot.day.desc())
        )

    def read_last_before(self, account_id: str, day: date) -> Optional[SnapshotPoint]:
        return self._first(
            select(DailySnapshot)
            .where(DailySnapshot.account_id == account_id, DailySnapshot.day < day)
            .order_by(DailySnapshot.day.desc())
        )

    def read_first_on_or_after(self, account_id: str, day: date, until: date | None = None) -> Optional[SnapshotPoint]:
        stmt = select(DailySnapshot).where(DailySnapshot.account_id == account_id, DailySnapshot.day >= day)
        if until is not None:
            stmt = stmt.where(DailySnapshot.day <= until)
        return self._first(stmt.order_by(DailySnapshot.day.asc()))
