"""
Backfill: repair gaps in the daily snapshot series.

For every account and every day of [target - lookback, target] without a
real snapshot, a synthetic row carrying forward the nearest earlier value is
written, so the chart shows zero gain for that day instead of a hole.

Rules:
- real (non-synthetic) rows are never rewritten
- synthetic rows always equal the nearest earlier reading (a late real
  reading that is lower pulls the following fills down with it)
- days before an account's first snapshot stay empty
- writes go out in bounded batches (write_batch_size, capped by max_batch_size)

Running it twice over the same window with no new data writes nothing.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from .config import Settings, settings as default_settings
from .counters import CounterStore
from .records import BackfillReport, Counters, SnapshotPoint
from .snapshots import SnapshotStore
from .utils import account_key, chunked, daterange, utc_today

log = logging.getLogger(__name__)


class BackfillTool:
    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        today: Callable[[], date] = utc_today,
    ):
        self.session = session
        self.settings = settings or default_settings
        self.today = today
        self.snapshots = SnapshotStore(session, self.settings)
        self.counters = CounterStore(session, self.settings)

    def plan_account(
        self,
        account: Counters,
        start: date,
        target: date,
    ) -> Tuple[List[SnapshotPoint], bool]:
        """Rows to write for one account, and whether the account was seeded."""
        acct = account.account_id
        existing = {p.day: p for p in self.snapshots.read_range(acct, start, target)}
        carry: Optional[SnapshotPoint] = self.snapshots.read_last_before(acct, start)
        pending: List[SnapshotPoint] = []

        for d in daterange(start, target):
            row = existing.get(d)
            if row is not None and not row.is_synthetic:
                carry = row
                continue
            if carry is None:
                if row is not None:
                    carry = row
                continue

            points, items = carry.points, carry.items
            if row is not None and (row.points, row.items) == (points, items):
                carry = row
                continue
            fill = SnapshotPoint(account_id=acct, day=d, points=points, items=items, is_synthetic=True)
            pending.append(fill)
            carry = fill

        if carry is None and not existing and target == self.today():
            # nothing on or before target: today's counter is a real reading
            seed = SnapshotPoint(account_id=acct, day=target, points=account.points, items=account.items)
            return [seed], True
        return pending, False

    def run(self, target_day: date | None = None, lookback_days: int | None = None) -> BackfillReport:
        target = target_day or self.today()
        lookback = self.settings.backfill_lookback_days if lookback_days is None else lookback_days
        if lookback < 0:
            raise ValueError("lookback_days must be >= 0")
        start = target - timedelta(days=lookback)

        accounts = self.counters.list_accounts()
        log.info("backfill %s..%s for %d accounts", start, target, len(accounts))

        pending: List[SnapshotPoint] = []
        seeded = 0
        for account in accounts:
            rows, was_seeded = self.plan_account(account, start, target)
            if rows:
                log.debug("%s: %d rows planned", account_key(account.account_id), len(rows))
            pending.extend(rows)
            seeded += int(was_seeded)

        written = batches = 0
        batch_size = self.settings.effective_batch_size()
        for batch in chunked(pending, batch_size):
            batches += 1
            written += self.snapshots.write_batch(batch)
            log.info("committed batch #%d (%d writes)", batches, len(batch))

        log.info("backfill done: written=%d batches=%d seeded=%d", written, batches, seeded)
        return BackfillReport(
            target_day=target,
            start_day=start,
            accounts=len(accounts),
            written=written,
            batches=batches,
            seeded=seeded,
        )
