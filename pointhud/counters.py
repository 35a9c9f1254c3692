"""
CounterStore: account id -> cumulative counters (points, items).

Increments are a single SQL UPDATE that adds to the stored value, so two
activity events for the same account can never overwrite each other the way
a read-modify-write in Python would.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import Settings, settings as default_settings
from .db import store_errors
from .models import Account
from .records import ActivityEvent, Counters
from .utils import account_key, utc_now

log = logging.getLogger(__name__)


def _add(column, delta: int):
    if delta >= 0:
        return column + delta
    # corrections may subtract, totals stay >= 0
    return case((column + delta < 0, 0), else_=column + delta)


class CounterStore:
    def __init__(self, session: Session, settings: Settings | None = None):
        self.session = session
        self.settings = settings or default_settings

    def _read(self, account_id: str) -> Optional[Counters]:
        row = self.session.execute(
            select(Account.id, Account.display_name, Account.points, Account.items)
            .where(Account.id == account_id)
        ).one_or_none()
        if row is None:
            return None
        return Counters(account_id=row.id, display_name=row.display_name, points=row.points or 0, items=row.items or 0)

    def get(self, account_id: str) -> Optional[Counters]:
        with store_errors(self.session):
            return self._read(account_id)

    def list_accounts(self) -> List[Counters]:
        with store_errors(self.session):
            rows = self.session.execute(
                select(Account.id, Account.display_name, Account.points, Account.items).order_by(Account.id)
            ).all()
        return [
            Counters(account_id=r.id, display_name=r.display_name, points=r.points or 0, items=r.items or 0)
            for r in rows
        ]

    def increment(
        self,
        account_id: str,
        points_delta: int = 0,
        items_delta: int = 0,
        display_name: str | None = None,
    ) -> Counters:
        """
        Atomically add the deltas and return the new cumulative totals.

        The account is created on first activity. An insert that loses the race
        against a concurrent first increment falls back to the atomic update.
        """
        if not account_id:
            raise ValueError("account_id must not be empty")
        if points_delta < 0 or items_delta < 0:
            log.warning("negative increment for %s: points=%d items=%d",
                        account_key(account_id), points_delta, items_delta)

        s = self.session
        now = utc_now()
        values = {
            "points": _add(Account.points, points_delta),
            "items": _add(Account.items, items_delta),
            "updated_at": now,
        }
        if display_name:
            values["display_name"] = display_name
        stmt = update(Account).where(Account.id == account_id).values(**values)

        with store_errors(s):
            try:
                res = s.execute(stmt, execution_options={"synchronize_session": False})
                if res.rowcount == 0:
                    s.add(Account(
                        id=account_id,
                        display_name=display_name,
                        points=max(points_delta, 0),
                        items=max(items_delta, 0),
                        updated_at=now,
                    ))
                    try:
                        s.flush()
                    except IntegrityError:
                        s.rollback()
                        s.execute(stmt, execution_options={"synchronize_session": False})
                counters = self._read(account_id)
                s.commit()
            except Exception:
                s.rollback()
                raise

        log.debug("increment %s by points=%d items=%d -> %s",
                  account_key(account_id), points_delta, items_delta, counters)
        return counters

    def record_event(self, account_id: str, event: ActivityEvent, display_name: str | None = None) -> Counters:
        # Recyclable scan: default 10 points and one item; anything else: 5 points
        if event.points_awarded is not None:
            points = event.points_awarded
        elif event.is_positive_event:
            points = self.settings.positive_event_points
        else:
            points = self.settings.negative_event_points
        items = 1 if event.is_positive_event else 0
        return self.increment(account_id, points, items, display_name=display_name)
