"""
Query and trigger interface for presentation layers and operators.

Reads never touch live counters for rankings: consumers get the latest
completed LeaderboardSnapshot. `run_aggregation` is the only write entry
point and requires the operator token.
"""
from __future__ import annotations

import hmac
import logging
from datetime import date, datetime
from typing import Callable

from .config import Settings, settings as default_settings
from .errors import LeaderboardNotFound, Unauthorized
from .leaderboard import LeaderboardBuilder, LeaderboardStore
from .periods import normalize_kind, parse_period, previous_period
from .records import AccountSummary, AggregationResult, LeaderboardSnapshot, WindowSeries
from .snapshots import SnapshotStore
from .utils import utc_now
from .windows import WindowDeltaEngine

log = logging.getLogger(__name__)

# how many earlier periods a fallback read may walk back
MAX_FALLBACK_STEPS = 12


class PointLedgerService:
    def __init__(
        self,
        session_factory,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.clock = clock

    def _today(self) -> date:
        return self.clock().date()

    def get_window_series(self, account_id: str, days: int = 7, end_day: date | None = None) -> WindowSeries:
        with self.session_factory() as s:
            engine = WindowDeltaEngine(SnapshotStore(s, self.settings), self.settings)
            return engine.series(account_id, days, end_day or self._today())

    def get_leaderboard_snapshot(
        self,
        period_kind: str,
        period_id: str,
        fallback_to_previous: bool = False,
    ) -> LeaderboardSnapshot:
        period = parse_period(period_kind, period_id, self._today())
        with self.session_factory() as s:
            store = LeaderboardStore(s)
            snap = store.get(period.kind, period.period_id)
            if snap is not None:
                return snap
            if fallback_to_previous:
                prev = period
                for _ in range(MAX_FALLBACK_STEPS):
                    prev = previous_period(prev)
                    snap = store.get(prev.kind, prev.period_id)
                    if snap is not None:
                        log.info("no snapshot for %s/%s, serving %s", period.kind, period.period_id, snap.key)
                        return snap
        raise LeaderboardNotFound(period.kind, period.period_id)

    def get_latest_completed_leaderboard(self, period_kind: str) -> LeaderboardSnapshot:
        kind = normalize_kind(period_kind)
        with self.session_factory() as s:
            snap = LeaderboardStore(s).latest_completed(kind, self._today())
        if snap is None:
            raise LeaderboardNotFound(kind)
        return snap

    def account_summary(self, account_id: str, period_kind: str, period_id: str) -> AccountSummary | None:
        period = parse_period(period_kind, period_id, self._today())
        with self.session_factory() as s:
            return LeaderboardStore(s).get_summary(account_id, period.kind, period.period_id)

    def authorize(self, token: str | None) -> None:
        expected = self.settings.admin_token
        if not expected or not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            log.warning("rejected aggregation trigger (bad or missing operator token)")
            raise Unauthorized("forbidden")

    def run_aggregation(
        self,
        period_kind: str,
        period_id: str | None = None,
        top_n: int | None = None,
        *,
        token: str | None,
    ) -> AggregationResult:
        self.authorize(token)
        builder = LeaderboardBuilder(self.session_factory, self.settings, clock=self.clock)
        return builder.build(period_kind, period_id, top_n)
