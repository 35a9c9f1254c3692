"""
Leaderboard snapshots per period.

LeaderboardBuilder evaluates every account's boundary delta for a period,
ranks the results and publishes one immutable LeaderboardSnapshot. The write
at the end of `build` is the only externally visible step: a run that fails
or is cancelled earlier leaves the previous snapshot for the period in place.
"""
from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import date, datetime
from time import monotonic
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import Settings, settings as default_settings
from .counters import CounterStore
from .db import statement_deadline, store_errors
from .errors import AccountAggregationFailed, AggregationCancelled, PointHudError, StoreUnavailable
from .models import AccountPeriodSummary, LeaderboardRecord
from .periods import Period, default_period, normalize_kind, parse_period
from .records import (
    AccountSummary,
    AggregationResult,
    Counters,
    LeaderboardEntry,
    LeaderboardSnapshot,
    WindowDelta,
)
from .snapshots import SnapshotStore
from .utils import initials_for, leaderboard_key, utc_now
from .utils.schema_utils import load_schema, validate_json
from .windows import WindowDeltaEngine

log = logging.getLogger(__name__)

SNAPSHOT_SCHEMA = "leaderboard_snapshot.schema.json"
MAX_POLL_SECONDS = 0.25


def _next_poll(running: Iterable[Counters], started: Dict[str, float], timeout: float) -> float:
    """Seconds until the earliest running lookup hits its deadline, capped at MAX_POLL_SECONDS."""
    now = monotonic()
    waits = [started[a.account_id] + timeout - now for a in running if a.account_id in started]
    if not waits:
        return MAX_POLL_SECONDS
    return min(MAX_POLL_SECONDS, max(0.0, min(waits)))


def _snapshot(rec: LeaderboardRecord) -> LeaderboardSnapshot:
    return LeaderboardSnapshot(
        period_kind=rec.period_kind,
        period_id=rec.period_id,
        period_start=rec.period_start,
        period_end=rec.period_end,
        generated_at=rec.generated_at,
        top_n=rec.top_n,
        entries=[LeaderboardEntry(**e) for e in (rec.entries or [])],
    )


class LeaderboardStore:
    def __init__(self, session: Session):
        self.session = session

    def get(self, period_kind: str, period_id: str) -> Optional[LeaderboardSnapshot]:
        with store_errors(self.session):
            rec = self.session.execute(
                select(LeaderboardRecord)
                .where(LeaderboardRecord.period_kind == period_kind, LeaderboardRecord.period_id == period_id)
            ).scalar_one_or_none()
        return _snapshot(rec) if rec is not None else None

    def latest_completed(self, period_kind: str, today: date) -> Optional[LeaderboardSnapshot]:
        with store_errors(self.session):
            rec = self.session.execute(
                select(LeaderboardRecord)
                .where(LeaderboardRecord.period_kind == period_kind, LeaderboardRecord.period_end < today)
                .order_by(LeaderboardRecord.period_end.desc())
                .limit(1)
            ).scalar_one_or_none()
        return _snapshot(rec) if rec is not None else None

    def get_summary(self, account_id: str, period_kind: str, period_id: str) -> Optional[AccountSummary]:
        with store_errors(self.session):
            row = self.session.execute(
                select(AccountPeriodSummary).where(
                    AccountPeriodSummary.account_id == account_id,
                    AccountPeriodSummary.period_kind == period_kind,
                    AccountPeriodSummary.period_id == period_id,
                )
            ).scalar_one_or_none()
        if row is None:
            return None
        return AccountSummary(
            account_id=row.account_id,
            period_kind=row.period_kind,
            period_id=row.period_id,
            points_start=row.points_start,
            points_end=row.points_end,
            points_gained=row.points_gained,
            items_gained=row.items_gained,
            generated_at=row.generated_at,
        )

    def _swap(self, snapshot: LeaderboardSnapshot, summaries: Sequence[AccountSummary]) -> None:
        s = self.session
        kind, pid = snapshot.period_kind, snapshot.period_id
        s.execute(delete(LeaderboardRecord).where(
            LeaderboardRecord.period_kind == kind, LeaderboardRecord.period_id == pid))
        s.execute(delete(AccountPeriodSummary).where(
            AccountPeriodSummary.period_kind == kind, AccountPeriodSummary.period_id == pid))
        s.add(LeaderboardRecord(
            period_kind=kind,
            period_id=pid,
            period_start=snapshot.period_start,
            period_end=snapshot.period_end,
            top_n=snapshot.top_n,
            entries=[e.model_dump(mode="json") for e in snapshot.entries],
            generated_at=snapshot.generated_at,
        ))
        s.add_all([
            AccountPeriodSummary(
                account_id=x.account_id,
                period_kind=kind,
                period_id=pid,
                points_start=x.points_start,
                points_end=x.points_end,
                points_gained=x.points_gained,
                items_gained=x.items_gained,
                generated_at=x.generated_at,
            )
            for x in summaries
        ])

    def replace(self, snapshot: LeaderboardSnapshot, summaries: Sequence[AccountSummary] = ()) -> None:
        """
        Swap in a new snapshot (and its per-account summaries) for the period in one transaction.
        A rerun racing this one can win the unique (kind, id) slot first; that is
        retried once, a second conflict surfaces as StoreUnavailable.
        """
        s = self.session
        key = snapshot.key
        with store_errors(s):
            for attempt in (1, 2):
                try:
                    self._swap(snapshot, summaries)
                    s.commit()
                    return
                except IntegrityError as e:
                    s.rollback()
                    if attempt == 2:
                        raise StoreUnavailable(f"publishing {key} conflicted with a concurrent run") from e
                    log.warning("publishing %s conflicted with a concurrent run, retrying", key)
                except Exception:
                    s.rollback()
                    raise


def rank_candidates(
    candidates: Sequence[Tuple[Counters, WindowDelta]],
    top_n: int,
) -> List[LeaderboardEntry]:
    """Highest gain first, ties by ascending account id; ranks 1..top_n."""
    ordered = sorted(candidates, key=lambda c: (-c[1].points_gained, c[0].account_id))
    entries = []
    for rank, (acct, delta) in enumerate(ordered[:top_n], start=1):
        name = acct.display_name or "Anonymous"
        entries.append(LeaderboardEntry(
            rank=rank,
            account_id=acct.account_id,
            display_name=name,
            initials=initials_for(name),
            points_gained=delta.points_gained,
            cumulative_points_at_end=delta.points_end,
            items_gained=delta.items_gained,
        ))
    return entries


class LeaderboardBuilder:
    def __init__(
        self,
        session_factory,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.clock = clock

    def resolve_period(self, period_kind: str, period_id: str | None = None, today: date | None = None) -> Period:
        today = today or self.clock().date()
        if period_id:
            return parse_period(period_kind, period_id, today)
        return default_period(normalize_kind(period_kind), today)

    def _account_delta(self, account: Counters, period: Period, deadline: float | None = None) -> WindowDelta:
        with self.session_factory() as s, statement_deadline(s, deadline):
            engine = WindowDeltaEngine(SnapshotStore(s, self.settings), self.settings)
            return engine.boundary_delta(account.account_id, period.start, period.end, current=account)

    def _timed_delta(self, account: Counters, period: Period, started: Dict[str, float]) -> WindowDelta:
        t0 = monotonic()
        started[account.account_id] = t0
        return self._account_delta(account, period, deadline=t0 + self.settings.account_timeout_seconds)

    def _evaluate(
        self,
        period: Period,
        accounts: Sequence[Counters],
        should_stop: Callable[[], bool] | None,
    ) -> Tuple[List[Tuple[Counters, WindowDelta]], List[AccountAggregationFailed]]:
        """
        Evaluate accounts with at most `aggregation_workers` lookups in flight.

        An account's timeout counts from the moment its lookup starts. A lookup
        past its deadline is given up and its slot goes to the next account;
        its thread is left behind, so the pool may hold more threads than slots.
        """
        stop = should_stop or (lambda: False)
        timeout = self.settings.account_timeout_seconds
        slots = max(1, self.settings.aggregation_workers)
        label = leaderboard_key(period.kind, period.period_id)

        queue = deque(accounts)
        started: Dict[str, float] = {}
        running: Dict[Future, Counters] = {}
        candidates, failures = [], []

        pool = ThreadPoolExecutor(max_workers=slots + len(accounts), thread_name_prefix="pointhud-agg")
        try:
            while queue or running:
                if stop():
                    raise AggregationCancelled(f"cancelled while evaluating {label}")
                while queue and len(running) < slots:
                    acct = queue.popleft()
                    running[pool.submit(self._timed_delta, acct, period, started)] = acct

                done, _ = wait(list(running), timeout=_next_poll(running.values(), started, timeout),
                               return_when=FIRST_COMPLETED)
                for fut in done:
                    acct = running.pop(fut)
                    try:
                        candidates.append((acct, fut.result()))
                    except Exception as e:
                        failures.append(AccountAggregationFailed(acct.account_id, e))

                now = monotonic()
                for fut, acct in list(running.items()):
                    t0 = started.get(acct.account_id)
                    if t0 is not None and now - t0 >= timeout:
                        del running[fut]
                        failures.append(AccountAggregationFailed(
                            acct.account_id, TimeoutError(f"no result after {timeout:g}s")))
            if stop():
                raise AggregationCancelled(f"cancelled before publishing {label}")
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        failures.sort(key=lambda f: f.account_id)
        for f in failures:
            log.error("%s", f)
        return candidates, failures

    def build(
        self,
        period_kind: str,
        period_id: str | None = None,
        top_n: int | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> AggregationResult:
        period = self.resolve_period(period_kind, period_id)
        top_n = top_n if top_n is not None else self.settings.leaderboard_top_n
        if top_n < 1:
            raise ValueError("top_n must be >= 1")

        with self.session_factory() as s:
            accounts = CounterStore(s, self.settings).list_accounts()
        log.info("aggregating %s (%s..%s) over %d accounts",
                 leaderboard_key(period.kind, period.period_id), period.start, period.end, len(accounts))

        candidates, failures = self._evaluate(period, accounts, should_stop)
        entries = rank_candidates(candidates, top_n)
        generated_at = self.clock()

        snapshot = LeaderboardSnapshot(
            period_kind=period.kind,
            period_id=period.period_id,
            period_start=period.start,
            period_end=period.end,
            generated_at=generated_at,
            top_n=top_n,
            entries=entries,
        )
        ok, err = validate_json(snapshot.model_dump(mode="json"), load_schema(SNAPSHOT_SCHEMA))
        if not ok:
            raise PointHudError(f"leaderboard snapshot failed schema validation: {err}")

        summaries = [
            AccountSummary(
                account_id=acct.account_id,
                period_kind=period.kind,
                period_id=period.period_id,
                points_start=d.points_start,
                points_end=d.points_end,
                points_gained=d.points_gained,
                items_gained=d.items_gained,
                generated_at=generated_at,
            )
            for acct, d in candidates
        ]

        with self.session_factory() as s:
            LeaderboardStore(s).replace(snapshot, summaries)

        log.info("wrote %s: %d entries, %d accounts failed",
                 snapshot.key, len(entries), len(failures))
        return AggregationResult(
            period_kind=period.kind,
            period_id=period.period_id,
            entry_count=len(entries),
            evaluated=len(candidates),
            failed_accounts=[f.account_id for f in failures],
        )
