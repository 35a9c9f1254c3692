import logging
import time
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError, OperationalError

from pointhud.db import statement_deadline
from pointhud.errors import AggregationCancelled, InvalidPeriod, StoreUnavailable
from pointhud.leaderboard import LeaderboardBuilder, LeaderboardStore
from pointhud.models import LeaderboardRecord
from pointhud.records import LeaderboardSnapshot
from pointhud.windows import WindowDeltaEngine

WEEK = "2025-W41"  # 2025-10-06 .. 2025-10-12


@pytest.fixture
def builder(session_factory, cfg, clock):
    return LeaderboardBuilder(session_factory, cfg, clock=clock)


@pytest.fixture
def populated(seed):
    seed("carol", "Carol Diaz", points=300, snapshots=[("2025-10-05", 200, 1), ("2025-10-12", 300, 4)])
    seed("alice", "Alice Brown", points=150, snapshots=[("2025-10-06", 100, 0), ("2025-10-10", 150, 2)])
    seed("bob", "bob", points=90, snapshots=[("2025-10-01", 40, 0), ("2025-10-09", 90, 1)])
    seed("dave", None, points=500)  # no snapshots at all


def _snapshot(session_factory, period_id=WEEK):
    with session_factory() as s:
        return LeaderboardStore(s).get("week", period_id)


def test_ranks_by_gain_with_ties_broken_by_account_id(builder, populated, session_factory):
    res = builder.build("week", WEEK)
    assert (res.period_id, res.entry_count, res.evaluated, res.failed_accounts) == (WEEK, 4, 4, [])

    snap = _snapshot(session_factory)
    assert (snap.period_start.isoformat(), snap.period_end.isoformat()) == ("2025-10-06", "2025-10-12")
    assert [(e.rank, e.account_id, e.points_gained) for e in snap.entries] == [
        (1, "carol", 100),
        (2, "alice", 50),
        (3, "bob", 50),
        (4, "dave", 0),
    ]
    carol = snap.entries[0]
    assert (carol.initials, carol.cumulative_points_at_end, carol.items_gained) == ("CD", 300, 3)
    dave = snap.entries[3]
    assert (dave.display_name, dave.initials, dave.cumulative_points_at_end) == ("Anonymous", "A", 500)

    for a, b in zip(snap.entries, snap.entries[1:]):
        assert a.points_gained > b.points_gained or (
            a.points_gained == b.points_gained and a.account_id < b.account_id
        )


def test_top_n_truncates(builder, populated, session_factory):
    res = builder.build("week", WEEK, top_n=2)
    assert res.entry_count == 2
    snap = _snapshot(session_factory)
    assert [e.account_id for e in snap.entries] == ["carol", "alice"]
    assert snap.top_n == 2

    with pytest.raises(ValueError):
        builder.build("week", WEEK, top_n=0)


def test_rerun_replaces_and_is_idempotent(builder, populated, session_factory):
    builder.build("week", WEEK)
    first = _snapshot(session_factory)
    builder.build("week", WEEK)
    second = _snapshot(session_factory)

    assert first.entries == second.entries
    assert (first.period_start, first.period_end) == (second.period_start, second.period_end)
    with session_factory() as s:
        assert s.execute(select(func.count()).select_from(LeaderboardRecord)).scalar_one() == 1


def test_rerun_with_more_data_corrects_snapshot(builder, populated, seed, session_factory):
    builder.build("week", WEEK)
    seed("erin", "Erin", points=0, snapshots=[("2025-10-06", 0, 0), ("2025-10-11", 1000, 9)])
    builder.build("week", WEEK)
    assert _snapshot(session_factory).entries[0].account_id == "erin"


def test_failing_account_is_skipped(builder, populated, session_factory, monkeypatch, caplog):
    original = WindowDeltaEngine.boundary_delta

    def flaky(self, account_id, *args, **kwargs):
        if account_id == "alice":
            raise RuntimeError("corrupt series")
        return original(self, account_id, *args, **kwargs)

    monkeypatch.setattr(WindowDeltaEngine, "boundary_delta", flaky)
    with caplog.at_level(logging.ERROR, logger="pointhud.leaderboard"):
        res = builder.build("week", WEEK)

    assert res.failed_accounts == ["alice"]
    assert res.evaluated == 3
    assert [e.account_id for e in _snapshot(session_factory).entries] == ["carol", "bob", "dave"]
    assert any("alice" in r.getMessage() for r in caplog.records)


def test_slow_account_times_out_as_account_failure(session_factory, cfg, clock, populated, monkeypatch):
    import threading

    release = threading.Event()
    original = WindowDeltaEngine.boundary_delta

    def slow(self, account_id, *args, **kwargs):
        if account_id == "bob":
            release.wait(5)
        return original(self, account_id, *args, **kwargs)

    monkeypatch.setattr(WindowDeltaEngine, "boundary_delta", slow)
    builder = LeaderboardBuilder(session_factory, cfg.model_copy(update={"account_timeout_seconds": 0.2}), clock=clock)
    try:
        res = builder.build("week", WEEK)
    finally:
        release.set()
    assert res.failed_accounts == ["bob"]
    assert res.entry_count == 3


def test_cancelled_run_publishes_nothing(builder, populated, session_factory):
    builder.build("week", WEEK, top_n=1)
    before = _snapshot(session_factory)

    calls = {"n": 0}

    def stop_after_two():
        calls["n"] += 1
        return calls["n"] > 2

    with pytest.raises(AggregationCancelled):
        builder.build("week", WEEK, should_stop=stop_after_two)
    assert _snapshot(session_factory) == before


def test_invalid_period_fails_before_any_work(builder, populated, session_factory):
    with pytest.raises(InvalidPeriod):
        builder.build("week", "2025-42")
    with session_factory() as s:
        assert s.execute(select(func.count()).select_from(LeaderboardRecord)).scalar_one() == 0


def test_default_period_and_account_summaries(builder, populated, session_factory):
    res = builder.build("month")
    assert res.period_id == "2025-09"

    builder.build("week", WEEK)
    with session_factory() as s:
        summary = LeaderboardStore(s).get_summary("carol", "week", WEEK)
    assert (summary.points_start, summary.points_end, summary.points_gained, summary.items_gained) == (200, 300, 100, 3)


def test_stuck_account_does_not_starve_queued_accounts(session_factory, cfg, clock, populated, monkeypatch, caplog):
    import threading

    release = threading.Event()
    original = WindowDeltaEngine.boundary_delta

    def stuck(self, account_id, *args, **kwargs):
        if account_id == "bob":
            release.wait(5)
        return original(self, account_id, *args, **kwargs)

    monkeypatch.setattr(WindowDeltaEngine, "boundary_delta", stuck)
    one_slot = cfg.model_copy(update={"aggregation_workers": 1, "account_timeout_seconds": 0.3})
    builder = LeaderboardBuilder(session_factory, one_slot, clock=clock)
    try:
        with caplog.at_level(logging.ERROR, logger="pointhud.leaderboard"):
            res = builder.build("week", WEEK)
    finally:
        release.set()

    assert res.failed_accounts == ["bob"]
    assert res.evaluated == 3
    assert [e.account_id for e in _snapshot(session_factory).entries] == ["carol", "alice", "dave"]
    assert [r.getMessage() for r in caplog.records if "carol" in r.getMessage() or "dave" in r.getMessage()] == []


def test_expired_deadline_interrupts_sqlite_statement(session):
    with pytest.raises(OperationalError):
        with statement_deadline(session, time.monotonic() - 1):
            session.execute(text(
                "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c WHERE x < 1000000) "
                "SELECT count(*) FROM c"
            )).scalar_one()
    session.rollback()

    # the handler is gone once the block is left
    assert session.execute(text("SELECT 1")).scalar_one() == 1


def _week_snapshot(entries=()):
    return LeaderboardSnapshot(
        period_kind="week",
        period_id=WEEK,
        period_start=date(2025, 10, 6),
        period_end=date(2025, 10, 12),
        generated_at=datetime(2025, 10, 13, tzinfo=timezone.utc),
        top_n=10,
        entries=list(entries),
    )


def _racing_commit(session, monkeypatch, conflicts):
    real_commit = session.commit
    calls = {"n": 0}

    def commit():
        calls["n"] += 1
        if calls["n"] <= conflicts:
            raise IntegrityError("INSERT INTO leaderboards", {}, Exception("UNIQUE constraint failed"))
        return real_commit()

    monkeypatch.setattr(session, "commit", commit)
    return calls


def test_publish_conflict_is_retried(session, monkeypatch, session_factory):
    calls = _racing_commit(session, monkeypatch, conflicts=1)
    LeaderboardStore(session).replace(_week_snapshot())
    assert calls["n"] == 2
    assert _snapshot(session_factory).period_id == WEEK


def test_repeated_publish_conflict_raises_store_unavailable(session, monkeypatch, session_factory):
    _racing_commit(session, monkeypatch, conflicts=2)
    with pytest.raises(StoreUnavailable):
        LeaderboardStore(session).replace(_week_snapshot())
    assert _snapshot(session_factory) is None
