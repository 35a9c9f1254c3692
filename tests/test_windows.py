import logging
from datetime import date

import pytest

from pointhud.errors import GapDetected
from pointhud.records import Counters
from pointhud.snapshots import SnapshotStore
from pointhud.windows import WindowDeltaEngine

D = date.fromisoformat


@pytest.fixture
def store(session, cfg):
    return SnapshotStore(session, cfg)


@pytest.fixture
def engine(store, cfg):
    return WindowDeltaEngine(store, cfg)


def test_boundary_delta_uses_first_snapshot_in_window_as_baseline(store, engine):
    store.write_snapshot("A", D("2025-10-01"), 100, 10)
    store.write_snapshot("A", D("2025-10-08"), 170, 14)

    delta = engine.boundary_delta("A", D("2025-10-01"), D("2025-10-08"))
    assert delta.points_gained == 70
    assert delta.items_gained == 4
    assert (delta.points_start, delta.points_end) == (100, 170)


def test_boundary_delta_prefers_snapshot_before_window(store, engine):
    store.write_snapshot("A", D("2025-09-30"), 90, 0)
    store.write_snapshot("A", D("2025-10-03"), 120, 0)
    store.write_snapshot("A", D("2025-10-20"), 500, 0)

    delta = engine.boundary_delta("A", D("2025-10-01"), D("2025-10-08"))
    assert delta.points_gained == 30
    assert delta.points_end == 120


def test_account_without_snapshots_gains_nothing(engine):
    current = Counters(account_id="B", points=55, items=3)
    delta = engine.boundary_delta("B", D("2025-10-01"), D("2025-10-08"), current=current)
    assert delta.points_gained == 0
    assert delta.items_gained == 0
    # the leaderboard still shows the live total
    assert delta.points_end == 55


def test_first_ever_snapshot_yields_zero_until_second_exists(store, engine):
    store.write_snapshot("A", D("2025-10-03"), 400, 9)

    for end in ("2025-10-03", "2025-10-05", "2025-11-01"):
        assert engine.boundary_delta("A", D("2025-10-01"), D(end)).points_gained == 0
        assert engine.day_gain("A", D(end)) == 0

    store.write_snapshot("A", D("2025-10-04"), 430, 9)
    assert engine.boundary_delta("A", D("2025-10-01"), D("2025-10-05")).points_gained == 30
    assert engine.day_gain("A", D("2025-10-04")) == 30


def test_recorded_decrease_is_clamped_and_logged(store, engine, caplog):
    store.write_snapshot("A", D("2025-10-01"), 200, 5)
    store.write_snapshot("A", D("2025-10-02"), 150, 5)

    with caplog.at_level(logging.WARNING, logger="pointhud.windows"):
        assert engine.day_gain("A", D("2025-10-02")) == 0
        assert engine.boundary_delta("A", D("2025-10-01"), D("2025-10-02")).points_gained == 0
    assert any("ledger decrease" in r.getMessage() for r in caplog.records)


def test_series_computes_each_day_and_reports_gaps(store, engine, caplog):
    store.write_snapshot("A", D("2025-10-05"), 100, 1)
    store.write_snapshot("A", D("2025-10-06"), 110, 2)
    store.write_snapshot("A", D("2025-10-08"), 130, 4)

    with caplog.at_level(logging.WARNING, logger="pointhud.windows"):
        series = engine.series("A", days=4, end_day=D("2025-10-08"))

    assert series.as_pairs() == [
        ("2025-10-05", 0),   # first snapshot, no baseline
        ("2025-10-06", 10),
        ("2025-10-07", 0),   # missing day
        ("2025-10-08", 20),
    ]
    assert [p.items_gained for p in series.points] == [0, 1, 0, 2]
    assert series.missing_days == [D("2025-10-07")]
    assert isinstance(series.gap_warning, GapDetected)
    assert series.gap_warning.missing_days == [D("2025-10-07")]
    assert caplog.records


def test_series_before_any_snapshot_is_all_zero_without_gaps(engine):
    series = engine.series("nobody", days=7, end_day=D("2025-10-08"))
    assert len(series.points) == 7
    assert all(p.points_gained == 0 for p in series.points)
    assert series.gap_warning is None


def test_gap_tolerance_lets_a_day_use_the_previous_snapshot(store, cfg):
    engine = WindowDeltaEngine(store, cfg.model_copy(update={"gap_tolerance_days": 1}))
    store.write_snapshot("A", D("2025-10-05"), 100, 0)
    store.write_snapshot("A", D("2025-10-06"), 110, 0)

    series = engine.series("A", days=2, end_day=D("2025-10-07"))
    assert series.as_pairs() == [("2025-10-06", 10), ("2025-10-07", 10)]
    assert series.missing_days == []


def test_invalid_arguments(engine):
    with pytest.raises(ValueError):
        engine.series("A", days=0)
    with pytest.raises(ValueError):
        engine.boundary_delta("A", D("2025-10-08"), D("2025-10-01"))
