from datetime import date, datetime, timezone

import pytest

from pointhud.config import Settings
from pointhud.db import init_db, make_engine, make_session_factory
from pointhud.snapshots import SnapshotStore
from pointhud.counters import CounterStore

NOW = datetime(2025, 10, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def cfg(tmp_path):
    return Settings(
        db_path=str(tmp_path / "points.db"),
        database_url=None,
        admin_token="s3cret",
        leaderboard_top_n=10,
        backfill_lookback_days=6,
        write_batch_size=450,
        max_batch_size=500,
        aggregation_workers=2,
        account_timeout_seconds=10.0,
        gap_tolerance_days=0,
    )


@pytest.fixture
def db_engine(cfg):
    e = make_engine(cfg.sqlalchemy_url)
    init_db(e)
    yield e
    e.dispose()


@pytest.fixture
def engine(db_engine):
    return db_engine


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def session(session_factory):
    with session_factory() as s:
        yield s


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def seed(session_factory, cfg):
    """seed("a", "Ann Lee", points=170, snapshots=[("2025-10-01", 100, 3), ...])"""

    def _seed(account_id, name=None, points=0, items=0, snapshots=()):
        with session_factory() as s:
            CounterStore(s, cfg).increment(account_id, points, items, display_name=name)
            store = SnapshotStore(s, cfg)
            for day, p, i in snapshots:
                store.write_snapshot(account_id, date.fromisoformat(day), p, i)

    return _seed
