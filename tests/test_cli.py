import json

import pytest
from typer.testing import CliRunner

from pointhud import cli


@pytest.fixture
def runner(monkeypatch, session_factory, engine, cfg):
    monkeypatch.setattr(cli, "SessionLocal", session_factory)
    monkeypatch.setattr(cli, "engine", engine)
    monkeypatch.setattr(cli, "settings", cfg)
    return CliRunner()


def test_increment_snapshot_and_dump(runner):
    res = runner.invoke(cli.app, ["increment", "--account", "u1", "--points", "25", "--items", "2", "--name", "Sam Patel"])
    assert res.exit_code == 0, res.output
    assert "points=25" in res.output

    res = runner.invoke(cli.app, ["snapshot-daily", "2025-10-01"])
    assert res.exit_code == 0, res.output

    res = runner.invoke(cli.app, ["dump-snapshots", "--account", "u1"])
    assert res.exit_code == 0, res.output
    rows = json.loads(res.output)
    assert rows[0]["key"] == "accounts/u1/dailySnapshots/2025-10-01"
    assert (rows[0]["points"], rows[0]["items"]) == (25, 2)


def test_record_event(runner):
    res = runner.invoke(cli.app, ["record-event", "--account", "u1", "--positive"])
    assert res.exit_code == 0, res.output
    assert "points=10 items=1" in res.output


def test_run_aggregation_rejects_bad_token(runner):
    res = runner.invoke(cli.app, ["run-aggregation", "--kind", "week", "--period", "2025-W41", "--token", "nope"])
    assert res.exit_code == 1


def test_run_aggregation_and_show(runner):
    runner.invoke(cli.app, ["increment", "--account", "u1", "--points", "5"])
    res = runner.invoke(cli.app, ["run-aggregation", "--kind", "month", "--period", "2025-09", "--token", "s3cret"])
    assert res.exit_code == 0, res.output

    res = runner.invoke(cli.app, ["show-leaderboard", "--kind", "month", "--period", "2025-09", "--json"])
    assert res.exit_code == 0, res.output
    payload = json.loads(res.output)
    assert payload["period_id"] == "2025-09"
    assert payload["entries"][0]["account_id"] == "u1"


def test_invalid_date_argument(runner):
    res = runner.invoke(cli.app, ["backfill", "not-a-date"])
    assert res.exit_code == 1
