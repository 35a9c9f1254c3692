import logging
from typing import Optional

import orjson
import typer

from .config import settings
from .db import SessionLocal, engine, init_db as create_tables
from .errors import PointHudError
from .records import ActivityEvent
from .utils import to_date, utc_today

app = typer.Typer(help="pointhud CLI: point ledger, daily snapshots and leaderboards")

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _day(value: Optional[str], name: str):
    if not value:
        return None
    try:
        return to_date(value)
    except (ValueError, OverflowError):
        typer.echo(f"Invalid date for {name}: {value!r} (expected YYYY-MM-DD)")
        raise typer.Exit(code=1)


def _fail(e: Exception):
    typer.echo(f"FEHLER: {e}")
    raise typer.Exit(code=1)


def _echo_json(payload) -> None:
    typer.echo(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode("utf-8"))


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug-Logging")):
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)


@app.command()
def init_db():
    # Create tables.
    create_tables(engine)
    typer.echo("DB initialisiert: tables created.")


@app.command()
def increment(
    account: str = typer.Option(..., help="Account id"),
    points: int = typer.Option(0, help="Points to add"),
    items: int = typer.Option(0, help="Items to add"),
    name: Optional[str] = typer.Option(None, help="Display name (optional)"),
):
    """Add points/items to an account (atomic)."""
    from .counters import CounterStore

    with SessionLocal() as s:
        try:
            c = CounterStore(s, settings).increment(account, points, items, display_name=name)
        except (PointHudError, ValueError) as e:
            _fail(e)
    typer.echo(f"{c.account_id}: points={c.points} items={c.items}")


@app.command("record-event")
def record_event(
    account: str = typer.Option(..., help="Account id"),
    positive: bool = typer.Option(..., "--positive/--negative", help="Classifier outcome"),
    points: Optional[int] = typer.Option(None, help="Override points awarded"),
    name: Optional[str] = typer.Option(None, help="Display name (optional)"),
):
    """Book a classified activity (positive: default 10 pts + 1 item, negative: 5 pts)."""
    from pydantic import ValidationError
    from .counters import CounterStore

    try:
        event = ActivityEvent(is_positive_event=positive, points_awarded=points)
    except ValidationError as e:
        _fail(e)
    with SessionLocal() as s:
        try:
            c = CounterStore(s, settings).record_event(account, event, display_name=name)
        except (PointHudError, ValueError) as e:
            _fail(e)
    typer.echo(f"{c.account_id}: points={c.points} items={c.items}")


@app.command("snapshot-daily")
def snapshot_daily(day_str: Optional[str] = typer.Argument(None, help="YYYY-MM-DD, Default = heute (UTC)")):
    """
    Schreibt für alle Accounts einen Tages-Snapshot der aktuellen Zähler.
    """
    from .counters import CounterStore
    from .snapshots import SnapshotStore

    the_day = _day(day_str, "day") or utc_today()
    with SessionLocal() as s:
        try:
            n = SnapshotStore(s, settings).snapshot_all(CounterStore(s, settings), the_day)
        except PointHudError as e:
            _fail(e)
    typer.echo(f"daily_snapshots: written={n} day={the_day}")


@app.command()
def series(
    account: str = typer.Option(..., help="Account id"),
    days: int = typer.Option(7, min=1, help="Number of days"),
    end: Optional[str] = typer.Option(None, help="Last day (YYYY-MM-DD), default today"),
    as_json: bool = typer.Option(False, "--json"),
):
    """Per-day gains for a chart."""
    from .service import PointLedgerService

    try:
        res = PointLedgerService(SessionLocal, settings).get_window_series(account, days, _day(end, "end"))
    except PointHudError as e:
        _fail(e)
    if as_json:
        _echo_json(res.model_dump(mode="json"))
        return
    for p in res.points:
        typer.echo(f"{p.label}  +{p.points_gained:>5} pts  +{p.items_gained} items")
    if res.gap_warning is not None:
        typer.echo(f"WARNUNG: {res.gap_warning}")


@app.command("run-aggregation")
def run_aggregation(
    kind: str = typer.Option("week", help="day | week | month"),
    period: Optional[str] = typer.Option(None, help="Period id, e.g. 2025-W42 or 2025-10"),
    top_n: Optional[int] = typer.Option(None, help="Leaderboard size (default from settings)"),
    token: Optional[str] = typer.Option(None, envvar="POINTHUD_ADMIN_TOKEN", help="Operator token"),
):
    """Build (or rebuild) the leaderboard snapshot for a period."""
    from .service import PointLedgerService

    try:
        res = PointLedgerService(SessionLocal, settings).run_aggregation(kind, period, top_n, token=token)
    except (PointHudError, ValueError) as e:
        _fail(e)
    typer.echo(f"OK: {res.period_kind}/{res.period_id} entries={res.entry_count} "
               f"evaluated={res.evaluated} failed={len(res.failed_accounts)}")


@app.command("show-leaderboard")
def show_leaderboard(
    kind: str = typer.Option("week", help="day | week | month"),
    period: Optional[str] = typer.Option(None, help="Period id; default: latest completed"),
    fallback: bool = typer.Option(False, help="Serve the previous period if this one is missing"),
    as_json: bool = typer.Option(False, "--json"),
):
    from .service import PointLedgerService

    svc = PointLedgerService(SessionLocal, settings)
    try:
        if period:
            snap = svc.get_leaderboard_snapshot(kind, period, fallback_to_previous=fallback)
        else:
            snap = svc.get_latest_completed_leaderboard(kind)
    except PointHudError as e:
        _fail(e)
    if as_json:
        _echo_json(snap.model_dump(mode="json"))
        return
    typer.echo(f"# {snap.key} ({snap.period_start}..{snap.period_end})")
    for e in snap.entries:
        typer.echo(f"{e.rank:>2} | {e.initials:<2} | {e.display_name} | +{e.points_gained} pts "
                   f"(total {e.cumulative_points_at_end}) | +{e.items_gained} items")


@app.command()
def backfill(
    day_str: Optional[str] = typer.Argument(None, help="Target day YYYY-MM-DD, default today (UTC)"),
    lookback: Optional[int] = typer.Option(None, min=0, help="Days before the target day"),
):
    """Fill gaps in the daily snapshot series (idempotent)."""
    from .backfill import BackfillTool

    with SessionLocal() as s:
        try:
            rep = BackfillTool(s, settings).run(_day(day_str, "day"), lookback)
        except PointHudError as e:
            _fail(e)
    typer.echo(f"FERTIG: written={rep.written} batches={rep.batches} seeded={rep.seeded} "
               f"(range {rep.start_day}..{rep.target_day}, accounts={rep.accounts})")


@app.command("dump-snapshots")
def dump_snapshots(
    account: str = typer.Option(..., help="Account id"),
    start: Optional[str] = typer.Option(None, help="YYYY-MM-DD"),
    end: Optional[str] = typer.Option(None, help="YYYY-MM-DD"),
):
    """Print an account's daily snapshots as JSON."""
    from datetime import date
    from .snapshots import SnapshotStore

    d0 = _day(start, "start") or date.min
    d1 = _day(end, "end") or date.max
    with SessionLocal() as s:
        try:
            rows = SnapshotStore(s, settings).read_range(account, d0, d1)
        except PointHudError as e:
            _fail(e)
    _echo_json([{"key": r.key, **r.model_dump(mode="json")} for r in rows])


if __name__ == "__main__":
    app()
