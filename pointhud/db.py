"""
Initialisiert die Datenbankverbindung und stellt die SQLAlchemy-Basisobjekte bereit.
Standard ist SQLite, die URL wird aus den Settings geladen.
"""
import time
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import settings
from .errors import StoreUnavailable


def make_engine(url: str, echo: bool = False):
    connect_args = {}
    if url.startswith("sqlite"):
        # worker threads of the leaderboard builder check out pooled connections
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, echo=echo, future=True, pool_pre_ping=True, connect_args=connect_args)


def make_session_factory(bind):
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


# Engine und Session für die Datenbank
engine = make_engine(settings.sqlalchemy_url)
SessionLocal = make_session_factory(engine)
Base = declarative_base()


def init_db(bind=None) -> None:
    # import registers the tables on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def store_errors(session=None):
    """Translate connection-level SQLAlchemy failures into StoreUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError, DisconnectionError) as e:
        if session is not None:
            session.rollback()
        raise StoreUnavailable(str(e.orig) if getattr(e, "orig", None) is not None else str(e)) from e


@contextmanager
def statement_deadline(session, deadline: float | None, check_every: int = 200):
    """
    Bricht SQLite-Statements ab, die nach `deadline` (time.monotonic()) noch laufen.
    Der Treiber wirft dann OperationalError ("interrupted"), der Worker-Thread wird frei.
    Andere Dialekte laufen unverändert.
    """
    if deadline is None or session.get_bind().dialect.name != "sqlite":
        yield
        return
    raw = session.connection().connection.driver_connection
    raw.set_progress_handler(lambda: 1 if time.monotonic() > deadline else 0, check_every)
    try:
        yield
    finally:
        raw.set_progress_handler(None, 0)
