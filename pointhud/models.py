# pointhud/models.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    String,
    Date,
    DateTime,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


# -----------------------------
# Account (SQLAlchemy 2.0 typing)
# -----------------------------
class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # cumulative counters, only changed through CounterStore.increment
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    items: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"Account(id={self.id!r}, points={self.points!r}, items={self.items!r})"


# -----------------------------
# Daily Snapshot (eine Zeile pro Account und Tag)
# -----------------------------
class DailySnapshot(Base):
    __tablename__ = "daily_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)

    account_id = Column(String(128), nullable=False)
    # stored as YYYY-MM-DD, so string order is calendar order
    day = Column(Date, nullable=False)

    points = Column(Integer, nullable=False, default=0)
    items = Column(Integer, nullable=False, default=0)

    # True for carry-forward rows written by the backfill tool
    is_synthetic = Column(Boolean, nullable=False, default=False)

    written_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # the unique index doubles as the ordered index for nearest-snapshot lookups
    __table_args__ = (
        UniqueConstraint("account_id", "day", name="uq_daily_snapshot_account_day"),
    )


# ------------------------
# Leaderboard Snapshots
# ------------------------
class LeaderboardRecord(Base):
    __tablename__ = "leaderboards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    period_kind = Column(String(16), index=True, nullable=False)  # "day", "week", "month"
    period_id = Column(String(16), nullable=False)
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, index=True, nullable=False)
    top_n = Column(Integer, nullable=False)
    entries = Column(JSON, nullable=False)
    generated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("period_kind", "period_id", name="uq_leaderboard_period"),
    )


class AccountPeriodSummary(Base):
    __tablename__ = "account_period_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String(128), index=True, nullable=False)
    period_kind = Column(String(16), nullable=False)
    period_id = Column(String(16), nullable=False)

    points_start = Column(Integer, nullable=False)
    points_end = Column(Integer, nullable=False)
    points_gained = Column(Integer, nullable=False)
    items_gained = Column(Integer, nullable=False)

    generated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("account_id", "period_kind", "period_id", name="uq_account_period_summary"),
    )
