"""
Konfigurationsmodul für pointhud.
Lädt Einstellungen aus Umgebungsvariablen (und .env) und stellt sie als Settings-Objekt bereit.
"""
from pydantic import BaseModel, Field
from dotenv import load_dotenv
import os

load_dotenv()


def _env_int(key: str, default: int) -> int:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid integer for {key}: {raw!r}") from e


def _env_float(key: str, default: float) -> float:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid number for {key}: {raw!r}") from e


class Settings(BaseModel):
    """
    Settings-Objekt, das alle relevanten Konfigurationswerte aus Umgebungsvariablen lädt.
    """
    db_path: str = os.environ.get("DB_PATH", "points.db")
    database_url: str | None = os.environ.get("DATABASE_URL") or None

    # operator credential for run-aggregation; unset means every trigger is rejected
    admin_token: str | None = os.environ.get("ADMIN_TOKEN") or None

    leaderboard_top_n: int = Field(default=_env_int("LEADERBOARD_TOP_N", 10), ge=1)
    backfill_lookback_days: int = Field(default=_env_int("BACKFILL_LOOKBACK_DAYS", 6), ge=0)

    # the store accepts at most max_batch_size writes per transaction
    write_batch_size: int = Field(default=_env_int("WRITE_BATCH_SIZE", 450), ge=1)
    max_batch_size: int = Field(default=_env_int("MAX_BATCH_SIZE", 500), ge=1)

    aggregation_workers: int = Field(default=_env_int("AGGREGATION_WORKERS", 4), ge=1)
    account_timeout_seconds: float = Field(default=_env_float("ACCOUNT_TIMEOUT_SECONDS", 10.0), gt=0)
    gap_tolerance_days: int = Field(default=_env_int("GAP_TOLERANCE_DAYS", 0), ge=0)

    positive_event_points: int = Field(default=_env_int("POSITIVE_EVENT_POINTS", 10), ge=0)
    negative_event_points: int = Field(default=_env_int("NEGATIVE_EVENT_POINTS", 5), ge=0)

    log_level: str = os.environ.get("LOG_LEVEL", "INFO")

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.db_path}"

    def effective_batch_size(self) -> int:
        return min(self.write_batch_size, self.max_batch_size)


# Instanz der Settings, wird von anderen Modulen importiert
settings = Settings()
