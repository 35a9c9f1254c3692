from datetime import date, datetime, timedelta, timezone
from dateutil import parser as dtparser


def utc_now() -> datetime:
	return datetime.now(timezone.utc)

def utc_today() -> date:
	return utc_now().date()

def to_date(value) -> date:
	# Accepts date, datetime (converted to UTC) or any string dateutil can read
	if isinstance(value, datetime):
		if value.tzinfo is not None:
			value = value.astimezone(timezone.utc)
		return value.date()
	if isinstance(value, date):
		return value
	if value is None or not str(value).strip():
		raise ValueError("empty date")
	dt = dtparser.isoparse(str(value).strip())
	if dt.tzinfo is not None:
		dt = dt.astimezone(timezone.utc)
	return dt.date()

def date_key(d: date) -> str:
	# YYYY-MM-DD: lexicographic order == chronological order
	return d.isoformat()

def daterange(d0: date, d1: date):
	cur = d0
	while cur <= d1:
		yield cur
		cur = cur + timedelta(days=1)

def chunked(seq, size: int):
	if size < 1:
		raise ValueError("chunk size must be >= 1")
	for i in range(0, len(seq), size):
		yield seq[i:i + size]

def initials_for(name: str | None) -> str:
	"""
	"Sarah Chen" -> "SC", "madonna" -> "M", "" -> "A" (Anonymous).
	"""
	parts = [p for p in (name or "").split() if p]
	if not parts:
		parts = ["Anonymous"]
	return "".join(p[0] for p in parts).upper()[:2]


# persisted layout keys, used in logs and exports
def account_key(account_id: str) -> str:
	return f"accounts/{account_id}"

def snapshot_key(account_id: str, d: date) -> str:
	return f"accounts/{account_id}/dailySnapshots/{date_key(d)}"

def leaderboard_key(period_kind: str, period_id: str) -> str:
	return f"leaderboards/{period_kind}/{period_id}"


__all__ = [
	"utc_now",
	"utc_today",
	"to_date",
	"date_key",
	"daterange",
	"chunked",
	"initials_for",
	"account_key",
	"snapshot_key",
	"leaderboard_key",
]
