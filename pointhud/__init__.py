"""
Initialisiert das pointhud-Paket: Punkte-Ledger, Tages-Snapshots und Leaderboards.
Die __all__-Liste definiert die öffentlichen Submodule des Pakets.
"""
__all__ = [
    "config", "db", "models", "errors", "records", "utils",
    "counters", "snapshots", "windows", "periods", "leaderboard",
    "backfill", "service", "cli",
]

# NOTE: Do not import submodules here. `cli` configures logging and `db`
# creates the engine at import time; import them explicitly where needed.
