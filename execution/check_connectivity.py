"""Connectivity check — reports whether each store answers, and row counts.

Run:
    python execution/check_connectivity.py
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shiftly_sync.config import Config
from shiftly_sync.database.connection import DatabaseConnection, MySQLConnection
from shiftly_sync.database.repository import RecordStore
from shiftly_sync.sync.broker import ConnectionBroker
from shiftly_sync.utils.formatters import format_table_counts


def check_connectivity() -> int:
    """Print a reachability report; exit status 1 if the primary is down."""
    local = DatabaseConnection(Config.LOCAL_DATABASE_PATH)
    primary = MySQLConnection.from_config()
    broker = ConnectionBroker(primary, local)

    report = broker.connectivity_report()
    for name in ("primary", "local"):
        entry = report[name]
        status = "OK" if entry["reachable"] else f"DOWN ({entry['error']})"
        print(f"{name:<8} {entry['store']:<40} {status}")

    for name, store in (("primary", primary), ("local", local)):
        if not report[name]["reachable"]:
            continue
        try:
            counts = RecordStore(store).table_counts()
        except Exception as e:
            print(f"{name}: could not count rows: {e}")
            continue
        print(format_table_counts(counts, title=f"{name} store"))

    return 0 if report["primary"]["reachable"] else 1


if __name__ == "__main__":
    sys.exit(check_connectivity())
