"""Run one sync pass now, local store to primary, and print the result.

Run:
    python execution/force_sync.py               (count heuristic)
    python execution/force_sync.py --checksum    (compare contents)
"""

import argparse
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shiftly_sync.app import configure_logging
from shiftly_sync.config import Config
from shiftly_sync.database.connection import DatabaseConnection, MySQLConnection
from shiftly_sync.database.models import StoreMode
from shiftly_sync.database.schema import initialize_database
from shiftly_sync.sync.broker import ConnectionBroker
from shiftly_sync.sync.sync_engine import SyncEngine
from shiftly_sync.utils.formatters import format_sync_run


def force_sync(freshness_check: str = None, batch_size: int = None) -> int:
    local = DatabaseConnection(Config.LOCAL_DATABASE_PATH)
    primary = MySQLConnection.from_config()
    broker = ConnectionBroker(primary, local)
    broker.force_mode(StoreMode.FALLBACK)

    initialize_database(local)
    if broker.probe_primary():
        initialize_database(primary)

    engine = SyncEngine(broker, batch_size=batch_size,
                        freshness_check=freshness_check)
    run = engine.run()
    print(format_sync_run(run))
    print(f"Mode after sync: {broker.current_mode().value}")
    return 0 if run.success else 1


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--checksum", action="store_true",
                        help="compare table contents, not only row counts")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    configure_logging("DEBUG" if args.verbose else "WARNING")
    sys.exit(force_sync(
        freshness_check="checksum" if args.checksum else None,
        batch_size=args.batch_size,
    ))


if __name__ == "__main__":
    main()
