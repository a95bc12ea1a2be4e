"""Snapshot the local store while the service may still be writing to it.

Run:
    python execution/db_backup.py
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shiftly_sync.app import configure_logging
from shiftly_sync.config import Config
from shiftly_sync.database.backup import backup_local_store, list_backups
from shiftly_sync.database.connection import DatabaseConnection


def main() -> int:
    configure_logging("WARNING")
    db = DatabaseConnection(Config.LOCAL_DATABASE_PATH)
    target = backup_local_store(db, Config.BACKUP_PATH)
    if target is None:
        print(f"Local store not found at {db.db_path}")
        return 1
    print(f"Backup created: {target}")
    print(f"{len(list_backups(Config.BACKUP_PATH))} backups kept in "
          f"{Config.BACKUP_PATH}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
