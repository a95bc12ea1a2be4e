"""Timestamped snapshots of the local store."""

import logging
from datetime import datetime
from pathlib import Path

from shiftly_sync.utils.formatters import format_fields

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "shiftly_local_"
KEEP_BACKUPS = 10


def list_backups(backup_dir: Path) -> list[Path]:
    """Existing snapshots, newest first."""
    return sorted(Path(backup_dir).glob(f"{BACKUP_PREFIX}*.db"), reverse=True)


def backup_local_store(db, backup_dir: Path, keep: int = KEEP_BACKUPS,
                       now: datetime = None) -> Path | None:
    """Snapshot *db* into *backup_dir* and prune all but the newest *keep*.

    Returns the new snapshot path, or None when the store file does not
    exist yet.
    """
    if not db.db_path.exists():
        logger.warning(format_fields(
            "backup_skipped", store=db.label, reason="no store file",
        ))
        return None

    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    target = db.backup_to(Path(backup_dir) / f"{BACKUP_PREFIX}{stamp}.db")
    logger.info(format_fields("backup_created", store=db.label, file=target))

    for old in list_backups(backup_dir)[max(keep, 1):]:
        old.unlink()
        logger.info(format_fields("backup_pruned", file=old.name))
    return target
