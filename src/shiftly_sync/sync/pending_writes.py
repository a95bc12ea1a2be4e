"""PendingWriteBuffer — writes waiting for the primary store to come back.

Memory-only: queued writes are lost when the process exits. Entries are
keyed by natural key, so re-enqueuing the same logical record replaces
the earlier payload and moves it to the back of the queue.
"""

import logging
import threading
from collections import OrderedDict
from typing import Iterator, Optional

from shiftly_sync.database.models import PendingWrite
from shiftly_sync.utils.formatters import format_fields

logger = logging.getLogger(__name__)


class PendingSnapshot:
    """Frozen view of the buffer at one instant; iterable any number of times."""

    def __init__(self, writes: list[PendingWrite]):
        self._writes = writes

    def __iter__(self) -> Iterator[PendingWrite]:
        return iter(self._writes)

    def __len__(self) -> int:
        return len(self._writes)

    def __bool__(self) -> bool:
        return bool(self._writes)


class PendingWriteBuffer:
    """Thread-safe queue of PendingWrites, in enqueue order."""

    def __init__(self):
        self._lock = threading.Lock()
        self._writes: "OrderedDict[str, PendingWrite]" = OrderedDict()

    def enqueue(self, write: PendingWrite):
        with self._lock:
            replaced = self._writes.pop(write.natural_key, None) is not None
            self._writes[write.natural_key] = write
            size = len(self._writes)
        logger.info(format_fields(
            "pending_write_enqueued", table=write.table,
            kind=write.kind.value, key=write.natural_key,
            replaced=replaced, size=size,
        ))

    def drain_all(self) -> PendingSnapshot:
        """Snapshot of queued writes, oldest first. Nothing is removed."""
        with self._lock:
            return PendingSnapshot(list(self._writes.values()))

    def get(self, natural_key: str) -> Optional[PendingWrite]:
        with self._lock:
            return self._writes.get(natural_key)

    def remove(self, natural_key: str,
               expected: Optional[PendingWrite] = None) -> bool:
        """Remove one entry after a successful replay.

        With *expected*, the entry is only removed if it is still that
        exact write; a newer payload enqueued during the replay stays.
        """
        with self._lock:
            current = self._writes.get(natural_key)
            if current is None:
                return False
            if expected is not None and current is not expected:
                return False
            del self._writes[natural_key]
            return True

    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._writes)

    def size(self) -> int:
        with self._lock:
            return len(self._writes)

    __len__ = size

    def clear(self):
        with self._lock:
            dropped = len(self._writes)
            self._writes.clear()
        logger.info(format_fields("pending_writes_cleared", dropped=dropped))

    def stats(self) -> dict:
        """Total and per-table counts of queued writes."""
        with self._lock:
            writes = list(self._writes.values())
        by_table: dict[str, int] = {}
        for write in writes:
            by_table[write.table] = by_table.get(write.table, 0) + 1
        return {
            "total": len(writes),
            "by_table": by_table,
            "oldest": writes[0].enqueued_at.isoformat() if writes else None,
        }
