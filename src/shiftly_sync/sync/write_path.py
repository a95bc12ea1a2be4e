"""Write path for application code that wants offline-tolerant writes.

The subsystem does not intercept writes on its own; repositories call
``record_write`` explicitly. In PRIMARY mode the write goes to the
primary and is mirrored to the local store, so the local copy stays a
usable fallback. When the primary write fails because the server went
away, or the broker is already in FALLBACK, the write is applied locally
and queued for replay.
"""

import logging

from shiftly_sync.database.models import PendingWrite, StoreMode, WriteKind
from shiftly_sync.database.repository import RecordStore
from shiftly_sync.utils.formatters import format_fields

logger = logging.getLogger(__name__)


def _mirror_locally(broker, write: PendingWrite, key):
    descriptor = RecordStore(broker.local).descriptor(write.table)
    payload = dict(write.payload)
    if key is not None:
        payload[descriptor.primary_key] = key
    mirrored = PendingWrite(write.table, write.kind, payload,
                            write.natural_key, write.enqueued_at)
    try:
        RecordStore(broker.local).apply(mirrored)
    except Exception as exc:  # the primary already has it
        logger.warning(format_fields(
            "local_mirror_failed", table=write.table,
            key=write.natural_key, error=exc,
        ))


def _apply_locally(broker, write: PendingWrite) -> PendingWrite:
    """Apply *write* to the local store and return the write to queue.

    The queued payload is the full stored row, so every write for one
    record shares a key and a later partial update never drops the
    columns an earlier one changed.
    """
    store = RecordStore(broker.local)
    descriptor = store.descriptor(write.table)
    if write.kind is WriteKind.DELETE:
        row = store.find(write.table, write.payload)
        store.apply(write)
    else:
        row = store.get(write.table, store.apply(write))
    if row is None:
        return write
    return PendingWrite.for_row(descriptor, write.kind, row)


def record_write(broker, buffer, write: PendingWrite) -> StoreMode:
    """Apply *write* to whichever store can take it.

    Returns the mode that served the write. Errors that are not
    connectivity problems (constraint violations and such) propagate.
    """
    if broker.current_mode() is StoreMode.PRIMARY:
        try:
            key = RecordStore(broker.primary).apply(write)
        except Exception as exc:
            if not broker.primary.is_disconnect(exc):
                raise
            logger.warning(format_fields(
                "primary_write_failed", table=write.table,
                key=write.natural_key, error=exc,
            ))
            broker.state.record_probe(False)
            broker.demote("write failed")
        else:
            _mirror_locally(broker, write, key)
            return StoreMode.PRIMARY

    buffer.enqueue(_apply_locally(broker, write))
    return StoreMode.FALLBACK
