"""SyncEngine — one-way bulk copy from the local store to the primary.

Each run walks the table catalog in dependency order. A table is copied
only when the primary looks stale (by default: it holds fewer rows than
the local store). Copying is delete-then-insert inside one primary
connection, committing every ``batch_size`` rows. A failed table is
rolled back to its last committed batch and the run moves on; losing the
primary altogether aborts the run and leaves the mode as it was.

Only a run in which every table succeeded (or was skipped) promotes the
broker back to PRIMARY. Runs never overlap: a trigger arriving while a
run is active returns a BUSY outcome immediately, it is not queued.
"""

import logging
import threading
from typing import Optional

from shiftly_sync.config import FRESHNESS_CHECKS, Config
from shiftly_sync.database.errors import ConnectivityError
from shiftly_sync.database.models import (
    RunStatus,
    SyncRun,
    TableDescriptor,
    TableOutcome,
    TableStatus,
)
from shiftly_sync.database.repository import RecordStore
from shiftly_sync.database.schema import SYNC_TABLES, dependency_order
from shiftly_sync.sync.errors import SyncRunAbortedError, SyncTableError
from shiftly_sync.utils.formatters import format_duration, format_fields

logger = logging.getLogger(__name__)


class SyncEngine:
    """Reconciles the primary store from the local store."""

    def __init__(self, broker, tables=None, batch_size: int = None,
                 freshness_check: str = None):
        self.broker = broker
        self.tables: list[TableDescriptor] = dependency_order(
            tables or SYNC_TABLES
        )
        if batch_size is None:
            batch_size = Config.SYNC_BATCH_SIZE
        self.batch_size = max(int(batch_size), 1)
        self.freshness_check = (
            Config.FRESHNESS_CHECK if freshness_check is None
            else freshness_check
        )
        if self.freshness_check not in FRESHNESS_CHECKS:
            raise ValueError(
                f"freshness_check must be one of {FRESHNESS_CHECKS}"
            )
        self._guard = threading.Lock()
        self.last_run: Optional[SyncRun] = None

    @property
    def is_running(self) -> bool:
        return self._guard.locked()

    def run(self) -> SyncRun:
        """Perform one reconciliation pass and return its record."""
        if not self._guard.acquire(blocking=False):
            run = SyncRun()
            run.finish(RunStatus.BUSY, "sync already running")
            logger.warning(format_fields("sync_run_busy"))
            return run
        try:
            run = self._run()
        finally:
            self._guard.release()
        self.last_run = run
        return run

    # ── Run ─────────────────────────────────────────────────────

    def _run(self) -> SyncRun:
        run = SyncRun()
        logger.info(format_fields(
            "sync_run_started", tables=len(self.tables),
            mode=self.broker.current_mode().value,
            freshness=self.freshness_check,
        ))

        if not self.broker.probe_primary(demote=False):
            run.finish(RunStatus.ABORTED, "primary unreachable")
            logger.warning(format_fields(
                "sync_run_aborted", reason="primary unreachable",
            ))
            return run

        try:
            for descriptor in self.tables:
                outcome = self._sync_table(descriptor)
                run.tables.append(outcome)
                self._log_outcome(outcome)
        except SyncRunAbortedError as exc:
            run.tables.append(TableOutcome(
                exc.table, TableStatus.FAILURE, error=str(exc.cause),
            ))
            run.finish(RunStatus.ABORTED, str(exc))
            logger.error(format_fields(
                "sync_run_aborted", table=exc.table, error=exc.cause,
                completed_tables=len(run.tables) - 1,
            ))
            self.broker.state.record_probe(False)
            return run

        failed = run.failed_tables
        if failed:
            run.finish(RunStatus.FAILED, "failed tables: " + ", ".join(failed))
        else:
            run.finish(RunStatus.SUCCEEDED)
            self.broker.promote("sync completed")

        logger.log(
            logging.INFO if run.success else logging.ERROR,
            format_fields(
                "sync_run_finished", status=run.status.value,
                failed=",".join(failed) or "-",
                duration=format_duration(run.duration_seconds),
            ),
        )
        return run

    def _log_outcome(self, outcome: TableOutcome):
        level = logging.ERROR if outcome.status is TableStatus.FAILURE \
            else logging.INFO
        logger.log(level, format_fields(
            "sync_table", table=outcome.table, status=outcome.status.value,
            local=outcome.local_count, primary=outcome.primary_count,
            copied=outcome.copied, error=outcome.error or "-",
        ))

    # ── Per table ───────────────────────────────────────────────

    def _sync_table(self, descriptor: TableDescriptor) -> TableOutcome:
        name = descriptor.name
        try:
            with self.broker.local.acquire_connection() as conn:
                local_count = RecordStore.count_rows(conn, descriptor)
        except Exception as exc:  # isolated to this table
            return TableOutcome(name, TableStatus.FAILURE, error=str(exc))

        if local_count == 0:
            return TableOutcome(name, TableStatus.SKIPPED_EMPTY)

        try:
            with self.broker.primary.acquire_connection() as conn:
                primary_count = RecordStore.count_rows(conn, descriptor)
        except Exception as exc:
            if self._primary_lost(exc):
                raise SyncRunAbortedError(name, exc) from exc
            return TableOutcome(name, TableStatus.FAILURE,
                                local_count=local_count, error=str(exc))

        try:
            current = self._is_current(descriptor, local_count, primary_count)
        except Exception as exc:
            if self._primary_lost(exc):
                raise SyncRunAbortedError(name, exc) from exc
            return TableOutcome(name, TableStatus.FAILURE,
                                local_count=local_count,
                                primary_count=primary_count, error=str(exc))
        if current:
            return TableOutcome(name, TableStatus.SKIPPED_CURRENT,
                                local_count=local_count,
                                primary_count=primary_count)

        try:
            copied = self._copy_table(descriptor)
        except SyncTableError as exc:
            if self._primary_lost(exc.cause):
                raise SyncRunAbortedError(name, exc.cause) from exc
            return TableOutcome(name, TableStatus.FAILURE,
                                local_count=local_count,
                                primary_count=primary_count,
                                copied=exc.copied, error=str(exc.cause))
        return TableOutcome(name, TableStatus.SUCCESS,
                            local_count=local_count,
                            primary_count=primary_count, copied=copied)

    def _primary_lost(self, exc: BaseException) -> bool:
        """Whether *exc* means the primary went away (not the local store)."""
        if isinstance(exc, ConnectivityError):
            return exc.store == self.broker.primary.label
        return self.broker.primary.is_disconnect(exc)

    def _is_current(self, descriptor: TableDescriptor, local_count: int,
                    primary_count: int) -> bool:
        if self.freshness_check == "count":
            # Count heuristic: equal counts with different content pass.
            return primary_count >= local_count
        if primary_count != local_count:
            return False
        local_sum = RecordStore(
            self.broker.local, self.tables
        ).checksum(descriptor.name)
        primary_sum = RecordStore(
            self.broker.primary, self.tables
        ).checksum(descriptor.name)
        return local_sum == primary_sum

    def _copy_table(self, descriptor: TableDescriptor) -> int:
        """Replace the primary's rows with the local ones, in batches.

        Returns the number of rows copied. Raises SyncTableError after
        rolling back the uncommitted part.
        """
        try:
            with self.broker.local.acquire_connection() as local_conn:
                rows = RecordStore.read_rows(local_conn, descriptor)
        except Exception as exc:
            raise SyncTableError(descriptor.name, 0, exc) from exc

        try:
            conn = self.broker.primary.acquire_connection(
                enforce_foreign_keys=False
            )
        except ConnectivityError as exc:
            raise SyncTableError(descriptor.name, 0, exc) from exc

        copied = 0
        try:
            cursor = conn.execute(f"DELETE FROM {descriptor.name}")  # noqa: S608
            cursor.close()
            sql = RecordStore.insert_sql(conn, descriptor)
            for start in range(0, len(rows), self.batch_size):
                batch = rows[start:start + self.batch_size]
                cursor = conn.executemany(sql, [row.values for row in batch])
                cursor.close()
                conn.commit()
                copied += len(batch)
            conn.commit()
        except Exception as exc:
            try:
                conn.rollback()
            except Exception as rollback_exc:
                logger.debug(format_fields(
                    "rollback_failed", table=descriptor.name,
                    error=rollback_exc,
                ))
            raise SyncTableError(descriptor.name, copied, exc) from exc
        finally:
            conn.close()
        return copied
