"""Background scheduler — reachability polling and pending-write replay.

Both periodic tasks run on one QThread owned by the scheduler. The
worker object and its timers live in that thread, so a slow probe or a
long bulk copy never blocks the caller's (UI) thread, and the two tasks
never run at the same time.
"""

import logging
from typing import Optional

from PySide6.QtCore import QObject, QThread, QTimer, Signal, Slot

from shiftly_sync.config import Config
from shiftly_sync.database.models import PendingWrite, StoreMode, SyncRun
from shiftly_sync.database.repository import RecordStore
from shiftly_sync.sync.errors import BufferReplayError
from shiftly_sync.utils.formatters import format_fields

logger = logging.getLogger(__name__)


class SyncWorker(QObject):
    """Runs the periodic tasks. Lives in the scheduler's thread."""

    sync_finished = Signal(object)  # SyncRun
    drain_finished = Signal(int, int)  # replayed, still pending

    def __init__(self, broker, engine, buffer,
                 reachability_ms: int, drain_ms: int):
        super().__init__()
        self.broker = broker
        self.engine = engine
        self.buffer = buffer
        self.last_drain: Optional[dict] = None

        self._reachability_timer = QTimer(self)
        self._reachability_timer.setInterval(reachability_ms)
        self._reachability_timer.timeout.connect(self.check_reachability)

        self._drain_timer = QTimer(self)
        self._drain_timer.setInterval(drain_ms)
        self._drain_timer.timeout.connect(self.drain_pending_writes)

    @Slot()
    def start_timers(self):
        self._reachability_timer.start()
        self._drain_timer.start()

    @Slot()
    def stop(self):
        """Stop both timers and end the thread's event loop."""
        self._reachability_timer.stop()
        self._drain_timer.stop()
        QThread.currentThread().quit()

    # ── Reachability task ───────────────────────────────────────

    @Slot()
    def check_reachability(self) -> Optional[SyncRun]:
        """In FALLBACK, probe the primary and reconcile if it is back."""
        try:
            if self.broker.current_mode() is not StoreMode.FALLBACK:
                return None
            if not self.broker.probe_primary():
                return None
            logger.info(format_fields("primary_back", action="sync"))
            return self._run_sync()
        except Exception:
            logger.exception("reachability_task_failed")
            return None

    @Slot()
    def sync_now(self) -> Optional[SyncRun]:
        """Manual trigger: reconcile regardless of the current mode."""
        try:
            return self._run_sync()
        except Exception:
            logger.exception("manual_sync_failed")
            return None

    def _run_sync(self) -> SyncRun:
        run = self.engine.run()
        self.sync_finished.emit(run)
        return run

    # ── Buffer-drain task ───────────────────────────────────────

    def _replay(self, store: RecordStore, write: PendingWrite):
        try:
            store.apply(write)
        except Exception as exc:
            raise BufferReplayError(write.natural_key, exc) from exc

    @Slot()
    def drain_pending_writes(self) -> tuple[int, int]:
        """Replay queued writes against the primary, oldest first.

        Successful writes are removed; failed ones stay queued for the
        next cycle. Returns (replayed, still pending).
        """
        try:
            replayed, remaining = self._drain()
        except Exception:
            logger.exception("drain_task_failed")
            replayed, remaining = 0, self.buffer.size()
        self.drain_finished.emit(replayed, remaining)
        return replayed, remaining

    def _drain(self) -> tuple[int, int]:
        if not self.buffer.has_pending():
            return 0, 0
        if not self.broker.probe_primary():
            logger.info(format_fields(
                "buffer_drain_skipped", reason="primary unreachable",
                pending=self.buffer.size(),
            ))
            return 0, self.buffer.size()

        store = RecordStore(self.broker.primary)
        replayed = failed = 0
        for write in self.buffer.drain_all():
            try:
                self._replay(store, write)
            except BufferReplayError as exc:
                failed += 1
                logger.warning(format_fields(
                    "pending_write_failed", table=write.table,
                    kind=write.kind.value, key=write.natural_key,
                    error=exc.cause,
                ))
                continue
            self.buffer.remove(write.natural_key, expected=write)
            replayed += 1
            logger.info(format_fields(
                "pending_write_replayed", table=write.table,
                kind=write.kind.value, key=write.natural_key,
            ))

        remaining = self.buffer.size()
        self.last_drain = {
            "replayed": replayed, "failed": failed, "remaining": remaining,
        }
        logger.info(format_fields(
            "buffer_drain_finished", replayed=replayed, failed=failed,
            remaining=remaining,
        ))
        return replayed, remaining


class BackgroundScheduler(QObject):
    """Owns the worker thread; start/stop and manual triggers."""

    sync_finished = Signal(object)  # SyncRun
    drain_finished = Signal(int, int)  # replayed, still pending

    _stop_requested = Signal()
    _sync_requested = Signal()
    _drain_requested = Signal()

    def __init__(self, broker, engine, buffer,
                 reachability_interval: float = None,
                 drain_interval: float = None, parent=None):
        super().__init__(parent)
        self.broker = broker
        self.engine = engine
        self.buffer = buffer
        self.reachability_interval = (
            Config.REACHABILITY_INTERVAL_SECONDS
            if reachability_interval is None else reachability_interval
        )
        self.drain_interval = (
            Config.DRAIN_INTERVAL_SECONDS
            if drain_interval is None else drain_interval
        )
        self._thread: Optional[QThread] = None
        self._worker: Optional[SyncWorker] = None
        self._connections = []

    def _interval_ms(self, seconds: float) -> int:
        return max(int(seconds * 1000), 1)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.isRunning()

    def start(self):
        """Start both periodic tasks on the background thread."""
        if self.is_running:
            return
        worker = SyncWorker(
            self.broker, self.engine, self.buffer,
            reachability_ms=self._interval_ms(self.reachability_interval),
            drain_ms=self._interval_ms(self.drain_interval),
        )
        thread = QThread()
        thread.setObjectName("shiftly-sync")
        worker.moveToThread(thread)

        self._connections = [
            (thread.started, worker.start_timers),
            (self._stop_requested, worker.stop),
            (self._sync_requested, worker.sync_now),
            (self._drain_requested, worker.drain_pending_writes),
            (worker.sync_finished, self.sync_finished),
            (worker.drain_finished, self.drain_finished),
        ]
        for signal, slot in self._connections:
            signal.connect(slot)

        self._worker = worker
        self._thread = thread
        thread.start()
        logger.info(format_fields(
            "scheduler_started",
            reachability_interval=self.reachability_interval,
            drain_interval=self.drain_interval,
        ))

    def stop(self, timeout: float = None) -> bool:
        """Stop the tasks, waiting up to *timeout* seconds for in-flight work.

        Returns True when the worker thread finished in time.
        """
        if self._thread is None:
            return True
        timeout = Config.SHUTDOWN_TIMEOUT_SECONDS if timeout is None \
            else timeout

        # Queued behind any running task, so in-flight work completes first
        self._stop_requested.emit()
        finished = self._thread.wait(self._interval_ms(timeout))
        if not finished:
            logger.warning(format_fields(
                "scheduler_stop_timeout", timeout=timeout,
            ))
            self._thread.quit()
            finished = self._thread.wait(self._interval_ms(timeout))

        for signal, slot in self._connections:
            signal.disconnect(slot)
        self._connections = []
        if finished:
            self._thread = None
            self._worker = None
        logger.info(format_fields("scheduler_stopped", clean=finished))
        return finished

    def request_sync(self) -> bool:
        """Queue an immediate sync run on the worker thread."""
        if not self.is_running:
            logger.warning(format_fields(
                "sync_request_ignored", reason="scheduler not running",
            ))
            return False
        self._sync_requested.emit()
        return True

    def request_drain(self) -> bool:
        """Queue an immediate buffer drain on the worker thread."""
        if not self.is_running:
            logger.warning(format_fields(
                "drain_request_ignored", reason="scheduler not running",
            ))
            return False
        self._drain_requested.emit()
        return True

    def get_status(self) -> dict:
        """Current sync status information."""
        state = self.broker.state
        last_run = self.engine.last_run
        last_probe = state.last_probe_at
        return {
            "running": self.is_running,
            "mode": self.broker.current_mode().value,
            "primary_reachable": state.primary_reachable,
            "last_probe_at": last_probe.isoformat() if last_probe else None,
            "sync_running": self.engine.is_running,
            "last_run": last_run.summary() if last_run else None,
            "last_drain": self._worker.last_drain if self._worker else None,
            "pending_writes": self.buffer.stats(),
            "reachability_interval": self.reachability_interval,
            "drain_interval": self.drain_interval,
        }
