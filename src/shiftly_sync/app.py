"""Application entry point — wires both stores and runs the sync service."""

import logging
import signal
import sys
from dataclasses import dataclass

from PySide6.QtCore import QCoreApplication, QTimer

from shiftly_sync.config import Config
from shiftly_sync.database.connection import DatabaseConnection, MySQLConnection
from shiftly_sync.database.models import StoreMode
from shiftly_sync.database.schema import initialize_database
from shiftly_sync.sync.broker import ConnectionBroker
from shiftly_sync.sync.pending_writes import PendingWriteBuffer
from shiftly_sync.sync.scheduler import BackgroundScheduler
from shiftly_sync.sync.sync_engine import SyncEngine
from shiftly_sync.utils.formatters import format_fields

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


def configure_logging(level: str = None, log_file: str = None):
    """Send log records to stderr and, if configured, a file."""
    level = (level or Config.LOG_LEVEL).upper()
    log_file = Config.LOG_FILE if log_file is None else log_file
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


@dataclass
class SyncRuntime:
    """Everything the service needs, built once at startup."""

    local: DatabaseConnection
    primary: object
    broker: ConnectionBroker
    buffer: PendingWriteBuffer
    engine: SyncEngine
    scheduler: BackgroundScheduler


def create_runtime(local=None, primary=None) -> SyncRuntime:
    """Build the stores, broker, buffer, engine and scheduler.

    The local schema is always created. The primary is probed once: if
    it answers, its schema is created too and the service starts in
    PRIMARY mode, otherwise it starts in FALLBACK.
    """
    local = local or DatabaseConnection(Config.LOCAL_DATABASE_PATH)
    primary = primary or MySQLConnection.from_config()
    initialize_database(local)

    broker = ConnectionBroker(primary, local)
    if broker.probe_primary():
        initialize_database(primary)
        broker.force_mode(StoreMode.PRIMARY)
    else:
        broker.force_mode(StoreMode.FALLBACK)

    buffer = PendingWriteBuffer()
    engine = SyncEngine(broker)
    scheduler = BackgroundScheduler(broker, engine, buffer)
    logger.info(format_fields(
        "runtime_ready", local=local.label, primary=primary.label,
        mode=broker.current_mode().value,
    ))
    return SyncRuntime(local, primary, broker, buffer, engine, scheduler)


def main():
    """Run the sync service until interrupted."""
    configure_logging()

    app = QCoreApplication(sys.argv)
    app.setApplicationName("Shiftly Sync")

    runtime = create_runtime()
    app.aboutToQuit.connect(runtime.scheduler.stop)

    signal.signal(signal.SIGINT, lambda *_: app.quit())
    # Lets the Python interpreter run signal handlers between Qt events
    heartbeat = QTimer()
    heartbeat.timeout.connect(lambda: None)
    heartbeat.start(500)

    runtime.scheduler.start()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
