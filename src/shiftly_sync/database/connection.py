"""Connection management for the local (SQLite) and primary (MySQL) stores.

Both store handles expose the same ``acquire_connection()`` call, which
opens a fresh connection and wraps it in a :class:`StoreConnection`.
Connections are never pooled or shared; every operation opens, uses and
closes its own.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Optional

import mysql.connector
from mysql.connector import errors as mysql_errors

from .errors import ConnectivityError
from .models import StoreMode

logger = logging.getLogger(__name__)


class StoreConnection:
    """One open DB-API connection and the dialect details to talk to it.

    As a context manager it commits on success, rolls back on error and
    always closes.
    """

    def __init__(self, raw, dialect: str, placeholder: str, label: str,
                 mode: Optional[StoreMode] = None):
        self.raw = raw
        self.dialect = dialect
        self.placeholder = placeholder
        self.label = label
        self.mode = mode

    def placeholders(self, count: int) -> str:
        return ", ".join([self.placeholder] * count)

    def execute(self, sql: str, params=()):
        """Run a single statement and return the cursor."""
        cursor = self.raw.cursor()
        cursor.execute(sql, tuple(params))
        return cursor

    def executemany(self, sql: str, seq_of_params):
        cursor = self.raw.cursor()
        cursor.executemany(sql, [tuple(p) for p in seq_of_params])
        return cursor

    def query(self, sql: str, params=()) -> tuple[list[str], list[tuple]]:
        """Run a SELECT and return (column names, rows as tuples)."""
        cursor = self.execute(sql, params)
        try:
            columns = [desc[0] for desc in cursor.description or ()]
            rows = [tuple(r) for r in cursor.fetchall()]
        finally:
            cursor.close()
        return columns, rows

    def scalar(self, sql: str, params=()):
        _, rows = self.query(sql, params)
        return rows[0][0] if rows else None

    def commit(self):
        self.raw.commit()

    def rollback(self):
        self.raw.rollback()

    def close(self):
        try:
            self.raw.close()
        except Exception as exc:  # server may already be gone
            logger.debug("close_failed store=%s error=%s", self.label, exc)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            self.close()
        return False


class DatabaseConnection:
    """Manages SQLite connections with foreign key enforcement."""

    dialect = "sqlite"
    placeholder = "?"

    def __init__(self, db_path: str | Path, timeout: float = 5.0):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout

    @property
    def label(self) -> str:
        return f"sqlite:{self.db_path.name}"

    def _connect(self, enforce_foreign_keys: bool = True):
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        except sqlite3.OperationalError as exc:
            raise ConnectivityError(self.label, str(exc)) from exc
        conn.row_factory = sqlite3.Row
        conn.execute(
            f"PRAGMA foreign_keys = {'ON' if enforce_foreign_keys else 'OFF'}"
        )
        return conn

    def acquire_connection(self, enforce_foreign_keys: bool = True
                           ) -> StoreConnection:
        """Open a new connection; raises ConnectivityError if impossible."""
        return StoreConnection(
            self._connect(enforce_foreign_keys),
            self.dialect, self.placeholder, self.label,
        )

    def is_disconnect(self, exc: BaseException) -> bool:
        """Whether *exc* means the store went away (vs. a data error)."""
        return isinstance(exc, ConnectivityError)

    def backup_to(self, target_path: str | Path) -> Path:
        """Write a consistent snapshot of the store to *target_path*.

        Uses SQLite's online backup, so writers on other connections
        never leave a half-copied page in the snapshot.
        """
        target_path = Path(target_path)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        source = self._connect()
        try:
            target = sqlite3.connect(str(target_path))
            try:
                source.backup(target)
            finally:
                target.close()
        finally:
            source.close()
        return target_path


class MySQLConnection:
    """Connections to the networked primary store.

    Every connection attempt is bounded by ``login_timeout`` seconds so a
    dead server never stalls the caller for long.
    """

    dialect = "mysql"
    placeholder = "%s"

    def __init__(self, host: str, port: int, database: str, user: str,
                 password: str = "", login_timeout: int = 5):
        self.host = host
        self.port = int(port)
        self.database = database
        self.user = user
        self._password = password
        self.login_timeout = login_timeout

    @classmethod
    def from_config(cls) -> "MySQLConnection":
        from shiftly_sync.config import Config
        return cls(
            login_timeout=Config.PRIMARY_LOGIN_TIMEOUT,
            **Config.primary_connection_params(),
        )

    @property
    def label(self) -> str:
        return f"mysql:{self.user}@{self.host}:{self.port}/{self.database}"

    def acquire_connection(self, enforce_foreign_keys: bool = True
                           ) -> StoreConnection:
        """Open a new connection; raises ConnectivityError if impossible."""
        try:
            raw = mysql.connector.connect(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.user,
                password=self._password,
                connection_timeout=self.login_timeout,
                autocommit=False,
            )
        except mysql_errors.Error as exc:
            raise ConnectivityError(self.label, str(exc)) from exc

        if not enforce_foreign_keys:
            cursor = raw.cursor()
            try:
                cursor.execute("SET FOREIGN_KEY_CHECKS = 0")
            finally:
                cursor.close()
        return StoreConnection(raw, self.dialect, self.placeholder, self.label)

    def is_disconnect(self, exc: BaseException) -> bool:
        """Whether *exc* means the server went away (vs. a data error)."""
        return isinstance(exc, (
            ConnectivityError,
            mysql_errors.InterfaceError,
            mysql_errors.OperationalError,
        ))
