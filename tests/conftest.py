"""Shared test fixtures."""

import os
from datetime import datetime, timedelta

import pytest

# Qt objects are created without a display
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from shiftly_sync.database.connection import DatabaseConnection
from shiftly_sync.database.errors import ConnectivityError
from shiftly_sync.database.repository import RecordStore
from shiftly_sync.database.schema import get_descriptor, initialize_database
from shiftly_sync.sync.broker import ConnectionBroker
from shiftly_sync.sync.pending_writes import PendingWriteBuffer
from shiftly_sync.sync.sync_engine import SyncEngine


class CountingDatabase(DatabaseConnection):
    """SQLite store that counts connection acquisitions."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.acquisitions = 0

    def acquire_connection(self, enforce_foreign_keys: bool = True):
        self.acquisitions += 1
        return super().acquire_connection(enforce_foreign_keys)


class ToggleablePrimary(CountingDatabase):
    """SQLite stand-in for the networked primary that can be taken offline."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.online = True

    @property
    def label(self) -> str:
        return f"primary:{self.db_path.name}"

    def acquire_connection(self, enforce_foreign_keys: bool = True):
        if not self.online:
            self.acquisitions += 1
            raise ConnectivityError(self.label, "connection refused")
        return super().acquire_connection(enforce_foreign_keys)


@pytest.fixture
def local(tmp_path):
    """Initialized local (fallback) store."""
    db = CountingDatabase(tmp_path / "local.db")
    initialize_database(db)
    return db


@pytest.fixture
def primary(tmp_path):
    """Initialized primary store, online."""
    db = ToggleablePrimary(tmp_path / "primary.db")
    initialize_database(db)
    db.acquisitions = 0
    return db


@pytest.fixture
def broker(primary, local):
    """Broker starting in PRIMARY mode."""
    return ConnectionBroker(primary, local)


@pytest.fixture
def buffer():
    return PendingWriteBuffer()


@pytest.fixture
def engine(broker):
    return SyncEngine(broker, batch_size=100, freshness_check="count")


def user_values(index: int, **overrides) -> dict:
    values = {
        "id": index,
        "nome": f"Funcionario {index}",
        "email": f"user{index}@shiftly.test",
        "senha": "hash",
        "tipo_usuario": "funcionario",
        "ativo": 1,
    }
    values.update(overrides)
    return values


def ponto_values(index: int, usuario_id: int = 1, **overrides) -> dict:
    start = datetime(2024, 3, 1, 8, 0)
    values = {
        "id": index,
        "usuario_id": usuario_id,
        "data_hora": (start + timedelta(minutes=index)).isoformat(" "),
        "tipo_ponto": "entrada",
        "manual": 0,
    }
    values.update(overrides)
    return values


def _bulk_insert(store, table: str, rows: list[dict]):
    descriptor = get_descriptor(table)
    columns = list(rows[0])
    with store.acquire_connection() as conn:
        cursor = conn.executemany(
            RecordStore.insert_sql(conn, descriptor, columns),
            [tuple(r[c] for c in columns) for r in rows],
        )
        cursor.close()


@pytest.fixture
def add_users():
    """Insert *count* users with ids start..start+count-1."""
    def _add(store, count: int, start: int = 1, **overrides):
        _bulk_insert(store, "usuarios", [
            user_values(i, **overrides) for i in range(start, start + count)
        ])
    return _add


@pytest.fixture
def add_pontos():
    """Insert *count* time-clock entries for one user."""
    def _add(store, count: int, start: int = 1, usuario_id: int = 1):
        _bulk_insert(store, "pontos", [
            ponto_values(i, usuario_id=usuario_id)
            for i in range(start, start + count)
        ])
    return _add
