"""Repository layer — uniform read/write/delete against either store.

``RecordStore`` takes any *source* exposing ``acquire_connection()``:
the SQLite handle, the MySQL handle, or the connection broker. SQL is
built after the connection is acquired, so placeholders always match the
store that actually serves the call.
"""

import hashlib
from decimal import Decimal
from typing import Optional

from .models import PendingWrite, Row, TableDescriptor, WriteKind
from .schema import SYNC_TABLES, get_descriptor


def _normalize(value) -> str:
    """Driver-neutral text form of a value for checksums."""
    if value is None:
        return "\x00"
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, (int, float, Decimal)):
        return repr(float(value))
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


class RecordStore:
    """Provides table operations for one store (or the brokered store)."""

    def __init__(self, source, tables=None):
        self.source = source
        self.tables = list(tables or SYNC_TABLES)

    def descriptor(self, table: str) -> TableDescriptor:
        return get_descriptor(table, self.tables)

    # ── Connection-level helpers (shared with the sync engine) ──

    @staticmethod
    def count_rows(conn, descriptor: TableDescriptor) -> int:
        return int(conn.scalar(
            f"SELECT COUNT(*) FROM {descriptor.name}"  # noqa: S608
        ) or 0)

    @staticmethod
    def read_rows(conn, descriptor: TableDescriptor) -> list[Row]:
        _, rows = conn.query(
            f"SELECT {descriptor.column_list} FROM {descriptor.name} "  # noqa: S608
            f"ORDER BY {descriptor.primary_key}"
        )
        return [Row(descriptor.name, values) for values in rows]

    @staticmethod
    def insert_sql(conn, descriptor: TableDescriptor,
                   columns=None) -> str:
        columns = list(columns or descriptor.columns)
        return (
            f"INSERT INTO {descriptor.name} ({', '.join(columns)}) "  # noqa: S608
            f"VALUES ({conn.placeholders(len(columns))})"
        )

    def _columns_of(self, descriptor: TableDescriptor, values: dict):
        unknown = [k for k in values if k not in descriptor.columns]
        if unknown:
            raise ValueError(
                f"{descriptor.name}: unknown columns {unknown}"
            )
        return [c for c in descriptor.columns if c in values]

    def _find_key(self, conn, descriptor: TableDescriptor, values: dict):
        """Primary key of the stored row matching *values*, if any.

        Matches on the primary key when the payload carries one, else on
        the table's natural key.
        """
        pk = descriptor.primary_key
        ph = conn.placeholder
        if values.get(pk) is not None:
            found = conn.scalar(
                f"SELECT {pk} FROM {descriptor.name} WHERE {pk} = {ph}",  # noqa: S608
                (values[pk],),
            )
            return found
        nk = descriptor.natural_key
        if not nk or any(values.get(c) is None for c in nk):
            return None
        where = " AND ".join(f"{c} = {ph}" for c in nk)
        return conn.scalar(
            f"SELECT {pk} FROM {descriptor.name} WHERE {where}",  # noqa: S608
            tuple(values[c] for c in nk),
        )

    def _insert(self, conn, descriptor: TableDescriptor, values: dict):
        columns = self._columns_of(descriptor, values)
        cursor = conn.execute(
            self.insert_sql(conn, descriptor, columns),
            tuple(values[c] for c in columns),
        )
        row_id = cursor.lastrowid
        cursor.close()
        return row_id if values.get(descriptor.primary_key) is None \
            else values[descriptor.primary_key]

    def _update(self, conn, descriptor: TableDescriptor, values: dict,
                key=None) -> int:
        pk = descriptor.primary_key
        key = values.get(pk) if key is None else key
        if key is None:
            raise ValueError(f"{descriptor.name}: update needs {pk}")
        columns = [c for c in self._columns_of(descriptor, values) if c != pk]
        if not columns:
            return 0
        ph = conn.placeholder
        set_clause = ", ".join(f"{c} = {ph}" for c in columns)
        cursor = conn.execute(
            f"UPDATE {descriptor.name} SET {set_clause} "  # noqa: S608
            f"WHERE {pk} = {ph}",
            tuple(values[c] for c in columns) + (key,),
        )
        count = cursor.rowcount
        cursor.close()
        return count

    # ── Reads ───────────────────────────────────────────────────

    def count(self, table: str) -> int:
        descriptor = self.descriptor(table)
        with self.source.acquire_connection() as conn:
            return self.count_rows(conn, descriptor)

    def table_counts(self) -> dict[str, int]:
        """Row count per synchronized table, in dependency order."""
        with self.source.acquire_connection() as conn:
            return {t.name: self.count_rows(conn, t) for t in self.tables}

    def fetch_rows(self, table: str) -> list[Row]:
        descriptor = self.descriptor(table)
        with self.source.acquire_connection() as conn:
            return self.read_rows(conn, descriptor)

    def fetch_all(self, table: str) -> list[dict]:
        descriptor = self.descriptor(table)
        return [r.as_dict(descriptor) for r in self.fetch_rows(table)]

    def get(self, table: str, key) -> Optional[dict]:
        descriptor = self.descriptor(table)
        with self.source.acquire_connection() as conn:
            _, rows = conn.query(
                f"SELECT {descriptor.column_list} FROM {descriptor.name} "  # noqa: S608
                f"WHERE {descriptor.primary_key} = {conn.placeholder}",
                (key,),
            )
        return dict(zip(descriptor.columns, rows[0])) if rows else None

    def find(self, table: str, values: dict) -> Optional[dict]:
        """Stored row matching *values* by primary key, else natural key."""
        descriptor = self.descriptor(table)
        with self.source.acquire_connection() as conn:
            key = self._find_key(conn, descriptor, values)
        return None if key is None else self.get(table, key)

    def checksum(self, table: str) -> str:
        """Content hash of a table, ordered by primary key."""
        digest = hashlib.sha256()
        for row in self.fetch_rows(table):
            digest.update(
                "\x1f".join(_normalize(v) for v in row.values).encode("utf-8")
            )
            digest.update(b"\x1e")
        return digest.hexdigest()

    # ── Writes ──────────────────────────────────────────────────

    def insert(self, table: str, values: dict):
        """Insert one row and return its primary key."""
        descriptor = self.descriptor(table)
        with self.source.acquire_connection() as conn:
            return self._insert(conn, descriptor, values)

    def update(self, table: str, values: dict) -> int:
        """Update one row by primary key; returns the affected row count."""
        descriptor = self.descriptor(table)
        with self.source.acquire_connection() as conn:
            return self._update(conn, descriptor, values)

    def delete(self, table: str, key) -> int:
        descriptor = self.descriptor(table)
        with self.source.acquire_connection() as conn:
            cursor = conn.execute(
                f"DELETE FROM {descriptor.name} "  # noqa: S608
                f"WHERE {descriptor.primary_key} = {conn.placeholder}",
                (key,),
            )
            count = cursor.rowcount
            cursor.close()
            return count

    def apply(self, write: PendingWrite):
        """Apply a pending write, last-writer-wins.

        Inserts and updates are upserts keyed on the primary key (or the
        natural key when the payload has no id), so replaying a write the
        bulk copy already carried over does not fail on duplicates.
        Returns the primary key of the affected row, or None when a delete
        found nothing to remove.
        """
        descriptor = self.descriptor(write.table)
        payload = write.payload
        with self.source.acquire_connection() as conn:
            key = self._find_key(conn, descriptor, payload)
            if write.kind is WriteKind.DELETE:
                if key is None:
                    return None
                cursor = conn.execute(
                    f"DELETE FROM {descriptor.name} "  # noqa: S608
                    f"WHERE {descriptor.primary_key} = {conn.placeholder}",
                    (key,),
                )
                cursor.close()
                return key

            if key is None:
                return self._insert(conn, descriptor, payload)
            self._update(conn, descriptor, payload, key=key)
            return key
