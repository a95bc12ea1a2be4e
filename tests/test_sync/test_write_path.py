"""Tests for record_write — offline-tolerant writes."""

import logging
import sqlite3

import pytest

from shiftly_sync.database.models import PendingWrite, StoreMode, WriteKind
from shiftly_sync.database.repository import RecordStore
from shiftly_sync.database.schema import get_descriptor
from shiftly_sync.sync.write_path import record_write

from conftest import ponto_values, user_values


def _write(table, payload, kind=WriteKind.INSERT):
    return PendingWrite.for_row(get_descriptor(table), kind, payload)


class TestPrimaryMode:
    """Writes while the primary is up."""

    def test_written_to_primary_and_mirrored(self, broker, buffer, primary,
                                             local):
        mode = record_write(broker, buffer, _write("usuarios", user_values(1)))
        assert mode is StoreMode.PRIMARY
        assert RecordStore(primary).count("usuarios") == 1
        assert RecordStore(local).get("usuarios", 1)["email"] == \
            "user1@shiftly.test"
        assert not buffer.has_pending()

    def test_generated_key_mirrored(self, broker, buffer, local):
        payload = user_values(1)
        del payload["id"]
        record_write(broker, buffer, _write("usuarios", payload))
        assert RecordStore(local).get("usuarios", 1) is not None

    def test_data_error_propagates(self, broker, buffer, primary):
        record_write(broker, buffer, _write("usuarios", user_values(1)))
        conflict = _write("usuarios",
                          user_values(2, email="user1@shiftly.test"))
        with pytest.raises(sqlite3.IntegrityError):
            record_write(broker, buffer, conflict)
        assert broker.current_mode() is StoreMode.PRIMARY
        assert not buffer.has_pending()

    def test_mirror_failure_is_logged(self, broker, buffer, primary, caplog,
                                      add_users):
        add_users(primary, 1)
        with caplog.at_level(logging.WARNING):
            mode = record_write(broker, buffer,
                                _write("pontos", ponto_values(1)))
        assert mode is StoreMode.PRIMARY
        assert RecordStore(primary).count("pontos") == 1
        assert "local_mirror_failed" in caplog.text


class TestPrimaryLost:
    def test_falls_back_and_queues(self, broker, buffer, primary, local):
        primary.online = False
        write = _write("usuarios", user_values(1))
        mode = record_write(broker, buffer, write)

        assert mode is StoreMode.FALLBACK
        assert broker.current_mode() is StoreMode.FALLBACK
        assert RecordStore(local).count("usuarios") == 1
        queued = buffer.get(write.natural_key)
        assert queued.payload == RecordStore(local).get("usuarios", 1)

    def test_logs_failed_write(self, broker, buffer, primary, caplog):
        primary.online = False
        with caplog.at_level(logging.INFO):
            record_write(broker, buffer, _write("usuarios", user_values(1)))
        assert "primary_write_failed" in caplog.text
        assert "mode_changed" in caplog.text


class TestFallbackMode:
    """Writes while already offline."""

    def test_applied_locally_and_queued(self, broker, buffer, primary, local):
        broker.force_mode(StoreMode.FALLBACK)
        before = primary.acquisitions
        record_write(broker, buffer, _write("usuarios", user_values(1)))
        assert primary.acquisitions == before
        assert RecordStore(local).count("usuarios") == 1
        assert buffer.size() == 1

    def test_generated_key_recorded_in_queue(self, broker, buffer):
        broker.force_mode(StoreMode.FALLBACK)
        payload = user_values(1)
        del payload["id"]
        write = _write("usuarios", payload)
        record_write(broker, buffer, write)
        assert buffer.get(write.natural_key).payload["id"] == 1

    def test_updates_collapse_per_record(self, broker, buffer, local):
        broker.force_mode(StoreMode.FALLBACK)
        record_write(broker, buffer, _write("usuarios", user_values(1)))
        record_write(broker, buffer, _write(
            "usuarios", user_values(1, cargo="Gerente"), WriteKind.UPDATE,
        ))
        assert buffer.size() == 1
        (write,) = buffer.drain_all()
        assert write.kind is WriteKind.UPDATE
        assert RecordStore(local).get("usuarios", 1)["cargo"] == "Gerente"

    def test_partial_updates_keep_every_change(self, broker, buffer, primary,
                                               local, add_users):
        add_users(local, 1)
        add_users(primary, 1)
        broker.force_mode(StoreMode.FALLBACK)
        record_write(broker, buffer, _write(
            "usuarios", {"id": 1, "cargo": "Gerente"}, WriteKind.UPDATE,
        ))
        record_write(broker, buffer, _write(
            "usuarios", {"id": 1, "departamento": "RH"}, WriteKind.UPDATE,
        ))

        assert buffer.size() == 1
        store = RecordStore(primary)
        for write in buffer.drain_all():
            store.apply(write)
        row = store.get("usuarios", 1)
        assert row["cargo"] == "Gerente"
        assert row["departamento"] == "RH"

    def test_insert_then_partial_update_share_a_key(self, broker, buffer):
        broker.force_mode(StoreMode.FALLBACK)
        payload = user_values(1)
        del payload["id"]
        record_write(broker, buffer, _write("usuarios", payload))
        record_write(broker, buffer, _write(
            "usuarios", {"id": 1, "cargo": "Gerente"}, WriteKind.UPDATE,
        ))
        assert buffer.size() == 1
        (write,) = buffer.drain_all()
        assert write.natural_key == "usuarios:email=user1@shiftly.test"
        assert write.payload["email"] == "user1@shiftly.test"
        assert write.payload["cargo"] == "Gerente"

    def test_delete_by_id_queued_with_natural_key(self, broker, buffer,
                                                  local, add_users):
        add_users(local, 1)
        broker.force_mode(StoreMode.FALLBACK)
        record_write(broker, buffer, _write(
            "usuarios", {"id": 1}, WriteKind.DELETE,
        ))
        assert RecordStore(local).get("usuarios", 1) is None
        (write,) = buffer.drain_all()
        assert write.kind is WriteKind.DELETE
        assert write.natural_key == "usuarios:email=user1@shiftly.test"

    def test_delete_of_missing_row_still_queued(self, broker, buffer):
        broker.force_mode(StoreMode.FALLBACK)
        write = _write("usuarios", {"id": 7}, WriteKind.DELETE)
        record_write(broker, buffer, write)
        assert buffer.get(write.natural_key) is write
