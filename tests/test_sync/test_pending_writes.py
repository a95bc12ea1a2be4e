"""Tests for the pending write buffer."""

import threading

import pytest

from shiftly_sync.database.models import PendingWrite, WriteKind
from shiftly_sync.database.schema import get_descriptor

from conftest import ponto_values, user_values


def _user_write(index, **overrides):
    return PendingWrite.for_row(get_descriptor("usuarios"), WriteKind.INSERT,
                                user_values(index, **overrides))


class TestEnqueue:
    """Test de-duplication by natural key."""

    def test_enqueue_and_size(self, buffer):
        buffer.enqueue(_user_write(1))
        buffer.enqueue(_user_write(2))
        assert buffer.size() == 2
        assert len(buffer) == 2
        assert buffer.has_pending()

    def test_same_key_keeps_latest_payload(self, buffer):
        buffer.enqueue(_user_write(1, cargo="Analista"))
        buffer.enqueue(_user_write(1, cargo="Gerente"))
        assert buffer.size() == 1
        (write,) = buffer.drain_all()
        assert write.payload["cargo"] == "Gerente"

    def test_replaced_entry_moves_to_back(self, buffer):
        buffer.enqueue(_user_write(1))
        buffer.enqueue(_user_write(2))
        buffer.enqueue(_user_write(1, cargo="Gerente"))
        keys = [w.payload["id"] for w in buffer.drain_all()]
        assert keys == [2, 1]

    def test_get(self, buffer):
        write = _user_write(1)
        buffer.enqueue(write)
        assert buffer.get(write.natural_key) is write
        assert buffer.get("usuarios:email=nobody") is None


class TestDrainAll:
    def test_snapshot_in_enqueue_order(self, buffer):
        for i in (3, 1, 2):
            buffer.enqueue(_user_write(i))
        assert [w.payload["id"] for w in buffer.drain_all()] == [3, 1, 2]

    def test_snapshot_does_not_remove(self, buffer):
        buffer.enqueue(_user_write(1))
        buffer.drain_all()
        assert buffer.size() == 1

    def test_snapshot_is_restartable(self, buffer):
        buffer.enqueue(_user_write(1))
        buffer.enqueue(_user_write(2))
        snapshot = buffer.drain_all()
        assert list(snapshot) == list(snapshot)
        assert len(snapshot) == 2

    def test_snapshot_unaffected_by_later_enqueue(self, buffer):
        buffer.enqueue(_user_write(1))
        snapshot = buffer.drain_all()
        buffer.enqueue(_user_write(2))
        assert len(list(snapshot)) == 1

    def test_empty_snapshot_is_falsy(self, buffer):
        assert not buffer.drain_all()


class TestRemove:
    def test_remove(self, buffer):
        write = _user_write(1)
        buffer.enqueue(write)
        assert buffer.remove(write.natural_key) is True
        assert not buffer.has_pending()
        assert buffer.remove(write.natural_key) is False

    def test_remove_expected_keeps_newer_payload(self, buffer):
        old = _user_write(1, cargo="Analista")
        buffer.enqueue(old)
        new = _user_write(1, cargo="Gerente")
        buffer.enqueue(new)
        assert buffer.remove(old.natural_key, expected=old) is False
        assert buffer.get(new.natural_key) is new

    def test_clear(self, buffer):
        buffer.enqueue(_user_write(1))
        buffer.enqueue(_user_write(2))
        buffer.clear()
        assert buffer.size() == 0


class TestStats:
    def test_empty(self, buffer):
        assert buffer.stats() == {"total": 0, "by_table": {}, "oldest": None}

    def test_by_table(self, buffer):
        buffer.enqueue(_user_write(1))
        buffer.enqueue(PendingWrite.for_row(
            get_descriptor("pontos"), WriteKind.INSERT, ponto_values(1),
        ))
        stats = buffer.stats()
        assert stats["total"] == 2
        assert stats["by_table"] == {"usuarios": 1, "pontos": 1}
        assert stats["oldest"] is not None


class TestConcurrency:
    """Producers and a consumer working the buffer at the same time."""

    @pytest.mark.parametrize("producers", [2, 4])
    def test_concurrent_enqueue_and_remove(self, buffer, producers):
        per_producer = 200
        removed = []

        def produce(offset):
            for i in range(per_producer):
                buffer.enqueue(_user_write(offset * per_producer + i))

        def consume():
            for _ in range(50):
                for write in buffer.drain_all():
                    if buffer.remove(write.natural_key, expected=write):
                        removed.append(write.natural_key)

        threads = [threading.Thread(target=produce, args=(p,))
                   for p in range(producers)]
        threads.append(threading.Thread(target=consume))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        remaining = {w.natural_key for w in buffer.drain_all()}
        assert len(removed) == len(set(removed))
        assert remaining.isdisjoint(removed)
        assert len(remaining) + len(removed) == producers * per_producer
