from pathlib import Path

import pytest

from family_finance.errors import StoreError, StoreLockedError, StoreTimeoutError
from family_finance.store import BUCKETS, EXPENSES_BUCKET, INCOME_BUCKET, RecordStore


def test_open_creates_all_buckets(store: RecordStore) -> None:
    with store.view() as tx:
        for bucket in BUCKETS:
            assert tx.scan(bucket) == []


def test_ensure_buckets_is_idempotent(store: RecordStore) -> None:
    with store.update() as tx:
        tx.put(EXPENSES_BUCKET, "1", b'{"id": "1"}')
    store.ensure_buckets()
    store.ensure_buckets()
    with store.view() as tx:
        assert tx.get(EXPENSES_BUCKET, "1") == b'{"id": "1"}'


def test_put_overwrites_and_delete_is_silent(store: RecordStore) -> None:
    with store.update() as tx:
        tx.put(INCOME_BUCKET, "a", b"first")
        tx.put(INCOME_BUCKET, "a", b"second")
        tx.delete(INCOME_BUCKET, "never-existed")
    with store.view() as tx:
        assert tx.get(INCOME_BUCKET, "a") == b"second"
        assert tx.exists(INCOME_BUCKET, "a")
        assert not tx.exists(INCOME_BUCKET, "b")


def test_scan_yields_key_order(store: RecordStore) -> None:
    with store.update() as tx:
        for key in ("300", "100", "200"):
            tx.put(EXPENSES_BUCKET, key, key.encode())
    with store.view() as tx:
        assert [key for key, _ in tx.scan(EXPENSES_BUCKET)] == ["100", "200", "300"]


def test_failed_update_is_rolled_back(store: RecordStore) -> None:
    with pytest.raises(RuntimeError):
        with store.update() as tx:
            tx.put(EXPENSES_BUCKET, "k1", b"{}")
            raise RuntimeError("serialization failed")
    with store.view() as tx:
        assert tx.get(EXPENSES_BUCKET, "k1") is None


def test_view_rejects_writes(store: RecordStore) -> None:
    with pytest.raises(StoreError):
        with store.view() as tx:
            tx.put(EXPENSES_BUCKET, "k1", b"{}")


def test_unknown_bucket_is_a_store_error(store: RecordStore) -> None:
    with pytest.raises(StoreError):
        with store.view() as tx:
            tx.get("accounts", "1")


def test_data_survives_reopen(db_path: Path) -> None:
    with RecordStore.open(db_path) as first:
        with first.update() as tx:
            tx.put(EXPENSES_BUCKET, "1", b"persisted")
    with RecordStore.open(db_path) as second:
        with second.view() as tx:
            assert tx.get(EXPENSES_BUCKET, "1") == b"persisted"


def test_second_open_fails_while_locked(store: RecordStore, db_path: Path) -> None:
    with pytest.raises(StoreLockedError):
        RecordStore.open(db_path, open_timeout=0.1)


def test_open_fails_for_unopenable_path(tmp_path: Path) -> None:
    directory = tmp_path / "not-a-file"
    directory.mkdir()
    with pytest.raises(StoreError):
        RecordStore.open(directory)


def test_writer_waits_then_times_out(db_path: Path) -> None:
    with RecordStore.open(db_path, busy_timeout=0.2) as store:
        with store.update() as tx:
            tx.put(EXPENSES_BUCKET, "held", b"{}")
            with pytest.raises(StoreTimeoutError):
                with store.update() as other:
                    other.put(EXPENSES_BUCKET, "blocked", b"{}")
        with store.view() as tx:
            assert tx.exists(EXPENSES_BUCKET, "held")
            assert not tx.exists(EXPENSES_BUCKET, "blocked")


def test_reader_sees_committed_state_during_write(store: RecordStore) -> None:
    with store.update() as tx:
        tx.put(EXPENSES_BUCKET, "1", b"old")
    with store.update() as tx:
        tx.put(EXPENSES_BUCKET, "1", b"new")
        with store.view() as reader:
            assert reader.get(EXPENSES_BUCKET, "1") == b"old"
    with store.view() as reader:
        assert reader.get(EXPENSES_BUCKET, "1") == b"new"


def test_closed_store_rejects_transactions(db_path: Path) -> None:
    store = RecordStore.open(db_path)
    store.close()
    with pytest.raises(StoreError):
        with store.view():
            pass
