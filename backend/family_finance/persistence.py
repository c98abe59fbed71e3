from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Generic, TypeVar

from pydantic import ValidationError

from .errors import RecordNotFoundError, StoreError
from .logs import get_logger
from .schemas import BillReminder, Budget, Expense, Goal, Income, Investment, Record
from .store import (
    BILLS_BUCKET,
    BUDGETS_BUCKET,
    EXPENSES_BUCKET,
    GOALS_BUCKET,
    INCOME_BUCKET,
    INVESTMENTS_BUCKET,
    RecordStore,
    Transaction,
)

RecordT = TypeVar("RecordT", bound=Record)

logger = get_logger(__name__)


class IdGenerator:
    """Decimal nanosecond timestamps, strictly increasing within the process.

    Two calls never return the same value, even when the system clock is
    coarser than a nanosecond or steps backwards.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last = 0

    def __call__(self) -> str:
        with self._lock:
            candidate = time.time_ns()
            if candidate <= self._last:
                candidate = self._last + 1
            self._last = candidate
            return str(candidate)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(moment: datetime) -> str:
    return moment.isoformat(timespec="microseconds")


def _parse_ts(value: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _timestamp_after(previous: str) -> str:
    now = _now()
    last = _parse_ts(previous)
    if last is not None and now <= last:
        now = last + timedelta(microseconds=1)
    return _format_ts(now)


class Repository(Generic[RecordT]):
    """CRUD over one bucket, mapping ``model`` instances to JSON bytes."""

    def __init__(
        self,
        store: RecordStore,
        model: type[RecordT],
        bucket: str,
        make_id: IdGenerator,
        strict_updates: bool = False,
    ) -> None:
        self.store = store
        self.model = model
        self.bucket = bucket
        self.make_id = make_id
        self.strict_updates = strict_updates

    def _encode(self, record: RecordT) -> bytes:
        try:
            return record.model_dump_json().encode("utf-8")
        except (ValueError, TypeError) as exc:
            raise StoreError(f"cannot serialize {self.bucket} record {record.id}: {exc}") from exc

    def _decode(self, key: str, data: bytes) -> RecordT:
        try:
            return self.model.model_validate_json(data)
        except ValidationError as exc:
            raise StoreError(f"corrupt {self.bucket} record {key}: {exc.error_count()} errors") from exc

    def _apply_defaults(self, record: RecordT) -> None:
        default_currency = self.model.default_currency
        if default_currency and not getattr(record, "currency", None):
            record.currency = default_currency

    def _read(self, tx: Transaction, record_id: str) -> RecordT | None:
        data = tx.get(self.bucket, record_id)
        if data is None:
            return None
        return self._decode(record_id, data)

    def list(self) -> list[RecordT]:
        with self.store.view() as tx:
            return self.scan(tx)

    def scan(self, tx: Transaction) -> list[RecordT]:
        return [self._decode(key, data) for key, data in tx.scan(self.bucket)]

    def get(self, record_id: str) -> RecordT:
        with self.store.view() as tx:
            record = self._read(tx, record_id)
        if record is None:
            raise RecordNotFoundError(self.bucket, record_id)
        return record

    def create(self, payload: RecordT) -> RecordT:
        record = payload.model_copy(deep=True)
        self._apply_defaults(record)
        if self.model.tracks_timestamps:
            now = _format_ts(_now())
            record.createdAt = now
            record.updatedAt = now
        with self.store.update() as tx:
            if not record.id:
                record.id = self.make_id()
                while tx.exists(self.bucket, record.id):
                    record.id = self.make_id()
            tx.put(self.bucket, record.id, self._encode(record))
        logger.debug("record_created", bucket=self.bucket, id=record.id)
        return record

    def update(self, record_id: str, payload: RecordT) -> RecordT:
        record = payload.model_copy(deep=True)
        record.id = record_id
        self._apply_defaults(record)
        with self.store.update() as tx:
            existing = self._read(tx, record_id)
            if existing is None and self.strict_updates:
                raise RecordNotFoundError(self.bucket, record_id)
            if self.model.tracks_timestamps:
                if existing is not None:
                    record.createdAt = existing.createdAt
                    record.updatedAt = _timestamp_after(existing.updatedAt)
                else:
                    record.updatedAt = _format_ts(_now())
                    record.createdAt = record.updatedAt
            tx.put(self.bucket, record_id, self._encode(record))
        logger.debug("record_updated", bucket=self.bucket, id=record_id, created=existing is None)
        return record

    def delete(self, record_id: str) -> None:
        with self.store.update() as tx:
            tx.delete(self.bucket, record_id)
        logger.debug("record_deleted", bucket=self.bucket, id=record_id)


class Repositories:
    """One repository per entity kind, all sharing a store and id generator."""

    def __init__(self, store: RecordStore, strict_updates: bool = False) -> None:
        self.store = store
        self.make_id = make_id = IdGenerator()
        self.expenses = Repository(store, Expense, EXPENSES_BUCKET, make_id, strict_updates)
        self.budgets = Repository(store, Budget, BUDGETS_BUCKET, make_id, strict_updates)
        self.goals = Repository(store, Goal, GOALS_BUCKET, make_id, strict_updates)
        self.investments = Repository(store, Investment, INVESTMENTS_BUCKET, make_id, strict_updates)
        self.bills = Repository(store, BillReminder, BILLS_BUCKET, make_id, strict_updates)
        self.income = Repository(store, Income, INCOME_BUCKET, make_id, strict_updates)
