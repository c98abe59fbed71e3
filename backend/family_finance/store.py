from __future__ import annotations

import fcntl
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

from sqlalchemy import Column, LargeBinary, MetaData, String, Table, create_engine, delete, event, select, text
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from .errors import StoreError, StoreLockedError, StoreTimeoutError
from .logs import get_logger

EXPENSES_BUCKET = "expenses"
BUDGETS_BUCKET = "budgets"
GOALS_BUCKET = "goals"
INVESTMENTS_BUCKET = "investments"
BILLS_BUCKET = "bills"
INCOME_BUCKET = "income"

BUCKETS = (
    EXPENSES_BUCKET,
    BUDGETS_BUCKET,
    GOALS_BUCKET,
    INVESTMENTS_BUCKET,
    BILLS_BUCKET,
    INCOME_BUCKET,
)

logger = get_logger(__name__)


def _is_lock_contention(exc: OperationalError) -> bool:
    message = str(exc.orig).lower()
    return "locked" in message or "busy" in message


class Transaction:
    """Bucket access bound to one open store transaction."""

    def __init__(self, conn: Connection, tables: dict[str, Table], writable: bool) -> None:
        self._conn = conn
        self._tables = tables
        self.writable = writable

    def _table(self, bucket: str) -> Table:
        try:
            return self._tables[bucket]
        except KeyError:
            raise StoreError(f"bucket not found: {bucket}") from None

    def _require_writable(self) -> None:
        if not self.writable:
            raise StoreError("write attempted in a read-only transaction")

    def get(self, bucket: str, key: str) -> bytes | None:
        table = self._table(bucket)
        return self._conn.execute(select(table.c.value).where(table.c.key == key)).scalar_one_or_none()

    def exists(self, bucket: str, key: str) -> bool:
        table = self._table(bucket)
        return self._conn.execute(select(table.c.key).where(table.c.key == key)).first() is not None

    def scan(self, bucket: str) -> list[tuple[str, bytes]]:
        table = self._table(bucket)
        rows = self._conn.execute(select(table.c.key, table.c.value).order_by(table.c.key))
        return [(row.key, row.value) for row in rows]

    def put(self, bucket: str, key: str, value: bytes) -> None:
        self._require_writable()
        table = self._table(bucket)
        stmt = insert(table).values(key=key, value=value)
        self._conn.execute(stmt.on_conflict_do_update(index_elements=[table.c.key], set_={"value": stmt.excluded.value}))

    def delete(self, bucket: str, key: str) -> None:
        self._require_writable()
        table = self._table(bucket)
        self._conn.execute(delete(table).where(table.c.key == key))


class RecordStore:
    """Single-file embedded store of named key -> bytes buckets.

    Backed by SQLite through SQLAlchemy. Readers run in WAL snapshots and never
    block the writer; writers take the database write lock up front
    (``BEGIN IMMEDIATE``) so only one read-write transaction runs at a time.
    A sidecar ``.lock`` file keeps a second process from opening the same file.
    """

    def __init__(
        self,
        path: str | Path,
        buckets: tuple[str, ...] = BUCKETS,
        open_timeout: float = 1.0,
        busy_timeout: float = 5.0,
    ) -> None:
        self.path = Path(path)
        self.open_timeout = open_timeout
        self.busy_timeout = busy_timeout
        self.metadata = MetaData()
        self.tables: dict[str, Table] = {
            name: Table(
                name,
                self.metadata,
                Column("key", String, primary_key=True),
                Column("value", LargeBinary, nullable=False),
            )
            for name in buckets
        }
        self.engine: Engine | None = None
        self._lock_handle: IO[str] | None = None

    @classmethod
    def open(cls, path: str | Path, **kwargs) -> RecordStore:
        store = cls(path, **kwargs)
        store._open()
        try:
            store.ensure_buckets()
        except StoreError:
            store.close()
            raise
        return store

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(f"{self.path.name}.lock")

    def _acquire_file_lock(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_path, "a+", encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"cannot open database at {self.path}: {exc}") from exc
        deadline = time.monotonic() + self.open_timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    handle.close()
                    raise StoreLockedError(f"database is locked by another process: {self.path}") from None
                time.sleep(0.05)
        self._lock_handle = handle

    def _release_file_lock(self) -> None:
        if self._lock_handle is None:
            return
        fcntl.flock(self._lock_handle.fileno(), fcntl.LOCK_UN)
        self._lock_handle.close()
        self._lock_handle = None

    def _open(self) -> None:
        self._acquire_file_lock()
        engine = create_engine(
            f"sqlite:///{self.path}",
            future=True,
            connect_args={"timeout": self.busy_timeout, "check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def _configure_connection(dbapi_connection, connection_record) -> None:
            # Transactions are started explicitly by the begin hook below.
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=FULL")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _begin(conn: Connection) -> None:
            conn.exec_driver_sql(conn.get_execution_options().get("sqlite_begin", "BEGIN"))

        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
        except (SQLAlchemyError, sqlite3.Error) as exc:
            engine.dispose()
            self._release_file_lock()
            raise StoreError(f"cannot open database at {self.path}: {exc.__class__.__name__}") from exc
        self.engine = engine
        logger.info("store_opened", path=str(self.path))

    def ensure_buckets(self) -> None:
        engine = self._require_engine()
        try:
            self.metadata.create_all(engine, checkfirst=True)
        except SQLAlchemyError as exc:
            raise StoreError(f"cannot create buckets: {exc.__class__.__name__}") from exc
        logger.info("buckets_ready", buckets=sorted(self.tables))

    def _require_engine(self) -> Engine:
        if self.engine is None:
            raise StoreError("store is not open")
        return self.engine

    @contextmanager
    def _transaction(self, begin_sql: str, writable: bool) -> Iterator[Transaction]:
        engine = self._require_engine()
        try:
            with engine.connect() as conn:
                conn.execution_options(sqlite_begin=begin_sql)
                with conn.begin() as tx:
                    yield Transaction(conn, self.tables, writable)
                    if not writable:
                        tx.rollback()
        except OperationalError as exc:
            if _is_lock_contention(exc):
                logger.warning("store_busy", path=str(self.path), timeout=self.busy_timeout)
                raise StoreTimeoutError(f"store busy for more than {self.busy_timeout}s") from exc
            logger.error("store_error", path=str(self.path), error=str(exc.orig))
            raise StoreError(f"storage error: {exc.__class__.__name__}") from exc
        except SQLAlchemyError as exc:
            logger.error("store_error", path=str(self.path), error=str(exc))
            raise StoreError(f"storage error: {exc.__class__.__name__}") from exc

    def view(self) -> Iterator[Transaction]:
        """Read-only snapshot transaction."""
        return self._transaction("BEGIN", writable=False)

    def update(self) -> Iterator[Transaction]:
        """Read-write transaction; committed on clean exit, rolled back on error."""
        return self._transaction("BEGIN IMMEDIATE", writable=True)

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
            logger.info("store_closed", path=str(self.path))
        self._release_file_lock()

    def __enter__(self) -> RecordStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
