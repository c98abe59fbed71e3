class FinanceError(Exception):
    """Base class for errors raised by the finance backend."""


class RecordNotFoundError(FinanceError):
    def __init__(self, bucket: str, record_id: str) -> None:
        super().__init__(f"{bucket} record not found: {record_id}")
        self.bucket = bucket
        self.record_id = record_id


class StoreError(FinanceError):
    """The record store failed to read or write; the transaction was rolled back."""


class StoreTimeoutError(StoreError):
    """A transaction waited longer than the configured busy timeout for a lock."""


class StoreLockedError(StoreError):
    """The database file is held by another running process."""
