"""
Storage package exports.

Exposes:
- tiers: KeyValueStore, MemoryStore, JsonFileStore, RedisStore
- errors: StorageError, QuotaExceededError, StorageDisabledError
- record helpers: read_record, write_record, parse_record
"""

from storage.tiers import (  # noqa: F401
    KeyValueStore,
    MemoryStore,
    JsonFileStore,
    RedisStore,
    StorageError,
    QuotaExceededError,
    StorageDisabledError,
    open_durable_store,
)
from storage.records import RecordEncodeError, encode_record, read_record, write_record, parse_record  # noqa: F401
