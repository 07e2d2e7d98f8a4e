"""
JSON records on top of a KeyValueStore.

- read_record(): parse + JSON Schema validation (schemas/*.schema.json);
  anything unreadable is treated as absent and, when asked, removed
- write_record(): json.dumps + set_item; unserialisable data raises
  RecordEncodeError, a StorageError like every other write failure
"""

from __future__ import annotations
import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import jsonschema

from storage.tiers import KeyValueStore, StorageError

SCHEMAS_ROOT = Path(__file__).resolve().parent / "schemas"

log = logging.getLogger("Storage")


@lru_cache(maxsize=None)
def load_schema(name: str) -> dict:
    """Accepts 'order_source' or 'order_source.schema.json'."""
    fname = name if name.endswith(".schema.json") else f"{name}.schema.json"
    path = SCHEMAS_ROOT / fname
    if not path.exists():
        raise FileNotFoundError(f"Schema file missing: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def is_valid(data: Any, schema: str) -> bool:
    try:
        jsonschema.validate(instance=data, schema=load_schema(schema))
        return True
    except jsonschema.ValidationError:
        return False


def parse_record(raw: Optional[str], schema: Optional[str] = None) -> Optional[Any]:
    """Decode a stored string. Returns None for missing, malformed or invalid values."""
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if schema and not is_valid(data, schema):
        return None
    return data


def read_record(
    store: KeyValueStore,
    key: str,
    *,
    schema: Optional[str] = None,
    delete_invalid: bool = False,
) -> Optional[Any]:
    """
    Read and validate one record. Storage errors read as absent.
    """
    try:
        raw = store.get_item(key)
    except StorageError as e:
        log.warning(f"read {key} failed: {e}")
        return None
    data = parse_record(raw, schema)
    if raw is not None and data is None:
        log.warning(f"discarding malformed record {key}")
        if delete_invalid:
            try:
                store.remove_item(key)
            except StorageError as e:
                log.warning(f"remove {key} failed: {e}")
    return data


class RecordEncodeError(StorageError):
    """Value cannot be serialised as JSON."""


def encode_record(data: Any) -> str:
    try:
        return json.dumps(data, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise RecordEncodeError(str(e)) from e


def write_record(store: KeyValueStore, key: str, data: Any) -> None:
    store.set_item(key, encode_record(data))
