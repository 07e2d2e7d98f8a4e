"""
Key/value storage tiers.

Two tiers back the checkout state:
- session tier: one per tab, dies with the tab (MemoryStore)
- durable tier: shared by every tab of the origin (JsonFileStore / RedisStore)

Interface (KeyValueStore):
    get_item(key) -> str | None
    set_item(key, value: str) -> None
    remove_item(key) -> None
    keys() -> list[str]
    clear() -> None

Values are always strings (callers json.dumps/loads as needed). Writes can fail
with QuotaExceededError or StorageDisabledError; callers in checkout/ catch
StorageError at every write site.
"""

from __future__ import annotations
import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import redis
from filelock import FileLock, Timeout

log = logging.getLogger("Storage")


class StorageError(Exception):
    """Base class for storage tier failures."""


class QuotaExceededError(StorageError):
    pass


class StorageDisabledError(StorageError):
    pass


class KeyValueStore:
    def get_item(self, key: str) -> Optional[str]:  # pragma: no cover - interface
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:  # pragma: no cover
        raise NotImplementedError

    def remove_item(self, key: str) -> None:  # pragma: no cover
        raise NotImplementedError

    def keys(self) -> List[str]:  # pragma: no cover
        raise NotImplementedError

    def clear(self) -> None:  # pragma: no cover
        raise NotImplementedError


def _used_bytes(data: Dict[str, str]) -> int:
    return sum(len(k) + len(v) for k, v in data.items())


class MemoryStore(KeyValueStore):
    """
    Dict-backed tier with an optional byte quota.
    `disabled=True` makes every access raise, like a browser with storage turned off.
    """

    def __init__(self, quota_bytes: Optional[int] = None, disabled: bool = False) -> None:
        self._data: Dict[str, str] = {}
        self.quota_bytes = quota_bytes
        self.disabled = disabled

    def _check(self) -> None:
        if self.disabled:
            raise StorageDisabledError("storage is disabled")

    def get_item(self, key: str) -> Optional[str]:
        self._check()
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._check()
        if self.quota_bytes is not None:
            projected = dict(self._data)
            projected[key] = value
            if _used_bytes(projected) > self.quota_bytes:
                raise QuotaExceededError(f"quota of {self.quota_bytes} bytes exceeded writing {key}")
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._check()
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        self._check()
        return list(self._data.keys())

    def clear(self) -> None:
        self._check()
        self._data.clear()


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # per-process temp name: two writers never share a half-written file
    tmp = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    with tmp.open("w", encoding="utf-8") as f:
        f.write(text)
    os.replace(tmp, path)


class JsonFileStore(KeyValueStore):
    """
    Durable tier persisted as one JSON object {key: value} on disk.

    - Atomic writes via temp file + os.replace
    - Every access re-reads the file under a thread lock plus a FileLock on
      `<path>.lock`, so several processes (server, CLI) can share one file;
      read-modify-write never drops another writer's keys
    - A corrupt file is moved aside to `<path>.corrupt` and reads as empty
    """

    def __init__(self, path: Path | str, quota_bytes: Optional[int] = None, lock_timeout: float = 30) -> None:
        self.path = Path(path)
        self.quota_bytes = quota_bytes
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._thread_lock = threading.RLock()
        self._file_lock = FileLock(str(self.path) + ".lock", timeout=lock_timeout)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._thread_lock:
            try:
                self._file_lock.acquire()
            except Timeout as e:
                log.error(f"timeout acquiring file lock for {self.path}")
                raise StorageDisabledError(f"{self.path} is locked by another process") from e
            try:
                yield
            finally:
                self._file_lock.release()

    def _quarantine(self, reason: str) -> None:
        corrupt = self.path.with_name(self.path.name + ".corrupt")
        log.error(f"durable file {self.path} is unreadable ({reason}); moved to {corrupt}")
        try:
            os.replace(self.path, corrupt)
        except OSError as e:
            log.error(f"could not move corrupt file aside: {e}")

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except OSError as e:
            log.error(f"cannot read {self.path}: {e}")
            return {}
        except ValueError as e:
            self._quarantine(str(e))
            return {}
        if not isinstance(raw, dict):
            self._quarantine(f"expected an object, got {type(raw).__name__}")
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _save(self, data: Dict[str, str]) -> None:
        try:
            _atomic_write_text(self.path, json.dumps(data, ensure_ascii=False, indent=2))
        except OSError as e:
            raise StorageDisabledError(f"cannot write {self.path}: {e}") from e

    def get_item(self, key: str) -> Optional[str]:
        with self._locked():
            return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._locked():
            data = self._load()
            data[key] = value
            if self.quota_bytes is not None and _used_bytes(data) > self.quota_bytes:
                raise QuotaExceededError(f"quota of {self.quota_bytes} bytes exceeded writing {key}")
            self._save(data)

    def remove_item(self, key: str) -> None:
        with self._locked():
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)

    def keys(self) -> List[str]:
        with self._locked():
            return list(self._load().keys())

    def clear(self) -> None:
        with self._locked():
            self._save({})



@dataclass
class RedisStore(KeyValueStore):
    """
    Thin wrapper over redis-py for a durable tier shared across processes.
    Pass `client` to reuse an existing connection (tests inject a fake).
    """

    url: str = "redis://localhost:6379/0"
    prefix: str = "sn:"
    client: Any = None

    def __post_init__(self):
        if self.client is None:
            self.client = redis.Redis.from_url(self.url, decode_responses=True)

    def _k(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get_item(self, key: str) -> Optional[str]:
        try:
            val = self.client.get(self._k(key))
        except redis.RedisError as e:
            raise StorageDisabledError(str(e)) from e
        if val is None:
            return None
        return val if isinstance(val, str) else val.decode("utf-8")

    def set_item(self, key: str, value: str) -> None:
        try:
            self.client.set(self._k(key), value)
        except redis.ResponseError as e:
            # maxmemory reached under noeviction
            if "OOM" in str(e):
                raise QuotaExceededError(str(e)) from e
            raise StorageDisabledError(str(e)) from e
        except redis.RedisError as e:
            raise StorageDisabledError(str(e)) from e

    def remove_item(self, key: str) -> None:
        try:
            self.client.delete(self._k(key))
        except redis.RedisError as e:
            raise StorageDisabledError(str(e)) from e

    def keys(self) -> List[str]:
        out: List[str] = []
        try:
            for k in self.client.scan_iter(match=f"{self.prefix}*", count=500):
                k = k if isinstance(k, str) else k.decode("utf-8")
                out.append(k[len(self.prefix):])
        except redis.RedisError as e:
            raise StorageDisabledError(str(e)) from e
        return out

    def clear(self) -> None:
        keys = self.keys()
        if keys:
            try:
                self.client.delete(*[self._k(k) for k in keys])
            except redis.RedisError as e:
                raise StorageDisabledError(str(e)) from e


def open_durable_store(backend: str, *, state_dir: Path | str = "state", redis_url: str = "") -> KeyValueStore:
    """Build the durable tier named by Settings.STORAGE_BACKEND."""
    backend = (backend or "file").lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "redis":
        return RedisStore(url=redis_url or "redis://localhost:6379/0")
    if backend == "file":
        return JsonFileStore(Path(state_dir) / "durable.json")
    raise ValueError(f"Unknown storage backend: {backend}")
