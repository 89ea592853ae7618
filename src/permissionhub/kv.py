"""Key-value persistence port for derived client state.

Health factors, badges and small client flags are stored as JSON values
under fixed string keys. The health engine reads them at startup and writes
them after every recomputation; it never knows which backend is behind the
port.

Backends:
    InMemoryKeyValueStore   process-local, lost on restart (tests, demos)
    JsonFileKeyValueStore   one JSON document on disk
    RedisKeyValueStore      shared Redis, values JSON-encoded
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import redis

from .config import HubConfig
from .exceptions import StorageError

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """get / set / clear over JSON-compatible values."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear(self, key: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release backend resources. No-op by default."""


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store. Values are deep-copied in and out."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def clear(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """All keys in a single JSON object on disk.

    Every write rewrites the file through a temporary sibling and
    ``os.replace``, so a crash never leaves a half-written document.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data = self._load()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read state file {self.path}: {e}", path=str(self.path)) from e
        if not isinstance(data, dict):
            raise StorageError(f"State file {self.path} does not hold a JSON object", path=str(self.path))
        return data

    def _flush(self) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(self._data, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageError(f"Cannot write state file {self.path}: {e}", path=str(self.path)) from e

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)
            self._flush()

    def clear(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store with JSON-encoded string values.

    Args:
        url: Redis URL (``redis://``, ``rediss://`` or ``unix://``).
        client: Pre-built client (tests, shared pools). Takes precedence over ``url``.
    """

    def __init__(self, url: Optional[str] = None, *, client: Optional[redis.Redis] = None) -> None:
        if client is None:
            if not url:
                raise StorageError("RedisKeyValueStore needs a url or a client")
            client = redis.from_url(url, decode_responses=True)
        self._client = client

    def get(self, key: str, default: Any = None) -> Any:
        try:
            raw = self._client.get(key)
        except redis.RedisError as e:
            raise StorageError(f"Redis get failed for {key}: {e}", key=key) from e
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON under %s, using default: %s", key, e)
            return default

    def set(self, key: str, value: Any) -> None:
        try:
            self._client.set(key, json.dumps(value, ensure_ascii=False))
        except redis.RedisError as e:
            raise StorageError(f"Redis set failed for {key}: {e}", key=key) from e

    def clear(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as e:
            raise StorageError(f"Redis delete failed for {key}: {e}", key=key) from e

    def close(self) -> None:
        self._client.close()


def create_kv_store(config: HubConfig) -> KeyValueStore:
    """Pick the backend from config: Redis, then state file, then memory."""
    if config.redis_url:
        logger.info("Derived state stored in Redis")
        return RedisKeyValueStore(config.redis_url)
    if config.state_path:
        logger.info("Derived state stored in %s", config.state_path)
        return JsonFileKeyValueStore(config.state_path)
    logger.info("Derived state kept in memory only")
    return InMemoryKeyValueStore()


__all__ = [
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "RedisKeyValueStore",
    "create_kv_store",
]
