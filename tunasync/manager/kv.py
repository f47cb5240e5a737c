"""Key-value stores organised in named buckets."""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Any

import lmdb


class KVStore(ABC):
    """A key-value store whose keys live in named buckets."""

    @abstractmethod
    def init_bucket(self, bucket: str) -> None:
        """Make sure the bucket exists."""

    @abstractmethod
    def get(self, bucket: str, key: str) -> bytes | None:
        """Return the value of key, or None when it is absent."""

    @abstractmethod
    def get_all(self, bucket: str) -> dict[str, bytes]:
        """Return every key and value in the bucket."""

    @abstractmethod
    def put(self, bucket: str, key: str, value: bytes) -> None:
        """Store value under key."""

    @abstractmethod
    def delete(self, bucket: str, key: str) -> None:
        """Remove key; absent keys are ignored."""

    @abstractmethod
    def close(self) -> None:
        """Release the underlying database."""


class BucketStore(KVStore):
    """A single-file store with explicit buckets."""

    def __init__(self, path: str, timeout: float = 5.0):
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(path), timeout=timeout, check_same_thread=False)
        with self._conn:
            self._conn.execute("CREATE TABLE IF NOT EXISTS buckets (name TEXT PRIMARY KEY)")
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS entries ("
                "bucket TEXT NOT NULL, key TEXT NOT NULL, value BLOB NOT NULL, "
                "PRIMARY KEY (bucket, key))"
            )

    def _require(self, bucket: str) -> None:
        row = self._conn.execute("SELECT 1 FROM buckets WHERE name = ?", (bucket,)).fetchone()
        if row is None:
            raise LookupError(f"bucket {bucket} does not exist")

    def init_bucket(self, bucket: str) -> None:
        with self._lock, self._conn:
            self._conn.execute("INSERT OR IGNORE INTO buckets (name) VALUES (?)", (bucket,))

    def get(self, bucket: str, key: str) -> bytes | None:
        with self._lock:
            self._require(bucket)
            row = self._conn.execute(
                "SELECT value FROM entries WHERE bucket = ? AND key = ?", (bucket, key)
            ).fetchone()
        return None if row is None else bytes(row[0])

    def get_all(self, bucket: str) -> dict[str, bytes]:
        with self._lock:
            self._require(bucket)
            rows = self._conn.execute(
                "SELECT key, value FROM entries WHERE bucket = ? ORDER BY key", (bucket,)
            ).fetchall()
        return {key: bytes(value) for key, value in rows}

    def put(self, bucket: str, key: str, value: bytes) -> None:
        with self._lock, self._conn:
            self._require(bucket)
            self._conn.execute(
                "INSERT OR REPLACE INTO entries (bucket, key, value) VALUES (?, ?, ?)",
                (bucket, key, bytes(value)),
            )

    def delete(self, bucket: str, key: str) -> None:
        with self._lock, self._conn:
            self._require(bucket)
            self._conn.execute("DELETE FROM entries WHERE bucket = ? AND key = ?", (bucket, key))

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class PrefixStore(KVStore):
    """A store on one flat key space; buckets are key prefixes."""

    MAP_SIZE = 64 * 1024 * 1024

    def __init__(self, path: str):
        self._env = lmdb.open(str(path), map_size=self.MAP_SIZE)

    def init_bucket(self, bucket: str) -> None:
        return None

    @staticmethod
    def _key(bucket: str, key: str) -> bytes:
        return (bucket + key).encode("utf-8")

    def get(self, bucket: str, key: str) -> bytes | None:
        with self._env.begin() as txn:
            value = txn.get(self._key(bucket, key))
        return None if value is None else bytes(value)

    def get_all(self, bucket: str) -> dict[str, bytes]:
        prefix = bucket.encode("utf-8")
        result: dict[str, bytes] = {}
        with self._env.begin() as txn:
            cursor = txn.cursor()
            if not cursor.set_range(prefix):
                return result
            for raw_key, value in cursor:
                if not raw_key.startswith(prefix):
                    break
                result[raw_key[len(prefix):].decode("utf-8")] = bytes(value)
        return result

    def put(self, bucket: str, key: str, value: bytes) -> None:
        with self._env.begin(write=True) as txn:
            txn.put(self._key(bucket, key), bytes(value))

    def delete(self, bucket: str, key: str) -> None:
        with self._env.begin(write=True) as txn:
            txn.delete(self._key(bucket, key))

    def close(self) -> None:
        self._env.close()


def _as_str(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def _as_bytes(value: Any) -> bytes:
    return value if isinstance(value, bytes) else str(value).encode("utf-8")


class RedisStore(KVStore):
    """A store on a Redis server; each bucket is a hash."""

    def __init__(self, client: Any):
        self._client = client

    def init_bucket(self, bucket: str) -> None:
        return None

    def get(self, bucket: str, key: str) -> bytes | None:
        value = self._client.hget(bucket, key)
        return None if value is None else _as_bytes(value)

    def get_all(self, bucket: str) -> dict[str, bytes]:
        values = self._client.hgetall(bucket) or {}
        return {_as_str(k): _as_bytes(v) for k, v in values.items()}

    def put(self, bucket: str, key: str, value: bytes) -> None:
        self._client.hset(bucket, key, bytes(value))

    def delete(self, bucket: str, key: str) -> None:
        self._client.hdel(bucket, key)

    def close(self) -> None:
        self._client.close()