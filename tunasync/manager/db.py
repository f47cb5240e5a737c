"""Storage of workers and mirror statuses on a key-value store."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

import redis

from ..msg import MirrorStatus, WorkerStatus
from ..status import SyncStatus
from .kv import BucketStore, KVStore, PrefixStore, RedisStore

logger = logging.getLogger("tunasync")

WORKER_BUCKET = "workers"
STATUS_BUCKET = "mirror_status"


class DBError(Exception):
    """Raised when the database cannot serve a request."""


def _encode(obj: Any) -> bytes:
    return json.dumps(obj.to_dict(), separators=(",", ":")).encode("utf-8")


def _decode(cls: Any, value: bytes) -> Any:
    return cls.from_dict(json.loads(value))


_DECODE_ERRORS = (ValueError, TypeError, AttributeError)


class DBAdapter:
    """Workers and mirror statuses kept in a bucketed key-value store."""

    def __init__(self, kv: KVStore | None):
        self.kv = kv

    def init(self) -> None:
        for bucket in (WORKER_BUCKET, STATUS_BUCKET):
            try:
                self.kv.init_bucket(bucket)
            except Exception as exc:
                raise DBError(f"create bucket {WORKER_BUCKET} error: {exc}") from exc

    def _decode_all(self, cls: Any, bucket: str) -> list[tuple[str, Any]]:
        items = []
        for key, value in self.kv.get_all(bucket).items():
            try:
                items.append((key, _decode(cls, value)))
            except _DECODE_ERRORS as exc:
                logger.error("failed to decode %s/%s: %s", bucket, key, exc)
        return items

    def list_workers(self) -> list[WorkerStatus]:
        return [w for _, w in self._decode_all(WorkerStatus, WORKER_BUCKET)]

    def get_worker(self, worker_id: str) -> WorkerStatus:
        value = self.kv.get(WORKER_BUCKET, worker_id)
        if value is None:
            raise DBError(f"invalid workerID {worker_id}")
        try:
            return _decode(WorkerStatus, value)
        except _DECODE_ERRORS as exc:
            raise DBError(str(exc)) from exc

    def delete_worker(self, worker_id: str) -> None:
        if self.kv.get(WORKER_BUCKET, worker_id) is None:
            raise DBError(f"invalid workerID {worker_id}")
        self.kv.delete(WORKER_BUCKET, worker_id)

    def create_worker(self, w: WorkerStatus) -> WorkerStatus:
        self.kv.put(WORKER_BUCKET, w.id, _encode(w))
        return w

    def refresh_worker(self, worker_id: str) -> WorkerStatus:
        w = self.get_worker(worker_id)
        w.last_online = datetime.now().astimezone()
        return self.create_worker(w)

    def update_mirror_status(
        self, worker_id: str, mirror_id: str, status: MirrorStatus
    ) -> MirrorStatus:
        self.kv.put(STATUS_BUCKET, f"{mirror_id}/{worker_id}", _encode(status))
        return status

    def get_mirror_status(self, worker_id: str, mirror_id: str) -> MirrorStatus:
        value = self.kv.get(STATUS_BUCKET, f"{mirror_id}/{worker_id}")
        if value is None:
            raise DBError(f"no mirror '{mirror_id}' exists in worker '{worker_id}'")
        try:
            return _decode(MirrorStatus, value)
        except _DECODE_ERRORS as exc:
            raise DBError(str(exc)) from exc

    def list_mirror_status(self, worker_id: str) -> list[MirrorStatus]:
        result = []
        for key, value in self.kv.get_all(STATUS_BUCKET).items():
            parts = key.split("/")
            if len(parts) < 2 or parts[1] != worker_id:
                continue
            try:
                result.append(_decode(MirrorStatus, value))
            except _DECODE_ERRORS as exc:
                logger.error("failed to decode status %s: %s", key, exc)
        return result

    def list_all_mirror_status(self) -> list[MirrorStatus]:
        return [m for _, m in self._decode_all(MirrorStatus, STATUS_BUCKET)]

    def flush_disabled_jobs(self) -> None:
        for key, m in self._decode_all(MirrorStatus, STATUS_BUCKET):
            if m.status == SyncStatus.DISABLED or not m.name:
                try:
                    self.kv.delete(STATUS_BUCKET, key)
                except Exception as exc:
                    logger.error("failed to delete status %s: %s", key, exc)

    def close(self) -> None:
        if self.kv is not None:
            self.kv.close()

    def __enter__(self) -> "DBAdapter":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def make_db_adapter(db_type: str, db_file: str) -> DBAdapter:
    """Open the database of the given type and prepare its buckets."""
    kv: KVStore
    if db_type == "bolt":
        kv = BucketStore(db_file, timeout=5.0)
    elif db_type == "redis":
        try:
            client = redis.Redis.from_url(db_file)
        except ValueError as exc:
            raise DBError(f"bad redis url: {exc}") from exc
        kv = RedisStore(client)
    elif db_type in ("badger", "leveldb"):
        kv = PrefixStore(db_file)
    else:
        raise DBError(f"unsupported db-type: {db_type}")
    adapter = DBAdapter(kv)
    adapter.init()
    return adapter