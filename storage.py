"""
Key-value persistence for learned model state.

Every engine talks to a ``KeyValueStore`` with three calls (``get``, ``set``,
``delete``) and stores JSON strings under fixed keys.  The backend is picked
from the environment the same way bank files used to be: S3 when a bucket is
configured, otherwise JSON files on local disk.  A SQL ``settings`` table and
an in-memory dict are available as well.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.exc import SQLAlchemyError

import config

LOG = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a backend cannot read or write a key."""


class KeyValueStore:
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class LocalFileStore(KeyValueStore):
    """One JSON file per key under ``folder``; writes are atomic."""

    def __init__(self, folder: str | Path = config.MODEL_STORE_DIR):
        self.folder = Path(folder)

    def _path(self, key: str) -> Path:
        return self.folder / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{key}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete {key}: {exc}") from exc


def get_s3_client():
    return boto3.client("s3", region_name=config.AWS_REGION)


class S3Store(KeyValueStore):
    def __init__(self, bucket: str, folder: str = "model_store", client=None):
        self.bucket = bucket
        self.folder = folder
        self.s3 = client or get_s3_client()

    def _key(self, key: str) -> str:
        return f"{self.folder}/{key}.json"

    def get(self, key: str) -> Optional[str]:
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=self._key(key))
            return obj["Body"].read().decode("utf-8")
        except self.s3.exceptions.NoSuchKey:
            return None
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"S3 Download Error: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=self._key(key),
                Body=value.encode("utf-8"),
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"S3 Upload Error: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=self._key(key))
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"S3 Delete Error: {exc}") from exc


class SqlSettingsStore(KeyValueStore):
    """Stores values in the application database's ``settings`` table."""

    def __init__(self, session_factory: Optional[Callable] = None):
        from database import SessionLocal

        self.session_factory = session_factory or SessionLocal

    def get(self, key: str) -> Optional[str]:
        from database import Setting

        try:
            with self.session_factory() as db:
                row = db.get(Setting, key)
                return row.value if row else None
        except SQLAlchemyError as exc:
            raise StorageError(f"Settings read failed for {key}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        from database import Setting

        try:
            with self.session_factory() as db:
                db.merge(Setting(key=key, value=value))
                db.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Settings write failed for {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        from database import Setting

        try:
            with self.session_factory() as db:
                row = db.get(Setting, key)
                if row is not None:
                    db.delete(row)
                    db.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Settings delete failed for {key}: {exc}") from exc


def get_store(backend: Optional[str] = None) -> KeyValueStore:
    """Build the configured store backend."""
    backend = (backend or config.MODEL_STORE_BACKEND).lower()
    if backend == "auto":
        backend = "s3" if config.S3_BUCKET else "local"

    if backend == "s3":
        if not config.S3_BUCKET:
            raise ValueError("MODEL_STORE_BACKEND=s3 requires S3_BUCKET")
        return S3Store(config.S3_BUCKET)
    if backend == "local":
        return LocalFileStore(config.MODEL_STORE_DIR)
    if backend == "sql":
        return SqlSettingsStore()
    if backend == "memory":
        return MemoryStore()
    raise ValueError(f"Unknown model store backend: {backend}")


class DebouncedWriter:
    """Batches writes and flushes them shortly after the last ``schedule``.

    A value of ``None`` deletes the key.  Failures are logged, never raised:
    losing one write only loses the latest generation.
    """

    def __init__(self, store: KeyValueStore, delay: float = config.PERSIST_DEBOUNCE_SECONDS):
        self.store = store
        self.delay = delay
        self._pending: Dict[str, Optional[str]] = {}
        self._task: Optional[asyncio.Task] = None

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def schedule(self, entries: Dict[str, Optional[str]]) -> None:
        self._pending.update(entries)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write_pending()
            return
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = loop.create_task(self._flush_later())

    def discard(self, keys) -> None:
        for key in keys:
            self._pending.pop(key, None)

    async def _flush_later(self) -> None:
        await asyncio.sleep(self.delay)
        self._write_pending()

    async def flush(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._write_pending()

    def _write_pending(self) -> None:
        pending, self._pending = self._pending, {}
        for key, value in pending.items():
            try:
                if value is None:
                    self.store.delete(key)
                else:
                    self.store.set(key, value)
            except Exception as exc:
                LOG.error("Failed to persist %s: %s", key, exc)
