"""
Durable, ordered record collections with single-writer mutation.

A ``RecordStore`` owns one collection of pydantic models and is the only
component allowed to touch its durable copy. Every mutation runs as a
read-modify-write cycle under one lock, so concurrent request handlers can
never interleave their reads and writes and silently drop an update.

Two backends satisfy the same contract:

- ``JsonFileRecordStore``: a single JSON array document, replaced atomically
  (temp file + fsync + ``os.replace``) on every write
- ``SqliteRecordStore``: an embedded SQLite file, one transaction per write

Readers get a ``Snapshot`` (records plus a version marker). ``write`` is a
compare-and-swap against that version; ``update`` wraps the whole cycle.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from threading import RLock
from typing import Callable, Generic, Iterator, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .configuration import Settings
from .errors import StorageFailure, StoreConflictError
from .utils import atomic_write_json, ensure_directory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)
R = TypeVar("R")

# A mutator receives a private copy of the records and returns
# (new records or None to skip the write, value handed back to the caller)
Mutator = Callable[[List[T]], Tuple[Optional[List[T]], R]]


@dataclass(frozen=True)
class Snapshot(Generic[T]):
    records: Tuple[T, ...]
    version: int


class RecordStore(ABC, Generic[T]):
    """
    Storage port for one collection of ``model`` instances.

    Thread Safety:
        All public methods acquire the store lock. Lock acquisition is bounded
        by ``lock_timeout``; exceeding it raises ``StorageFailure``.

    Records inside a snapshot are shared with the cache and must not be
    mutated in place; use ``model_copy`` and write the copy back.
    """

    def __init__(self, model: Type[T], lock_timeout: float = 10.0) -> None:
        self.model = model
        self._lock = RLock()
        self._lock_timeout = lock_timeout

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise StorageFailure("Timed out waiting for exclusive access to the record store")
        try:
            yield
        finally:
            self._lock.release()

    def read(self) -> Snapshot[T]:
        with self._exclusive():
            return self._load()

    def write(self, records: Sequence[T], expected_version: int) -> Snapshot[T]:
        """
        Replace the collection if nobody wrote since ``expected_version``.

        Raises:
            StoreConflictError: If the stored version moved on
            StorageFailure: If the durable write fails
        """
        with self._exclusive():
            current = self._load()
            if current.version != expected_version:
                raise StoreConflictError(
                    "Record store changed since it was read",
                    details={"expected": expected_version, "actual": current.version},
                )
            return self._store(records, current)

    def update(self, mutator: Mutator[T, R]) -> R:
        """Run ``mutator`` as one serialized read-modify-write cycle."""
        with self._exclusive():
            snapshot = self._load()
            new_records, result = mutator(list(snapshot.records))
            if new_records is not None:
                self._store(new_records, snapshot)
            return result

    def clear(self) -> Snapshot[T]:
        with self._exclusive():
            return self._store([], self._load())

    def _parse(self, raw_records: object) -> Tuple[T, ...]:
        if not isinstance(raw_records, list):
            raise StorageFailure(f"Stored {self.model.__name__} collection is not a list")
        try:
            return tuple(self.model.model_validate(item) for item in raw_records)
        except PydanticValidationError as exc:
            logger.error(f"Stored {self.model.__name__} record failed validation: {exc}")
            raise StorageFailure(f"Stored {self.model.__name__} record is invalid") from exc

    @staticmethod
    def _dump(records: Sequence[T]) -> List[dict]:
        return [record.model_dump(mode="json", by_alias=True) for record in records]

    @abstractmethod
    def _load(self) -> Snapshot[T]:
        """Return the current snapshot, from cache when it is still fresh."""

    @abstractmethod
    def _store(self, records: Sequence[T], current: Snapshot[T]) -> Snapshot[T]:
        """Durably replace the collection; ``current`` is the snapshot being replaced."""


class JsonFileRecordStore(RecordStore[T]):
    """
    Collection persisted as one JSON array document.

    The parsed document is cached together with the file's (mtime_ns, size)
    so repeated reads skip parsing, while an edit made outside this process
    still invalidates the cache.
    """

    def __init__(self, path: Path, model: Type[T], lock_timeout: float = 10.0) -> None:
        super().__init__(model, lock_timeout)
        self.path = Path(path)
        self._version = 0
        self._cache: Optional[Snapshot[T]] = None
        self._cache_stat: Optional[Tuple[int, int]] = None
        try:
            ensure_directory(self.path.parent)
            if not self.path.exists():
                atomic_write_json(self.path, [])
        except OSError as exc:
            raise StorageFailure(f"Cannot initialise record store at {self.path}: {exc}") from exc

    def _stat(self) -> Optional[Tuple[int, int]]:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageFailure(f"Cannot access {self.path.name}: {exc}") from exc
        return stat.st_mtime_ns, stat.st_size

    def _load(self) -> Snapshot[T]:
        stat = self._stat()
        if self._cache is not None and stat == self._cache_stat:
            return self._cache

        if stat is None:
            # Deleted underneath us; the next write recreates it
            records: Tuple[T, ...] = ()
        else:
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.error(f"Failed to read {self.path}: {exc}")
                raise StorageFailure(f"Failed to read {self.path.name}") from exc
            records = self._parse(raw)

        self._version += 1
        self._cache = Snapshot(records=records, version=self._version)
        self._cache_stat = stat
        return self._cache

    def _store(self, records: Sequence[T], current: Snapshot[T]) -> Snapshot[T]:
        try:
            atomic_write_json(self.path, self._dump(records))
        except OSError as exc:
            logger.error(f"Failed to write {self.path}: {exc}")
            raise StorageFailure(f"Failed to write {self.path.name}") from exc

        self._version = current.version + 1
        self._cache = Snapshot(records=tuple(records), version=self._version)
        self._cache_stat = self._stat()
        logger.debug(f"Wrote {len(records)} record(s) to {self.path} (version {self._version})")
        return self._cache


class SqliteRecordStore(RecordStore[T]):
    """
    Collection persisted in an embedded SQLite database.

    Several collections can share one database file; each is keyed by
    ``collection``. A whole-collection write is a single ``BEGIN IMMEDIATE``
    transaction, so a crash leaves either the old or the new collection.
    """

    def __init__(self, db_path: Path, collection: str, model: Type[T], lock_timeout: float = 10.0) -> None:
        super().__init__(model, lock_timeout)
        self.db_path = Path(db_path)
        self.collection = collection
        self._cache: Optional[Snapshot[T]] = None
        try:
            ensure_directory(self.db_path.parent)
            self._init_db()
        except (OSError, sqlite3.Error) as exc:
            raise StorageFailure(f"Cannot initialise record store at {self.db_path}: {exc}") from exc

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection; callers open transactions explicitly."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS collections (
                    name TEXT PRIMARY KEY,
                    version INTEGER NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    collection TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    body TEXT NOT NULL,
                    PRIMARY KEY (collection, position)
                )
            """)
            conn.execute(
                "INSERT OR IGNORE INTO collections (name, version) VALUES (?, 1)",
                (self.collection,),
            )

    @staticmethod
    def _version_of(conn: sqlite3.Connection, collection: str) -> int:
        row = conn.execute("SELECT version FROM collections WHERE name = ?", (collection,)).fetchone()
        return row["version"] if row else 0

    def _load(self) -> Snapshot[T]:
        try:
            with self._get_connection() as conn:
                version = self._version_of(conn, self.collection)
                if self._cache is not None and self._cache.version == version:
                    return self._cache
                rows = conn.execute(
                    "SELECT body FROM records WHERE collection = ? ORDER BY position",
                    (self.collection,),
                ).fetchall()
            raw = [json.loads(row["body"]) for row in rows]
        except (sqlite3.Error, ValueError) as exc:
            logger.error(f"Failed to read collection {self.collection!r}: {exc}")
            raise StorageFailure(f"Failed to read collection {self.collection}") from exc

        self._cache = Snapshot(records=self._parse(raw), version=version)
        return self._cache

    def _store(self, records: Sequence[T], current: Snapshot[T]) -> Snapshot[T]:
        bodies = [json.dumps(item) for item in self._dump(records)]
        try:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    # Another process may share the file
                    if self._version_of(conn, self.collection) != current.version:
                        raise StoreConflictError("Collection changed by another writer")
                    conn.execute("DELETE FROM records WHERE collection = ?", (self.collection,))
                    conn.executemany(
                        "INSERT INTO records (collection, position, body) VALUES (?, ?, ?)",
                        [(self.collection, index, body) for index, body in enumerate(bodies)],
                    )
                    new_version = current.version + 1
                    conn.execute(
                        "UPDATE collections SET version = ? WHERE name = ?",
                        (new_version, self.collection),
                    )
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as exc:
            logger.error(f"Failed to write collection {self.collection!r}: {exc}")
            raise StorageFailure(f"Failed to write collection {self.collection}") from exc

        self._cache = Snapshot(records=tuple(records), version=new_version)
        return self._cache


def build_record_store(settings: Settings, collection: str, model: Type[T]) -> RecordStore[T]:
    """Create the configured backend for ``collection``."""
    backend = settings.storage.backend.lower()
    timeout = settings.storage.lock_timeout_seconds
    if backend == "json":
        return JsonFileRecordStore(settings.data_dir / f"{collection}.json", model, lock_timeout=timeout)
    if backend == "sqlite":
        return SqliteRecordStore(settings.data_dir / "print_orders.db", collection, model, lock_timeout=timeout)
    raise ValueError(f"Unknown storage backend: {settings.storage.backend!r}")
