"""Embedded key-value engine adapter built on LMDB.

The stores only ever see three things from here: an :class:`Engine` that
hands out transactions, a :class:`Transaction` that is committed or aborted
as a context manager, and :class:`Bucket` views (named, byte-ordered maps)
with a per-bucket sequence counter.

LMDB already serialises writers and gives every reader a consistent
snapshot. Exclusive ownership of the database file by one process is
enforced with a lock file acquired at open time.
"""
from __future__ import annotations

import logging
import struct
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

import lmdb
from filelock import FileLock, Timeout

from .errors import StorageUnavailable, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 1.0
DEFAULT_MAP_SIZE = 256 * 1024**2
MAX_BUCKETS = 16

_SEQUENCE_DB = b"__sequences__"
_U64_MAX = 2**64 - 1


def itob(value: int) -> bytes:
    """Encode ``value`` as an 8-byte big-endian key."""

    if not 0 <= value <= _U64_MAX:
        raise ValidationError(f"id out of range: {value}")
    return struct.pack(">Q", value)


def btoi(data: bytes) -> int:
    """Decode an 8-byte big-endian key."""

    if len(data) != 8:
        raise ValidationError(f"expected 8-byte key, got {len(data)} bytes")
    return struct.unpack(">Q", data)[0]


class Bucket:
    """A named sub-database viewed through one transaction."""

    def __init__(self, txn: "Transaction", name: str, handle: Any) -> None:
        self._txn = txn
        self.name = name
        self._handle = handle

    def get(self, key: bytes) -> Optional[bytes]:
        value = self._txn.raw.get(key, db=self._handle)
        if not value:
            return None
        return bytes(value)

    def put(self, key: bytes, value: bytes) -> None:
        self._txn.require_write()
        try:
            self._txn.raw.put(key, value, db=self._handle)
        except lmdb.Error as exc:
            raise StorageUnavailable(f"write to {self.name} failed: {exc}") from exc

    def delete(self, key: bytes) -> bool:
        self._txn.require_write()
        try:
            return self._txn.raw.delete(key, db=self._handle)
        except lmdb.Error as exc:
            raise StorageUnavailable(f"delete from {self.name} failed: {exc}") from exc

    def seek(self, key: bytes) -> Iterator[Tuple[bytes, bytes]]:
        """Yield ``(key, value)`` pairs from the first key >= ``key`` onwards."""

        cursor = self._txn.raw.cursor(db=self._handle)
        if not cursor.set_range(key):
            return
        for found_key, value in cursor.iternext():
            yield bytes(found_key), bytes(value)

    def items(self) -> Iterator[Tuple[bytes, bytes]]:
        cursor = self._txn.raw.cursor(db=self._handle)
        for key, value in cursor:
            yield bytes(key), bytes(value)

    def count(self) -> int:
        return self._txn.raw.stat(self._handle)["entries"]

    def sequence(self) -> int:
        """Current value of this bucket's sequence counter."""

        data = self._txn.raw.get(self.name.encode("utf-8"), db=self._txn.sequences)
        return btoi(bytes(data)) if data else 0

    def next_sequence(self) -> int:
        """Increment and return this bucket's sequence counter.

        The counter is written inside the current transaction, so an aborted
        transaction hands the id back.
        """

        self._txn.require_write()
        value = self.sequence() + 1
        self._txn.raw.put(self.name.encode("utf-8"), itob(value), db=self._txn.sequences)
        return value


class Transaction:
    """One LMDB transaction. Use as a context manager.

    On a clean exit a write transaction commits and a read transaction is
    released; any exception aborts.
    """

    def __init__(self, engine: "Engine", raw: lmdb.Transaction, write: bool) -> None:
        self._engine = engine
        self.raw = raw
        self.write = write
        self._done = False

    @property
    def sequences(self) -> Any:
        return self._engine._handle(_SEQUENCE_DB.decode("ascii"))

    def bucket(self, name: str) -> Bucket:
        return Bucket(self, name, self._engine._handle(name))

    def require_write(self) -> None:
        if not self.write:
            raise StorageUnavailable("write attempted inside a read transaction")

    def commit(self) -> None:
        if self._done:
            return
        self._done = True
        try:
            if self.write:
                self.raw.commit()
            else:
                self.raw.abort()
        except lmdb.Error as exc:
            raise StorageUnavailable(f"commit failed: {exc}") from exc

    def abort(self) -> None:
        if self._done:
            return
        self._done = True
        self.raw.abort()

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.abort()


class Engine:
    """Process-exclusive handle on an LMDB environment."""

    def __init__(self, env: lmdb.Environment, lock: FileLock, path: Path) -> None:
        self._env = env
        self._lock = lock
        self.path = path
        self._handles: Dict[str, Any] = {}
        self._handles[_SEQUENCE_DB.decode("ascii")] = env.open_db(_SEQUENCE_DB)

    @classmethod
    def open(
        cls,
        path: Path | str,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        map_size: int = DEFAULT_MAP_SIZE,
    ) -> "Engine":
        """Open or create the database file at ``path``.

        Raises :class:`StorageUnavailable` when another process holds the
        file past ``lock_timeout`` seconds or LMDB cannot open it.
        """

        path = Path(path)
        lock = FileLock(f"{path}.lock", timeout=lock_timeout)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            lock.acquire()
        except Timeout as exc:
            raise StorageUnavailable(
                f"timed out after {lock_timeout}s waiting for lock on {path}"
            ) from exc
        except OSError as exc:
            raise StorageUnavailable(f"cannot lock {path}: {exc}") from exc

        try:
            env = lmdb.open(
                str(path),
                subdir=False,
                map_size=map_size,
                max_dbs=MAX_BUCKETS,
            )
            engine = cls(env, lock, path)
        except lmdb.Error as exc:
            lock.release()
            raise StorageUnavailable(f"cannot open {path}: {exc}") from exc
        logger.info("Opened factoid database %s", path)
        return engine

    @property
    def closed(self) -> bool:
        return self._env is None

    def _handle(self, name: str) -> Any:
        try:
            return self._handles[name]
        except KeyError:
            raise StorageUnavailable(f"bucket {name!r} has not been initialised") from None

    def ensure_buckets(self, *names: str) -> None:
        """Create each named bucket if it does not exist yet."""

        if self._env is None:
            raise StorageUnavailable("engine is closed")
        try:
            with self._env.begin(write=True) as txn:
                for name in names:
                    if name not in self._handles:
                        self._handles[name] = self._env.open_db(
                            name.encode("utf-8"), txn=txn, create=True
                        )
        except lmdb.Error as exc:
            raise StorageUnavailable(f"cannot initialise buckets {names}: {exc}") from exc
        logger.debug("Buckets ready: %s", ", ".join(names))

    def begin(self, write: bool = False) -> Transaction:
        if self._env is None:
            raise StorageUnavailable("engine is closed")
        try:
            raw = self._env.begin(write=write)
        except lmdb.Error as exc:
            raise StorageUnavailable(f"cannot begin transaction: {exc}") from exc
        return Transaction(self, raw, write)

    def close(self) -> None:
        if self._env is None:
            return
        self._env.close()
        self._env = None
        self._handles.clear()
        self._lock.release()
        logger.info("Closed factoid database %s", self.path)

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "Bucket",
    "DEFAULT_LOCK_TIMEOUT",
    "Engine",
    "Transaction",
    "btoi",
    "itob",
]
