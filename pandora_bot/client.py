"""Owns the database engine and the stores built on it."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .config import Settings
from .engine import DEFAULT_LOCK_TIMEOUT, DEFAULT_MAP_SIZE, Engine
from .errors import StorageUnavailable
from .factoids import Clock, FactoidStore
from .responses import ResponseStore
from .service import FactoidService

logger = logging.getLogger(__name__)


class DataClient:
    """Opens the database file once per process and hands out the stores.

    The standalone response bucket is only created when
    :attr:`responses` is first used.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        clock: Clock | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        map_size: int = DEFAULT_MAP_SIZE,
    ) -> None:
        self.path = Path(path)
        self._clock = clock
        self._lock_timeout = lock_timeout
        self._map_size = map_size
        self._engine: Optional[Engine] = None
        self._factoids: Optional[FactoidStore] = None
        self._responses: Optional[ResponseStore] = None

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock | None = None) -> "DataClient":
        return cls(
            settings.db_path,
            clock=clock,
            lock_timeout=settings.db_lock_timeout,
            map_size=settings.db_map_size,
        )

    def open(self) -> "DataClient":
        if self._engine is not None:
            return self
        engine = Engine.open(self.path, lock_timeout=self._lock_timeout, map_size=self._map_size)
        try:
            self._factoids = FactoidStore(engine, clock=self._clock)
        except Exception:
            engine.close()
            raise
        self._engine = engine
        return self

    def close(self) -> None:
        if self._engine is not None:
            self._engine.close()
        self._engine = None
        self._factoids = None
        self._responses = None

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise StorageUnavailable(f"database {self.path} is not open")
        return self._engine

    @property
    def factoids(self) -> FactoidStore:
        self._require_engine()
        assert self._factoids is not None
        return self._factoids

    @property
    def responses(self) -> ResponseStore:
        engine = self._require_engine()
        if self._responses is None:
            self._responses = ResponseStore(engine, clock=self._clock)
        return self._responses

    def service(self, **kwargs) -> FactoidService:
        return FactoidService(self.factoids, **kwargs)

    def __enter__(self) -> "DataClient":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["DataClient"]
