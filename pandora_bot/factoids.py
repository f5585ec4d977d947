"""Factoid persistence with a trigger -> id secondary index."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from .codec import decode_factoid, encode_factoid, has_legacy_responses
from .engine import Engine, Transaction, btoi, itob
from .errors import AlreadyExistsError, ConflictError, NotFoundError, ValidationError
from .models import Factoid
from .triggers import clean_trigger

logger = logging.getLogger(__name__)

FACTOID_BUCKET = "Factoids"
TRIGGER_INDEX_BUCKET = "FactoidTriggerIndex"

# Upper bound on factoids returned by a single range query.
MAX_FACTOID_FETCH = 100
MAX_FACTOID_ID = 2**64 - 1

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _decode(key: bytes, data: bytes) -> Factoid:
    # the storage key is authoritative; legacy bodies may lack or misstate the id
    factoid = decode_factoid(data)
    factoid.id = btoi(key)
    return factoid


def _normalise(trigger: str) -> str:
    cleaned = clean_trigger(trigger or "")
    if not cleaned:
        raise ValidationError("factoid trigger is empty")
    return cleaned


class FactoidStore:
    """CRUD over factoid records plus the trigger index.

    Every public method runs in exactly one engine transaction. The primary
    record and its index entry are always written or removed together.
    """

    def __init__(self, engine: Engine, clock: Clock | None = None) -> None:
        if engine is None:
            raise ValidationError("FactoidStore requires an engine")
        self._engine = engine
        self._clock = clock or utc_now
        engine.ensure_buckets(FACTOID_BUCKET, TRIGGER_INDEX_BUCKET)

    @property
    def engine(self) -> Engine:
        return self._engine

    def now(self) -> datetime:
        return self._clock()

    # Transaction-scoped helpers ----------------------------------------
    # These run inside a caller's transaction so higher layers (the chat
    # service, the migration tool) can compose several steps atomically.
    def fetch(self, txn: Transaction, factoid_id: int) -> Optional[Factoid]:
        key = itob(factoid_id)
        data = txn.bucket(FACTOID_BUCKET).get(key)
        if data is None:
            return None
        return _decode(key, data)

    def fetch_by_trigger(self, txn: Transaction, trigger: str) -> Optional[Factoid]:
        owner = self.indexed_id(txn, trigger)
        if owner is None:
            return None
        return self.fetch(txn, owner)

    def indexed_id(self, txn: Transaction, trigger: str) -> Optional[int]:
        cleaned = clean_trigger(trigger or "")
        if not cleaned:
            return None
        raw = txn.bucket(TRIGGER_INDEX_BUCKET).get(cleaned.encode("utf-8"))
        if raw is None:
            return None
        return btoi(raw)

    def insert(self, txn: Transaction, factoid: Factoid) -> int:
        """Allocate an id for ``factoid`` and write record plus index entry."""

        factoid.trigger = _normalise(factoid.trigger)
        index = txn.bucket(TRIGGER_INDEX_BUCKET)
        existing = index.get(factoid.trigger.encode("utf-8"))
        if existing is not None:
            existing_id = btoi(existing)
            logger.debug("Rejected create of %r; owned by %d", factoid.trigger, existing_id)
            raise AlreadyExistsError(
                f"factoid {factoid.trigger!r} already exists", existing_id
            )
        factoid.id = index.next_sequence()
        now = self.now()
        factoid.date_created = now
        factoid.date_edited = now
        self._write(txn, factoid)
        logger.info("Created factoid %d %r", factoid.id, factoid.trigger)
        return factoid.id

    def replace(self, txn: Transaction, prior: Factoid, factoid: Factoid) -> int:
        """Overwrite ``prior`` with ``factoid`` keeping its id.

        A trigger rename drops the stale index entry before the new one is
        installed; renaming onto a trigger owned by another factoid raises
        :class:`ConflictError`.
        """

        factoid.trigger = _normalise(factoid.trigger)
        factoid.id = prior.id
        index = txn.bucket(TRIGGER_INDEX_BUCKET)
        if factoid.trigger != prior.trigger:
            owner = index.get(factoid.trigger.encode("utf-8"))
            if owner is not None and btoi(owner) != prior.id:
                raise ConflictError(factoid.trigger, btoi(owner))
            index.delete(prior.trigger.encode("utf-8"))
            logger.info(
                "Renamed factoid %d from %r to %r", prior.id, prior.trigger, factoid.trigger
            )
        if factoid.date_created is None:
            factoid.date_created = prior.date_created
        factoid.date_edited = self.now()
        self._write(txn, factoid)
        return factoid.id

    def _write(self, txn: Transaction, factoid: Factoid) -> None:
        key = itob(factoid.id)
        txn.bucket(FACTOID_BUCKET).put(key, encode_factoid(factoid))
        txn.bucket(TRIGGER_INDEX_BUCKET).put(factoid.trigger.encode("utf-8"), key)

    # Queries ------------------------------------------------------------
    def get_by_id(self, factoid_id: int) -> Optional[Factoid]:
        with self._engine.begin() as txn:
            return self.fetch(txn, factoid_id)

    def get_by_trigger(self, trigger: str) -> Optional[Factoid]:
        with self._engine.begin() as txn:
            return self.fetch_by_trigger(txn, trigger)

    def exists(self, factoid_id: int) -> bool:
        with self._engine.begin() as txn:
            return txn.bucket(FACTOID_BUCKET).get(itob(factoid_id)) is not None

    def exists_by_trigger(self, trigger: str) -> bool:
        with self._engine.begin() as txn:
            return self.indexed_id(txn, trigger) is not None

    def range(self, from_id: int, count: int) -> List[Factoid]:
        """Return up to ``count`` factoids with id >= ``from_id`` in id order.

        ``count`` is clamped to :data:`MAX_FACTOID_FETCH`.
        """

        count = min(count, MAX_FACTOID_FETCH)
        factoids: List[Factoid] = []
        if count <= 0:
            return factoids
        with self._engine.begin() as txn:
            for key, data in txn.bucket(FACTOID_BUCKET).seek(itob(from_id)):
                factoids.append(_decode(key, data))
                if len(factoids) >= count:
                    break
        return factoids

    def count(self) -> int:
        with self._engine.begin() as txn:
            return txn.bucket(FACTOID_BUCKET).count()

    def iter_all(self, batch_size: int = MAX_FACTOID_FETCH) -> Iterator[Factoid]:
        """Walk every factoid in id order, one short read per batch."""

        next_id = 0
        while True:
            batch = self.range(next_id, batch_size)
            if not batch:
                return
            yield from batch
            if batch[-1].id >= MAX_FACTOID_ID:
                return
            next_id = batch[-1].id + 1

    # Mutations ----------------------------------------------------------
    def create(self, factoid: Factoid) -> int:
        """Store a new factoid and return its freshly allocated id.

        Raises :class:`AlreadyExistsError` (carrying the existing id) when the
        trigger is already indexed; the existing record is left untouched.
        """

        _normalise(factoid.trigger)
        with self._engine.begin(write=True) as txn:
            return self.insert(txn, factoid)

    def put(self, factoid_id: int, factoid: Factoid) -> int:
        """Overwrite the factoid stored under ``factoid_id``.

        When nothing is stored under that id the factoid is created with a
        newly allocated id instead, which is returned.
        """

        _normalise(factoid.trigger)
        with self._engine.begin(write=True) as txn:
            prior = self.fetch(txn, factoid_id)
            if prior is None:
                return self.insert(txn, factoid)
            return self.replace(txn, prior, factoid)

    def put_by_trigger(self, trigger: str, factoid: Factoid) -> int:
        """Upsert keyed by trigger: overwrite the owner of ``trigger`` or create."""

        factoid.trigger = _normalise(trigger)
        with self._engine.begin(write=True) as txn:
            prior = self.fetch_by_trigger(txn, factoid.trigger)
            if prior is None:
                return self.insert(txn, factoid)
            return self.replace(txn, prior, factoid)

    def update(self, factoid: Factoid) -> int:
        """Overwrite an existing factoid identified by ``factoid.id``."""

        _normalise(factoid.trigger)
        with self._engine.begin(write=True) as txn:
            prior = self.fetch(txn, factoid.id) if factoid.id else None
            if prior is None:
                raise NotFoundError(f"factoid {factoid.id} does not exist")
            return self.replace(txn, prior, factoid)

    def delete(self, factoid_id: int) -> Factoid:
        """Remove a factoid and its index entry; returns the removed record."""

        with self._engine.begin(write=True) as txn:
            prior = self.fetch(txn, factoid_id)
            if prior is None:
                raise NotFoundError(f"factoid {factoid_id} does not exist")
            txn.bucket(TRIGGER_INDEX_BUCKET).delete(prior.trigger.encode("utf-8"))
            txn.bucket(FACTOID_BUCKET).delete(itob(factoid_id))
        logger.info("Deleted factoid %d %r", factoid_id, prior.trigger)
        return prior

    def migrate_legacy(self, dry_run: bool = False) -> Dict[str, Any]:
        """Rewrite every factoid whose stored bytes still carry list responses.

        Decoding already upgrades the responses in memory; writing the record
        back makes the upgrade permanent. Dates are left as stored. With
        ``dry_run`` nothing is written.
        """

        scanned = 0
        pending: List[int] = []
        with self._engine.begin(write=not dry_run) as txn:
            bucket = txn.bucket(FACTOID_BUCKET)
            for key, data in list(bucket.items()):
                scanned += 1
                if not has_legacy_responses(data):
                    continue
                factoid = _decode(key, data)
                pending.append(btoi(key))
                if not dry_run:
                    bucket.put(key, encode_factoid(factoid))
        if pending and not dry_run:
            logger.info("Migrated legacy responses on %d of %d factoids", len(pending), scanned)
        return {
            "scanned": scanned,
            "pending": len(pending),
            "migrated": 0 if dry_run else len(pending),
            "ids": pending,
            "dry_run": dry_run,
        }


__all__ = [
    "FACTOID_BUCKET",
    "FactoidStore",
    "MAX_FACTOID_FETCH",
    "TRIGGER_INDEX_BUCKET",
    "utc_now",
]
