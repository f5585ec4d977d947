"""Standalone response records keyed by their own id.

Responses point at a factoid through ``factoid_id`` but nothing enforces that
the factoid exists; callers clean up with :meth:`ResponseStore.delete_for_factoid`.
There is no factoid -> response index, so the per-factoid queries scan the
whole bucket in key (creation) order.
"""
from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Tuple

from .codec import decode_response, encode_response
from .engine import Engine, Transaction, btoi, itob
from .errors import OutOfRangeError, ValidationError
from .factoids import Clock, utc_now
from .models import FactoidResponse

logger = logging.getLogger(__name__)

RESPONSE_BUCKET = "FactoidResponse"


class ResponseStore:
    def __init__(self, engine: Engine, clock: Clock | None = None) -> None:
        if engine is None:
            raise ValidationError("ResponseStore requires an engine")
        self._engine = engine
        self._clock = clock or utc_now
        engine.ensure_buckets(RESPONSE_BUCKET)

    def _matches(self, txn: Transaction, factoid_id: int) -> Iterator[Tuple[bytes, FactoidResponse]]:
        for key, data in txn.bucket(RESPONSE_BUCKET).items():
            response = decode_response(data)
            response.id = btoi(key)
            if response.factoid_id == factoid_id:
                yield key, response

    def get(self, response_id: int) -> Optional[FactoidResponse]:
        with self._engine.begin() as txn:
            data = txn.bucket(RESPONSE_BUCKET).get(itob(response_id))
            if data is None:
                return None
            response = decode_response(data)
        response.id = response_id
        return response

    def exist(self, response_id: int) -> bool:
        with self._engine.begin() as txn:
            return txn.bucket(RESPONSE_BUCKET).get(itob(response_id)) is not None

    def create(self, response: FactoidResponse) -> int:
        if response is None:
            raise ValidationError("response create without value")
        if not response.factoid_id:
            raise ValidationError("response create without factoid id")
        with self._engine.begin(write=True) as txn:
            bucket = txn.bucket(RESPONSE_BUCKET)
            response.id = bucket.next_sequence()
            now = self._clock()
            response.date_created = response.date_created or now
            response.date_edited = now
            bucket.put(itob(response.id), encode_response(response))
        logger.debug("Created response %d for factoid %d", response.id, response.factoid_id)
        return response.id

    def put(self, response_id: int, response: FactoidResponse) -> None:
        """Store ``response`` under ``response_id``, replacing any existing record."""

        if not response_id:
            raise ValidationError("response put without id")
        if response is None:
            raise ValidationError("response put without value")
        if not response.factoid_id:
            raise ValidationError("response put without factoid id")
        response.id = response_id
        response.date_edited = self._clock()
        with self._engine.begin(write=True) as txn:
            txn.bucket(RESPONSE_BUCKET).put(itob(response_id), encode_response(response))

    def delete(self, response_id: int) -> bool:
        with self._engine.begin(write=True) as txn:
            return txn.bucket(RESPONSE_BUCKET).delete(itob(response_id))

    def delete_for_factoid(self, factoid_id: int) -> int:
        """Delete every response pointing at ``factoid_id``; returns how many."""

        with self._engine.begin(write=True) as txn:
            doomed = [key for key, _ in self._matches(txn, factoid_id)]
            bucket = txn.bucket(RESPONSE_BUCKET)
            for key in doomed:
                bucket.delete(key)
        if doomed:
            logger.info("Deleted %d responses for factoid %d", len(doomed), factoid_id)
        return len(doomed)

    def response_count(self, factoid_id: int) -> int:
        with self._engine.begin() as txn:
            return sum(1 for _ in self._matches(txn, factoid_id))

    def response_by_index(self, factoid_id: int, n: int) -> FactoidResponse:
        """Return the ``n``-th (zero based) response of a factoid in key order."""

        if n >= 0:
            with self._engine.begin() as txn:
                for index, (_key, response) in enumerate(self._matches(txn, factoid_id)):
                    if index == n:
                        return response
        raise OutOfRangeError(f"factoid {factoid_id} has no response at index {n}")

    def response_range(self, factoid_id: int, start: int, count: int) -> List[FactoidResponse]:
        """Skip ``start`` matches, then return up to ``count`` in key order."""

        found: List[FactoidResponse] = []
        if count <= 0:
            return found
        with self._engine.begin() as txn:
            for index, (_key, response) in enumerate(self._matches(txn, factoid_id)):
                if index < start:
                    continue
                found.append(response)
                if len(found) >= count:
                    break
        return found


__all__ = ["RESPONSE_BUCKET", "ResponseStore"]
