"""Chat-facing operations over the factoid store."""
from __future__ import annotations

import logging
import random
from typing import Optional

from .errors import ResponseExistsError, ValidationError
from .factoids import FactoidStore
from .models import Factoid, FactoidResponse

logger = logging.getLogger(__name__)


class FactoidService:
    """Teach, forget and recall responses by trigger.

    Each call runs in one store transaction, so a teach that creates the
    factoid and adds its first response either fully lands or not at all.
    """

    def __init__(self, store: FactoidStore, rng: Optional[random.Random] = None) -> None:
        self._store = store
        # nosec B311 - response selection is not security sensitive
        self._rng = rng or random.Random()

    @property
    def store(self) -> FactoidStore:
        return self._store

    def teach(self, trigger: str, response: str) -> Factoid:
        """Remember ``response`` for ``trigger``, creating the factoid if needed.

        Raises :class:`ResponseExistsError` when the exact text is already known.
        """

        text = (response or "").strip()
        if not text:
            raise ValidationError("response text is empty")
        with self._store.engine.begin(write=True) as txn:
            now = self._store.now()
            factoid = self._store.fetch_by_trigger(txn, trigger)
            if factoid is None:
                factoid = Factoid(trigger=trigger)
                factoid.add_response(FactoidResponse(response=text, date_created=now, date_edited=now))
                self._store.insert(txn, factoid)
            else:
                if factoid.find_response(text) is not None:
                    raise ResponseExistsError(factoid.trigger, text, factoid.id)
                factoid.add_response(FactoidResponse(response=text, date_created=now, date_edited=now))
                self._store.replace(txn, factoid, factoid)
        logger.info("Learned response for %r (%d known)", factoid.trigger, len(factoid.responses))
        return factoid

    def forget(self, trigger: str, response: str) -> bool:
        """Drop one response text from a factoid. Returns False if it was unknown."""

        with self._store.engine.begin(write=True) as txn:
            factoid = self._store.fetch_by_trigger(txn, trigger)
            if factoid is None:
                return False
            key = factoid.find_response((response or "").strip())
            if key is None:
                return False
            del factoid.responses[key]
            self._store.replace(txn, factoid, factoid)
        logger.info("Forgot response %d of %r", key, factoid.trigger)
        return True

    def lookup(self, trigger: str) -> Optional[Factoid]:
        return self._store.get_by_trigger(trigger)

    def random_response(self, trigger: str) -> Optional[str]:
        factoid = self._store.get_by_trigger(trigger)
        if factoid is None or not factoid.responses:
            return None
        key = self._rng.choice(sorted(factoid.responses))
        return factoid.responses[key].response


__all__ = ["FactoidService"]
