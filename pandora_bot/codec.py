"""Binary record encoding for factoids and standalone responses.

Records are msgpack maps tagged with ``kind`` and a schema version ``v``.
Datetimes are stored as msgpack Timestamp extension values (seconds plus
nanoseconds since the epoch, UTC). Naive datetimes carry a marker so they
decode naive.

Older databases stored a factoid's responses as an ordered list, either as
the ``responses`` field itself (schema 1) or in a separate
``deprecated_responses`` list next to the keyed map. Both shapes are still
read. :func:`decode_factoid` folds them into the keyed map through
:func:`upgrade_responses`; the encoder only ever writes the keyed map. The
upgraded shape reaches disk on the next write of that factoid.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

import msgpack

from .errors import SerializationError
from .models import Factoid, FactoidResponse

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
KIND_FACTOID = "factoid"
KIND_RESPONSE = "response"
LEGACY_RESPONSES_FIELD = "deprecated_responses"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _pack_time(value: Optional[datetime]) -> Any:
    """Encode ``value`` as a msgpack Timestamp.

    Aware datetimes are stored as UTC instants. Naive datetimes are taken as
    UTC wall time and wrapped in ``{"ts": ..., "naive": True}`` so they decode
    naive again.
    """

    if value is None:
        return None
    naive = value.tzinfo is None
    if naive:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - _EPOCH
    seconds = delta.days * 86400 + delta.seconds
    stamp = msgpack.Timestamp(seconds, delta.microseconds * 1000)
    if naive:
        return {"ts": stamp, "naive": True}
    return stamp


def _unpack_time(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    naive = False
    if isinstance(value, Mapping) and value.get("naive"):
        naive = True
        value = value.get("ts")
    if not isinstance(value, msgpack.Timestamp):
        raise SerializationError(f"expected timestamp, got {type(value).__name__}")
    try:
        result = _EPOCH + timedelta(seconds=value.seconds, microseconds=value.nanoseconds // 1000)
    except (OverflowError, ValueError) as exc:
        raise SerializationError(f"timestamp out of range: {exc}") from exc
    return result.replace(tzinfo=None) if naive else result


def _loads(data: bytes, kind: str) -> Dict[str, Any]:
    try:
        record = msgpack.unpackb(data, raw=False, strict_map_key=False)
    except (msgpack.UnpackException, ValueError, TypeError) as exc:
        raise SerializationError(f"corrupt {kind} record: {exc}") from exc
    if not isinstance(record, dict):
        raise SerializationError(f"{kind} record is not a map")
    if record.get("kind") != kind:
        raise SerializationError(f"expected {kind} record, found {record.get('kind')!r}")
    return record


def _dumps(record: Dict[str, Any]) -> bytes:
    return msgpack.packb(record, use_bin_type=True)


@dataclass
class ResponseShapes:
    """Both response shapes as found in one stored factoid."""

    keyed: Dict[int, FactoidResponse] = field(default_factory=dict)
    legacy: List[FactoidResponse] = field(default_factory=list)

    @property
    def has_legacy(self) -> bool:
        return bool(self.legacy)


def _response_from(raw: Any) -> FactoidResponse:
    if not isinstance(raw, Mapping) or not isinstance(raw.get("response"), str):
        raise SerializationError("embedded response must be a map with a text field")
    return FactoidResponse(
        response=raw["response"],
        date_created=_unpack_time(raw.get("date_created")),
        date_edited=_unpack_time(raw.get("date_edited")),
    )


def _read_shapes(record: Mapping[str, Any]) -> ResponseShapes:
    shapes = ResponseShapes()
    responses = record.get("responses")
    if isinstance(responses, list):
        shapes.legacy.extend(_response_from(item) for item in responses)
    elif isinstance(responses, Mapping):
        for key, item in responses.items():
            if not isinstance(key, int) or key <= 0:
                raise SerializationError(f"invalid response key {key!r}")
            shapes.keyed[key] = _response_from(item)
    elif responses is not None:
        raise SerializationError("responses must be a map or a list")

    legacy = record.get(LEGACY_RESPONSES_FIELD)
    if legacy is not None:
        if not isinstance(legacy, list):
            raise SerializationError(f"{LEGACY_RESPONSES_FIELD} must be a list")
        shapes.legacy.extend(_response_from(item) for item in legacy)
    return shapes


def upgrade_responses(factoid: Factoid, legacy: List[FactoidResponse]) -> int:
    """Merge list-shaped responses into ``factoid.responses``.

    Entries whose text is already present are dropped; the rest are keyed
    with current max + 1 in list order. Returns the number of entries added.
    """

    seen = {value.response for value in factoid.responses.values()}
    added = 0
    for item in legacy:
        if item.response in seen:
            continue
        seen.add(item.response)
        factoid.add_response(item)
        added += 1
    return added


def encode_factoid(factoid: Factoid) -> bytes:
    return _dumps(
        {
            "kind": KIND_FACTOID,
            "v": SCHEMA_VERSION,
            "id": factoid.id,
            "trigger": factoid.trigger,
            "protected": factoid.protected,
            "date_created": _pack_time(factoid.date_created),
            "date_edited": _pack_time(factoid.date_edited),
            "response_seq": factoid.response_seq,
            "responses": {
                key: {
                    "response": value.response,
                    "date_created": _pack_time(value.date_created),
                    "date_edited": _pack_time(value.date_edited),
                }
                for key, value in factoid.responses.items()
            },
        }
    )


def decode_factoid(data: bytes) -> Factoid:
    record = _loads(data, KIND_FACTOID)
    shapes = _read_shapes(record)
    try:
        factoid = Factoid(
            id=int(record.get("id", 0)),
            trigger=str(record["trigger"]),
            protected=bool(record.get("protected", False)),
            date_created=_unpack_time(record.get("date_created")),
            date_edited=_unpack_time(record.get("date_edited")),
            responses=shapes.keyed,
            response_seq=int(record.get("response_seq", 0)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise SerializationError(f"malformed factoid record: {exc}") from exc
    if shapes.has_legacy:
        added = upgrade_responses(factoid, shapes.legacy)
        logger.debug(
            "Upgraded %d legacy responses on factoid %d (%d duplicates dropped)",
            added,
            factoid.id,
            len(shapes.legacy) - added,
        )
    return factoid


def has_legacy_responses(data: bytes) -> bool:
    """Report whether stored factoid bytes still carry list-shaped responses."""

    return _read_shapes(_loads(data, KIND_FACTOID)).has_legacy


def encode_response(response: FactoidResponse) -> bytes:
    return _dumps(
        {
            "kind": KIND_RESPONSE,
            "v": SCHEMA_VERSION,
            "id": response.id,
            "factoid_id": response.factoid_id,
            "response": response.response,
            "date_created": _pack_time(response.date_created),
            "date_edited": _pack_time(response.date_edited),
        }
    )


def decode_response(data: bytes) -> FactoidResponse:
    record = _loads(data, KIND_RESPONSE)
    try:
        return FactoidResponse(
            id=int(record.get("id", 0)),
            factoid_id=int(record.get("factoid_id", 0)),
            response=str(record["response"]),
            date_created=_unpack_time(record.get("date_created")),
            date_edited=_unpack_time(record.get("date_edited")),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise SerializationError(f"malformed response record: {exc}") from exc


__all__ = [
    "LEGACY_RESPONSES_FIELD",
    "SCHEMA_VERSION",
    "decode_factoid",
    "decode_response",
    "encode_factoid",
    "encode_response",
    "has_legacy_responses",
    "upgrade_responses",
]
