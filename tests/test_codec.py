"""Tests for factoid record encoding and the legacy response upgrade."""
from __future__ import annotations

from datetime import datetime, timezone

import msgpack
import pytest

from pandora_bot.codec import (
    LEGACY_RESPONSES_FIELD,
    decode_factoid,
    decode_response,
    encode_factoid,
    encode_response,
    has_legacy_responses,
    upgrade_responses,
)
from pandora_bot.errors import SerializationError
from pandora_bot.models import Factoid, FactoidResponse

WHEN = datetime(2018, 3, 14, 15, 9, 26, 535897, tzinfo=timezone.utc)


def _ts(value: datetime) -> msgpack.Timestamp:
    return msgpack.Timestamp.from_datetime(value)


def _legacy_record(**overrides) -> bytes:
    record = {
        "kind": "factoid",
        "v": 1,
        "id": 7,
        "trigger": "hello",
        "protected": False,
        "date_created": _ts(WHEN),
        "date_edited": _ts(WHEN),
    }
    record.update(overrides)
    return msgpack.packb(record, use_bin_type=True)


def _embedded(text: str) -> dict:
    return {"response": text, "date_created": _ts(WHEN), "date_edited": _ts(WHEN)}


def test_factoid_fields_survive_encoding() -> None:
    factoid = Factoid(trigger="hello", id=3, protected=True, date_created=WHEN, date_edited=WHEN)
    factoid.add_response(FactoidResponse(response="hi there", date_created=WHEN, date_edited=WHEN))
    factoid.add_response(FactoidResponse(response="howdy"))

    decoded = decode_factoid(encode_factoid(factoid))

    assert decoded == factoid
    assert decoded.date_created == WHEN
    assert decoded.responses[2].date_created is None


def test_list_shaped_responses_are_upgraded() -> None:
    data = _legacy_record(responses=[_embedded("a"), _embedded("b"), _embedded("a")])
    assert has_legacy_responses(data)

    factoid = decode_factoid(data)

    assert factoid.response_texts() == ["a", "b"]
    assert sorted(factoid.responses) == [1, 2]
    assert factoid.responses[1].date_created == WHEN


def test_deprecated_list_merges_after_existing_keys() -> None:
    data = _legacy_record(
        v=2,
        responses={4: _embedded("kept")},
        **{LEGACY_RESPONSES_FIELD: [_embedded("kept"), _embedded("new")]},
    )

    factoid = decode_factoid(data)

    assert factoid.responses[4].response == "kept"
    assert factoid.responses[5].response == "new"
    assert len(factoid.responses) == 2


def test_upgraded_record_is_canonical() -> None:
    factoid = decode_factoid(_legacy_record(responses=[_embedded("a")]))
    rewritten = encode_factoid(factoid)

    assert not has_legacy_responses(rewritten)
    assert decode_factoid(rewritten) == factoid
    assert LEGACY_RESPONSES_FIELD not in msgpack.unpackb(rewritten, raw=False, strict_map_key=False)


def test_upgrade_responses_skips_known_texts() -> None:
    factoid = Factoid(trigger="x")
    factoid.add_response(FactoidResponse(response="one"))

    added = upgrade_responses(factoid, [FactoidResponse(response="one"), FactoidResponse(response="two")])

    assert added == 1
    assert factoid.responses[2].response == "two"


@pytest.mark.parametrize(
    "data",
    [
        b"\xc1",
        msgpack.packb([1, 2, 3]),
        msgpack.packb({"kind": "response", "response": "x"}),
        msgpack.packb({"kind": "factoid", "id": 1}),
        msgpack.packb({"kind": "factoid", "trigger": "x", "responses": {"one": {"response": "x"}}}),
    ],
)
def test_corrupt_records_raise(data) -> None:
    with pytest.raises(SerializationError):
        decode_factoid(data)


def test_standalone_response_encoding() -> None:
    response = FactoidResponse(response="hi", id=9, factoid_id=2, date_created=WHEN, date_edited=WHEN)
    assert decode_response(encode_response(response)) == response
    with pytest.raises(SerializationError):
        decode_response(encode_factoid(Factoid(trigger="x", id=1)))


def test_naive_datetimes_stay_naive() -> None:
    naive = datetime(2020, 1, 1, 8, 30, 15, 250)
    factoid = Factoid(trigger="naive", id=1, date_created=naive, date_edited=WHEN)
    factoid.add_response(FactoidResponse(response="r", date_created=naive))

    decoded = decode_factoid(encode_factoid(factoid))

    assert decoded == factoid
    assert decoded.date_created.tzinfo is None
    assert decoded.date_edited.tzinfo is not None


def test_out_of_range_timestamp_raises() -> None:
    data = msgpack.packb(
        {"kind": "factoid", "id": 1, "trigger": "x", "date_created": msgpack.Timestamp(2**62, 0)},
        use_bin_type=True,
    )
    with pytest.raises(SerializationError):
        decode_factoid(data)
