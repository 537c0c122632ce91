from dataclasses import dataclass
from unittest import mock

import pytest

from cbdcp import helpers
from cbdcp.helpers import (
    PREFIX,
    TXN_PREFIX,
    chunk_slice,
    chunk_slice_with_size,
    convert_size_unit_to_byte,
    is_metadata,
    resolve_union_int_or_string_value,
    retry,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (20971520, 20971520),
        (10971520, 10971520),
        ("15971520", 15971520),
        ("500kb", 500 * 1024),
        ("10mb", 10 * 1024 * 1024),
    ],
)
def test_resolve_union_int_or_string_value(value, expected):
    assert resolve_union_int_or_string_value(value) == expected


def test_resolve_unparsable_string_raises():
    with pytest.raises(ValueError):
        resolve_union_int_or_string_value("15TB")


def test_resolve_other_types_give_zero():
    assert resolve_union_int_or_string_value(3.5) == 0


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("1kb", 1024),
        ("5mb", 5 * 1024 * 1024),
        ("5,5mb", int(5.5 * 1024 * 1024)),
        ("8.5mb", int(8.5 * 1024 * 1024)),
        ("10,25 mb", int(10.25 * 1024 * 1024)),
        ("10gb", 10 * 1024 * 1024 * 1024),
        ("1KB", 1024),
        ("5MB", 5 * 1024 * 1024),
        ("12 MB", 12 * 1024 * 1024),
        ("10GB", 10 * 1024 * 1024 * 1024),
        ("123  KB", 123 * 1024),
        ("1  MB", 1 * 1024 * 1024),
    ],
)
def test_convert_size_unit_to_byte(text, expected):
    assert convert_size_unit_to_byte(text) == expected


@pytest.mark.parametrize("text", ["123", "15TB", "invalid", ""])
def test_convert_size_unit_to_byte_errors(text):
    with pytest.raises(ValueError):
        convert_size_unit_to_byte(text)


@dataclass
class _WithKey:
    key: bytes


@dataclass
class _WithoutKey:
    x: bytes


KEY = "test"


def test_is_metadata_true_for_connector_prefix():
    assert is_metadata(_WithKey(key=(PREFIX + KEY).encode())) is True


def test_is_metadata_true_for_txn_prefix():
    assert is_metadata(_WithKey(key=(TXN_PREFIX + KEY).encode())) is True


def test_is_metadata_false_without_prefix():
    assert is_metadata(_WithKey(key=KEY.encode())) is False


def test_is_metadata_false_without_key_field():
    assert is_metadata(_WithoutKey(x=(PREFIX + KEY).encode())) is False


def test_chunk_slice():
    chunks = chunk_slice([0] * 1009, 6)
    assert len(chunks) == 6
    assert len(chunks[0]) == 169
    assert all(len(chunk) == 168 for chunk in chunks[1:])


def test_chunk_slice_keeps_order_and_covers_everything():
    items = list(range(23))
    chunks = chunk_slice(items, 4)
    assert [x for chunk in chunks for x in chunk] == items


def test_chunk_slice_more_chunks_than_items():
    chunks = chunk_slice([1, 2], 3)
    assert [len(chunk) for chunk in chunks] == [1, 1, 0]


def test_chunk_slice_rejects_zero_chunks():
    with pytest.raises(ValueError):
        chunk_slice([1, 2], 0)


def test_chunk_slice_with_size():
    chunks = chunk_slice_with_size([0] * 1001, 5)
    assert len(chunks) == 201
    assert all(len(chunk) == 5 for chunk in chunks[:-1])
    assert len(chunks[-1]) == 1

    chunks = chunk_slice_with_size([0, 0, 0, 0], 5)
    assert len(chunks) == 1
    assert len(chunks[0]) == 4

    chunks = chunk_slice_with_size([0] * 9, 5)
    assert len(chunks) == 2
    assert len(chunks[0]) == 5
    assert len(chunks[1]) == 4

    assert chunk_slice_with_size([], 5) == []


def test_retry_returns_after_failures():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("down")
        return "ok"

    with mock.patch.object(helpers.time, "sleep") as sleep:
        assert retry(flaky, 3, 0.5) == "ok"
    assert len(calls) == 3
    assert sleep.call_count == 2
    sleep.assert_called_with(0.5)


def test_retry_raises_last_error():
    errors = iter([ValueError("first"), KeyError("last")])

    def failing():
        raise next(errors)

    with pytest.raises(KeyError):
        retry(failing, 2, 0)


def test_retry_without_attempts_never_calls():
    calls = []
    assert retry(lambda: calls.append(1), 0, 0) is None
    assert calls == []