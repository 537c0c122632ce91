"""Shared constants and small utilities used across the connector."""

from __future__ import annotations

import math
import re
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

from .logger import get_logger

NAME = "cbgo"

PREFIX = "_connector:" + NAME + ":"
TXN_PREFIX = "_txn:"

MEMBERSHIP_CHANGED_BUS_EVENT_NAME = "membershipChanged"

JSON_FLAGS = 50333696
MAX_INT_VALUE = 0xFFFFFFFFFFFFFFFF

T = TypeVar("T")
R = TypeVar("R")

_INTEGER = re.compile(r"[+-]?[0-9]+")
_UNIT_MULTIPLIERS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024 * 1024,
    "GB": 1024 * 1024 * 1024,
}
_METADATA_PREFIXES = (PREFIX.encode(), TXN_PREFIX.encode())


def resolve_union_int_or_string_value(value: Any) -> int:
    """Resolve an int, or a string holding an int or a size such as "10mb", to an int.

    Values of any other type resolve to 0. An unparsable string raises ValueError.
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if _INTEGER.fullmatch(value):
            return int(value)
        try:
            return convert_size_unit_to_byte(value)
        except ValueError as exc:
            get_logger().error("error while convert size unit to byte, err: %s", exc)
            raise
    return 0


def convert_size_unit_to_byte(text: str) -> int:
    """Convert a size with a two-letter unit suffix (KB, MB, GB) to bytes."""
    if len(text) < 2:
        raise ValueError(f"invalid input: {text}")

    size_text = text[:-2].strip().replace(",", ".")
    if "_" in size_text:
        raise ValueError(f"cannot extract numeric part for the input {text}")
    try:
        size = float(size_text)
    except ValueError as exc:
        raise ValueError(
            f"cannot extract numeric part for the input {text}, err = {exc}"
        ) from exc

    unit = text[-2:]
    multiplier = _UNIT_MULTIPLIERS.get(unit.upper())
    if multiplier is None:
        raise ValueError(
            f"unsupported unit: {unit}, you can specify one of B, KB, MB and GB"
        )

    result = size * multiplier
    if not math.isfinite(result):
        raise ValueError(f"cannot extract numeric part for the input {text}")
    return int(result)


def is_metadata(data: Any) -> bool:
    """Tell whether an event's key marks it as connector or transaction metadata."""
    key = getattr(data, "key", None)
    if key is None and isinstance(data, Mapping):
        key = data.get("key")
    if key is None:
        return False
    if isinstance(key, str):
        key = key.encode()
    return bytes(key).startswith(_METADATA_PREFIXES)


def chunk_slice(items: Sequence[T], chunks: int) -> list[Sequence[T]]:
    """Split items into exactly `chunks` contiguous parts; earlier parts take the remainder."""
    if chunks <= 0:
        raise ValueError(f"chunk count must be positive, got {chunks}")

    base, extra = divmod(len(items), chunks)
    result: list[Sequence[T]] = []
    start = 0
    for index in range(chunks):
        end = start + base + (1 if index < extra else 0)
        result.append(items[start:end])
        start = end
    return result


def chunk_slice_with_size(items: Sequence[T], chunk_size: int) -> list[Sequence[T]]:
    """Split items into consecutive parts of at most `chunk_size` elements."""
    if chunk_size <= 0:
        raise ValueError(f"chunk size must be positive, got {chunk_size}")
    return [items[i : i + chunk_size] for i in range(0, len(items), chunk_size)]


def retry(func: Callable[[], R], attempts: int, sleep: float) -> R | None:
    """Call func up to `attempts` times, sleeping `sleep` seconds between tries.

    Returns func's result on the first success; re-raises the last error when
    every attempt fails. With no attempts, func is never called.
    """
    error: Exception | None = None
    for attempt in range(attempts):
        if attempt:
            time.sleep(sleep)
        try:
            return func()
        except Exception as exc:  # noqa: BLE001 - every failure is retried
            error = exc
    if error is not None:
        raise error
    return None