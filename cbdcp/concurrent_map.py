"""A thread-safe map with conditional stores and JSON conversion."""

from __future__ import annotations

import json
import re
import threading
from collections.abc import Callable
from typing import Any, Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")

_INTEGER_KEY = re.compile(r"-?[0-9]+")


def _decode_key(key: str) -> Any:
    return int(key) if _INTEGER_KEY.fullmatch(key) else key


class ConcurrentMap(Generic[K, V]):
    """A dictionary guarded by a lock, safe to share between threads."""

    def __init__(self, size: int = 0) -> None:
        if size < 0:
            raise ValueError(f"size must not be negative, got {size}")
        # size is a capacity hint only; dictionaries grow as needed.
        self._lock = threading.RLock()
        self._data: dict[K, V] = {}

    def delete(self, key: K) -> None:
        with self._lock:
            self._data.pop(key, None)

    def load(self, key: K) -> tuple[V | None, bool]:
        """Return (value, True) for a stored key, (None, False) otherwise."""
        with self._lock:
            if key in self._data:
                return self._data[key], True
            return None, False

    def range(self, func: Callable[[K, V], bool]) -> None:
        """Call func for each entry until it returns False."""
        with self._lock:
            snapshot = list(self._data.items())
        for key, value in snapshot:
            if not func(key, value):
                break

    def store(self, key: K, value: V) -> None:
        with self._lock:
            self._data[key] = value

    def store_if(
        self, key: K, condition: Callable[[V | None, bool], tuple[V, bool]]
    ) -> None:
        """Atomically store condition's value when it asks to.

        condition receives the previous value (None when absent) and whether it
        was found, and returns the new value and whether to store it.
        """
        with self._lock:
            found = key in self._data
            value, should_store = condition(self._data.get(key), found)
            if should_store:
                self._data[key] = value

    def count(self) -> int:
        with self._lock:
            return len(self._data)

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def to_dict(self) -> dict[K, V]:
        with self._lock:
            return dict(self._data)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def update_from_json(self, data: str | bytes) -> None:
        """Store every entry of a JSON object; integer-looking keys become ints."""
        parsed = json.loads(data)
        if parsed is None:
            return
        if not isinstance(parsed, dict):
            raise ValueError("JSON document is not an object")
        for key, value in parsed.items():
            self.store(_decode_key(key), value)