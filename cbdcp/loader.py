"""Loading the connector configuration and adapting plain listeners to consumers."""

from __future__ import annotations

import copy
import json
import os
import re
from collections.abc import Callable, Mapping
from typing import Any

import yaml

from .logger import get_logger
from .models import Consumer, ListenerContext, Offset

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")
_MASK = "*****"


def _parse(text: str) -> dict[str, Any]:
    data = yaml.safe_load(text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("configuration is not a mapping")
    return data


def _substitute(match: re.Match[str]) -> str:
    value = os.environ.get(match.group(1))
    return match.group(0) if value is None else value


def load_config(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Read a YAML configuration, filling ${NAME} with set environment variables."""
    with open(path, encoding="utf-8") as handle:
        text = handle.read()
    _parse(text)
    return _parse(_ENV_PATTERN.sub(_substitute, text))


def format_configuration(config: Mapping[str, Any]) -> str:
    """Log and return the configuration as compact JSON, with the password masked."""
    shown = copy.deepcopy(dict(config))
    shown["password"] = _MASK
    text = json.dumps(shown, separators=(",", ":"), default=str)
    get_logger().info("using config: %s", text)
    return text


class SimpleConsumer(Consumer):
    """A consumer that passes each event to a listener and keeps the latest offsets."""

    def __init__(self, listener: Callable[[ListenerContext], None]) -> None:
        self.listener = listener
        self.offsets: dict[int, Offset] = {}

    def consume_event(self, ctx: ListenerContext) -> None:
        self.listener(ctx)

    def track_offset(self, vb_id: int, offset: Offset) -> None:
        """Remember the latest offset seen for a vBucket."""
        self.offsets[vb_id] = offset