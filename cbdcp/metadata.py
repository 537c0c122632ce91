"""Where checkpoints are kept between runs."""

from __future__ import annotations

import contextlib
import json
import os
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping

from .concurrent_map import ConcurrentMap
from .models import CheckpointDocument


class Metadata(ABC):
    """Storage for per-vBucket checkpoint documents."""

    @abstractmethod
    def save(
        self,
        state: Mapping[int, CheckpointDocument],
        dirty_offsets: Mapping[int, bool],
        bucket_uuid: str,
    ) -> None:
        """Persist the checkpoints."""

    @abstractmethod
    def load(
        self, vb_ids: Iterable[int], bucket_uuid: str
    ) -> tuple[ConcurrentMap[int, CheckpointDocument], bool]:
        """Return the stored checkpoints and whether any were stored."""

    @abstractmethod
    def clear(self, vb_ids: Iterable[int]) -> None:
        """Forget the stored checkpoints."""


def _parse_state(text: bytes) -> dict[int, CheckpointDocument | None]:
    data = json.loads(text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("checkpoint file is not a JSON object")
    return {
        int(key): None if value is None else CheckpointDocument.from_dict(value)
        for key, value in data.items()
    }


class FileMetadata(Metadata):
    """Checkpoints kept in one JSON file."""

    def __init__(self, file_name: str | os.PathLike[str]) -> None:
        self.file_name = file_name

    def save(
        self,
        state: Mapping[int, CheckpointDocument],
        dirty_offsets: Mapping[int, bool],
        bucket_uuid: str,
    ) -> None:
        dump = {
            str(vb_id): None if document is None else document.to_dict()
            for vb_id, document in sorted(state.items())
        }
        with contextlib.suppress(OSError):
            with open(self.file_name, "w", encoding="utf-8") as handle:
                handle.write(json.dumps(dump, indent=2))

    def load(
        self, vb_ids: Iterable[int], bucket_uuid: str
    ) -> tuple[ConcurrentMap[int, CheckpointDocument], bool]:
        state: ConcurrentMap[int, CheckpointDocument] = ConcurrentMap(1024)
        try:
            with open(self.file_name, "rb") as handle:
                content = handle.read()
        except FileNotFoundError:
            for vb_id in vb_ids:
                state.store(vb_id, CheckpointDocument.empty(bucket_uuid))
            return state, False

        # An unreadable document leaves the state empty, as if nothing was saved.
        with contextlib.suppress(ValueError, TypeError, AttributeError):
            for vb_id, document in _parse_state(content).items():
                state.store(vb_id, document)
        return state, True

    def clear(self, vb_ids: Iterable[int]) -> None:
        with contextlib.suppress(OSError):
            os.remove(self.file_name)


class ReadOnlyMetadata(Metadata):
    """Loads through another metadata store but never writes or clears it."""

    def __init__(self, metadata: Metadata) -> None:
        self.metadata = metadata

    def save(
        self,
        state: Mapping[int, CheckpointDocument],
        dirty_offsets: Mapping[int, bool],
        bucket_uuid: str,
    ) -> None:
        """Saving is disabled."""

    def load(
        self, vb_ids: Iterable[int], bucket_uuid: str
    ) -> tuple[ConcurrentMap[int, CheckpointDocument], bool]:
        return self.metadata.load(vb_ids, bucket_uuid)

    def clear(self, vb_ids: Iterable[int]) -> None:
        """Clearing is disabled."""