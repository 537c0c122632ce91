"""How far a freshly loaded offset may stream."""

from __future__ import annotations

from .helpers import MAX_INT_VALUE

DCP_MODE_FINITE = "finite"
DCP_MODE_INFINITE = "infinite"


class OffsetLatestSeqNoInit:
    """Chooses the sequence number a stream stops at, from the configured DCP mode."""

    def __init__(self, mode: str | None = DCP_MODE_INFINITE) -> None:
        self.mode = mode or ""

    @property
    def is_finite(self) -> bool:
        return self.mode == DCP_MODE_FINITE

    def initialize_latest_seq_no(self, vbucket_seq_no: int) -> int:
        """Finite streams stop at the vBucket's current seqno; others never stop."""
        if self.is_finite:
            return vbucket_seq_no
        return MAX_INT_VALUE