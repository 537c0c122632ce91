"""Data models shared by the stream, checkpoint and membership code."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .tracing import ListenerTracerComponent, RequestSpanContext


def _now() -> datetime:
    return datetime.now(timezone.utc)


_HOOK_NAMES = frozenset(
    {
        "before_rebalance_start",
        "after_rebalance_start",
        "before_rebalance_end",
        "after_rebalance_end",
        "before_stream_start",
        "after_stream_start",
        "before_stream_stop",
        "after_stream_stop",
    }
)


class EventHandler:
    """Hooks around stream and rebalance life-cycle steps.

    Each step calls the callable registered for it under its method name;
    steps with no callable do nothing. Subclasses may override the methods.
    """

    def __init__(self, hooks: Mapping[str, Callable[[], None]] | None = None) -> None:
        hooks = dict(hooks or {})
        unknown = set(hooks) - _HOOK_NAMES
        if unknown:
            raise ValueError(f"unknown event hooks: {', '.join(sorted(unknown))}")
        self._hooks = hooks

    def _fire(self, name: str) -> None:
        hook = getattr(self, "_hooks", {}).get(name)
        if hook is not None:
            hook()

    def before_rebalance_start(self) -> None:
        """Called before a rebalance closes the running streams."""
        self._fire("before_rebalance_start")

    def after_rebalance_start(self) -> None:
        """Called once the running streams are closed for a rebalance."""
        self._fire("after_rebalance_start")

    def before_rebalance_end(self) -> None:
        """Called before streams are reopened after a rebalance."""
        self._fire("before_rebalance_end")

    def after_rebalance_end(self) -> None:
        """Called when a rebalance has finished."""
        self._fire("after_rebalance_end")

    def before_stream_start(self) -> None:
        """Called before streams are opened."""
        self._fire("before_stream_start")

    def after_stream_start(self) -> None:
        """Called after streams are opened."""
        self._fire("after_stream_start")

    def before_stream_stop(self) -> None:
        """Called before streams are closed."""
        self._fire("before_stream_stop")

    def after_stream_stop(self) -> None:
        """Called after streams are closed."""
        self._fire("after_stream_stop")


DEFAULT_EVENT_HANDLER = EventHandler()


@dataclass
class Identity:
    """Who a connector instance is within a cluster."""

    ip: str = ""
    name: str = ""
    cluster_join_time: int = 0

    def to_json(self) -> str:
        return json.dumps(
            {"IP": self.ip, "Name": self.name, "ClusterJoinTime": self.cluster_join_time},
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> Identity:
        """Parse an identity; field names match case-insensitively."""
        data = json.loads(text)
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("identity JSON is not an object")
        values = {key.lower(): value for key, value in data.items()}
        return cls(
            ip=str(values.get("ip", "")),
            name=str(values.get("name", "")),
            cluster_join_time=int(values.get("clusterjointime", 0)),
        )

    def same_member(self, other: Identity) -> bool:
        """Two identities are the same member when address and name match."""
        return self.ip == other.ip and self.name == other.name


@dataclass
class ListenerContext:
    """What a listener receives for each event."""

    commit: Callable[[], None]
    event: Any
    ack: Callable[[], None]
    listener_tracer_component: ListenerTracerComponent | None = None


@dataclass
class ListenerArgs:
    event: Any
    trace_context: RequestSpanContext = field(default_factory=RequestSpanContext)


@dataclass(kw_only=True)
class DcpStreamEnd:
    vb_id: int = 0
    stream_id: int = 0


@dataclass
class DcpStreamEndContext:
    event: DcpStreamEnd
    err: Exception | None = None


class Consumer(ABC):
    """Receives events and offset updates from the stream."""

    @abstractmethod
    def consume_event(self, ctx: ListenerContext) -> None:
        """Handle one event."""

    @abstractmethod
    def track_offset(self, vb_id: int, offset: Offset) -> None:
        """Observe the latest offset stored for a vBucket."""


@dataclass
class SetInfoRequest:
    member_number: int
    total_members: int

    def to_dict(self) -> dict[str, int]:
        return {"memberNumber": self.member_number, "totalMembers": self.total_members}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SetInfoRequest:
        return cls(
            member_number=int(data.get("memberNumber", 0)),
            total_members=int(data.get("totalMembers", 0)),
        )


@dataclass
class SnapshotMarker:
    start_seq_no: int = 0
    end_seq_no: int = 0


@dataclass
class Offset:
    """A position in a vBucket's stream."""

    snapshot: SnapshotMarker = field(default_factory=SnapshotMarker)
    vb_uuid: int = 0
    seq_no: int = 0
    latest_seq_no: int = 0

    @property
    def start_seq_no(self) -> int:
        return self.snapshot.start_seq_no

    @property
    def end_seq_no(self) -> int:
        return self.snapshot.end_seq_no


@dataclass(frozen=True)
class VbIdRange:
    """An inclusive range of vBucket ids."""

    start: int
    end: int

    def __contains__(self, vb_id: object) -> bool:
        return isinstance(vb_id, int) and self.start <= vb_id <= self.end


@dataclass
class PersistSeqNo:
    vb_id: int
    seq_no: int


@dataclass(kw_only=True)
class DcpMutation:
    seq_no: int = 0
    rev_no: int = 0
    cas: int = 0
    flags: int = 0
    expiry: int = 0
    lock_time: int = 0
    collection_id: int = 0
    vb_id: int = 0
    stream_id: int = 0
    datatype: int = 0
    key: bytes = b""
    value: bytes = b""
    event_time: datetime = field(default_factory=_now)
    offset: Offset | None = None
    collection_name: str = ""

    def is_created(self) -> bool:
        """A first revision means the document was just created."""
        return self.rev_no == 1


@dataclass(kw_only=True)
class DcpDeletion:
    seq_no: int = 0
    rev_no: int = 0
    cas: int = 0
    delete_time: int = 0
    collection_id: int = 0
    vb_id: int = 0
    stream_id: int = 0
    datatype: int = 0
    key: bytes = b""
    value: bytes = b""
    event_time: datetime = field(default_factory=_now)
    offset: Offset | None = None
    collection_name: str = ""


@dataclass(kw_only=True)
class DcpExpiration:
    seq_no: int = 0
    rev_no: int = 0
    cas: int = 0
    delete_time: int = 0
    collection_id: int = 0
    vb_id: int = 0
    stream_id: int = 0
    key: bytes = b""
    event_time: datetime = field(default_factory=_now)
    offset: Offset | None = None
    collection_name: str = ""


@dataclass(kw_only=True)
class DcpSeqNoAdvanced:
    seq_no: int = 0
    vb_id: int = 0
    stream_id: int = 0
    offset: Offset | None = None


@dataclass
class PingResult:
    memd_endpoint: str = ""
    mgmt_endpoint: str = ""


@dataclass
class AgentQueue:
    address: str
    is_dcp: bool
    current: int
    max: int


@dataclass
class CheckpointDocumentSnapshot:
    start_seq_no: int = 0
    end_seq_no: int = 0


@dataclass
class CheckpointDocumentCheckpoint:
    snapshot: CheckpointDocumentSnapshot | None = field(
        default_factory=CheckpointDocumentSnapshot
    )
    vb_uuid: int = 0
    seq_no: int = 0


def _snapshot_to_dict(snapshot: CheckpointDocumentSnapshot | None) -> dict[str, int] | None:
    if snapshot is None:
        return None
    return {"startSeqno": snapshot.start_seq_no, "endSeqno": snapshot.end_seq_no}


def _snapshot_from_dict(data: Mapping[str, Any] | None) -> CheckpointDocumentSnapshot | None:
    if data is None:
        return None
    return CheckpointDocumentSnapshot(
        start_seq_no=int(data.get("startSeqno", 0)),
        end_seq_no=int(data.get("endSeqno", 0)),
    )


def _checkpoint_to_dict(checkpoint: CheckpointDocumentCheckpoint | None) -> dict[str, Any] | None:
    if checkpoint is None:
        return None
    return {
        "snapshot": _snapshot_to_dict(checkpoint.snapshot),
        "vbuuid": checkpoint.vb_uuid,
        "seqno": checkpoint.seq_no,
    }


def _checkpoint_from_dict(data: Mapping[str, Any] | None) -> CheckpointDocumentCheckpoint | None:
    if data is None:
        return None
    return CheckpointDocumentCheckpoint(
        snapshot=_snapshot_from_dict(data.get("snapshot")),
        vb_uuid=int(data.get("vbuuid", 0)),
        seq_no=int(data.get("seqno", 0)),
    )


@dataclass
class CheckpointDocument:
    """The saved checkpoint of one vBucket."""

    checkpoint: CheckpointDocumentCheckpoint | None = field(
        default_factory=CheckpointDocumentCheckpoint
    )
    bucket_uuid: str = ""

    @classmethod
    def empty(cls, bucket_uuid: str) -> CheckpointDocument:
        """A checkpoint at the very start of a vBucket."""
        return cls(
            checkpoint=CheckpointDocumentCheckpoint(
                snapshot=CheckpointDocumentSnapshot(), vb_uuid=0, seq_no=0
            ),
            bucket_uuid=bucket_uuid,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkpoint": _checkpoint_to_dict(self.checkpoint),
            "bucketUuid": self.bucket_uuid,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CheckpointDocument:
        return cls(
            checkpoint=_checkpoint_from_dict(data.get("checkpoint")),
            bucket_uuid=str(data.get("bucketUuid", "")),
        )


class LeaderElector(ABC):
    """Runs an election and reports its outcome to a LeaderHandler."""

    @abstractmethod
    def run(self) -> None:
        """Start taking part in the election."""

    @abstractmethod
    def close(self) -> None:
        """Stop taking part in the election."""


class LeaderHandler(ABC):
    """Reacts to the outcome of a leader election."""

    @abstractmethod
    def on_become_leader(self) -> None:
        """This instance has become the leader."""

    @abstractmethod
    def on_resign_leader(self) -> None:
        """This instance is no longer the leader."""

    @abstractmethod
    def on_become_follower(self, leader_identity: Identity) -> None:
        """Another instance leads; this one follows it."""