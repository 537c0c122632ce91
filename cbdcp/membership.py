"""Group membership: which member this instance is and how many members there are."""

from __future__ import annotations

import re
import socket
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .helpers import MEMBERSHIP_CHANGED_BUS_EVENT_NAME
from .logger import get_logger

STATIC_MEMBERSHIP_TYPE = "static"
COUCHBASE_MEMBERSHIP_TYPE = "couchbase"
KUBERNETES_STATEFUL_SET_MEMBERSHIP_TYPE = "kubernetesStatefulSet"
KUBERNETES_HA_MEMBERSHIP_TYPE = "kubernetesHa"
DYNAMIC_MEMBERSHIP_TYPE = "dynamic"

_ORDINAL = re.compile(r"[+-]?[0-9]+")


@dataclass
class _Subscription:
    handler: Callable[..., Any]
    is_async: bool
    lock: threading.Lock = field(default_factory=threading.Lock)


class EventBus:
    """A topic-based publish/subscribe bus; async handlers run one call at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._topics: dict[str, list[_Subscription]] = {}
        self._pending: set[threading.Thread] = set()

    def subscribe(self, topic: str, handler: Callable[..., Any]) -> None:
        with self._lock:
            self._topics.setdefault(topic, []).append(_Subscription(handler, False))

    def subscribe_async(self, topic: str, handler: Callable[..., Any]) -> None:
        """Subscribe a handler that is called on its own thread, serialised per handler."""
        with self._lock:
            self._topics.setdefault(topic, []).append(_Subscription(handler, True))

    def unsubscribe(self, topic: str, handler: Callable[..., Any]) -> None:
        with self._lock:
            subscriptions = self._topics.get(topic)
            if subscriptions:
                for subscription in subscriptions:
                    if subscription.handler == handler:
                        subscriptions.remove(subscription)
                        return
        raise KeyError(f"topic {topic} doesn't exist")

    def publish(self, topic: str, *args: Any) -> None:
        with self._lock:
            subscriptions = list(self._topics.get(topic, ()))
        for subscription in subscriptions:
            if subscription.is_async:
                thread = threading.Thread(
                    target=self._run_async, args=(subscription, args), daemon=True
                )
                with self._lock:
                    self._pending.add(thread)
                thread.start()
            else:
                subscription.handler(*args)

    def _run_async(self, subscription: _Subscription, args: tuple[Any, ...]) -> None:
        try:
            with subscription.lock:
                subscription.handler(*args)
        finally:
            with self._lock:
                self._pending.discard(threading.current_thread())

    def wait_async(self) -> None:
        """Block until every async handler call started so far has returned."""
        while True:
            with self._lock:
                pending = list(self._pending)
            if not pending:
                return
            for thread in pending:
                thread.join()


@dataclass(frozen=True)
class Model:
    member_number: int
    total_members: int

    def is_changed(self, other: Model | None) -> bool:
        if other is None:
            return True
        changed = (
            self.member_number != other.member_number
            or self.total_members != other.total_members
        )
        if not changed:
            get_logger().info("membership info not changed")
        return changed


class Membership(ABC):
    @abstractmethod
    def get_info(self) -> Model:
        """Return this instance's place in the group."""

    @abstractmethod
    def close(self) -> None:
        """Release whatever the membership holds."""


class StaticMembership(Membership):
    """A membership fixed by configuration."""

    def __init__(self, member_number: int, total_members: int) -> None:
        self._info = Model(member_number, total_members)

    def get_info(self) -> Model:
        return self._info

    def close(self) -> None:
        """Nothing to release."""


class DynamicMembership(Membership):
    """A membership learnt from membership-changed events on the bus."""

    _waiting_message: str | None = "dynamic membership waiting first request"

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._info: Model | None = None
        self._arrived = threading.Event()
        bus.subscribe_async(MEMBERSHIP_CHANGED_BUS_EVENT_NAME, self._membership_changed)

    def get_info(self, timeout: float | None = None) -> Model:
        """Return the latest info, waiting for the first one if none has arrived."""
        if self._info is not None:
            return self._info
        if self._waiting_message:
            get_logger().info(self._waiting_message)
        if not self._arrived.wait(timeout):
            raise TimeoutError("no membership info arrived")
        assert self._info is not None
        return self._info

    def close(self) -> None:
        try:
            self._bus.unsubscribe(MEMBERSHIP_CHANGED_BUS_EVENT_NAME, self._membership_changed)
        except KeyError as exc:
            get_logger().error("error while unsubscribe: %s", exc)

    def _membership_changed(self, model: Model) -> None:
        self._info = model
        self._arrived.set()


class HaMembership(DynamicMembership):
    """A membership assigned by the elected leader of a highly available group."""

    _waiting_message = None


def pod_ordinal_from_hostname(hostname: str) -> int:
    """Read the ordinal a stateful set appends to its pod names."""
    _, separator, suffix = hostname.rpartition("-")
    if not separator:
        raise ValueError("hostname is not in statefulSet format")
    if not _ORDINAL.fullmatch(suffix):
        raise ValueError(f"invalid pod ordinal: {suffix!r}")
    return int(suffix)


class StatefulSetMembership(Membership):
    """A membership derived from the ordinal in a stateful set pod's hostname."""

    def __init__(self, total_members: int, hostname: str | None = None) -> None:
        if hostname is None:
            hostname = socket.gethostname()
        member_number = pod_ordinal_from_hostname(hostname) + 1
        if member_number > total_members:
            get_logger().error(
                "error while statefulSet membership memberNumber: %s, totalMembers: %s",
                member_number,
                total_members,
            )
            raise ValueError("memberNumber is greater than totalMembers")
        self._info = Model(member_number, total_members)

    def get_info(self) -> Model:
        return self._info

    def close(self) -> None:
        """Nothing to release."""