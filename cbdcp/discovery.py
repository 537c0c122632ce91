"""Tracks the members of a group and hands out member numbers from the leader."""

from __future__ import annotations

import contextlib
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from .concurrent_map import ConcurrentMap
from .helpers import MEMBERSHIP_CHANGED_BUS_EVENT_NAME
from .logger import get_logger
from .membership import EventBus, Model
from .models import Identity

DEFAULT_INTERVAL = 5.0


class LeaderNotAssignedError(Exception):
    """Raised when the leader is needed but none is assigned."""


@dataclass
class RegisterMessage:
    """A follower asks the leader to add it to the group."""

    sender: Identity | None = None
    identity: Identity | None = None


@dataclass
class PingMessage:
    sender: Identity | None = None


@dataclass
class PongMessage:
    sender: Identity | None = None


@dataclass
class RebalanceMessage:
    """The leader tells a follower its new place in the group."""

    sender: Identity | None = None
    member_number: int = 0
    total_members: int = 0


class ServiceClient(ABC):
    """A connection to another member of the group."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    def ping(self) -> Any:
        """Check that the member answers; raise when it does not."""

    @abstractmethod
    def register(self) -> Any:
        """Register this instance with the member."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Tell whether the connection is open."""

    @abstractmethod
    def reconnect(self) -> None:
        """Open the connection again."""

    @abstractmethod
    def rebalance(self, member_number: int, total_members: int) -> Any:
        """Hand the member its place in the group."""


@dataclass(eq=False)
class Service:
    """Another member of the group, reached through its client."""

    client: ServiceClient
    name: str
    cluster_join_time: int = 0


class ServiceDiscovery:
    """Keeps the known members, checks their health and, as leader, numbers them."""

    def __init__(
        self,
        bus: EventBus,
        rebalance_delay: float,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        self._bus = bus
        self.rebalance_delay = rebalance_delay
        self.interval = interval
        self._services: ConcurrentMap[str, Service] = ConcurrentMap(0)
        self._leader_lock = threading.RLock()
        self._leader_service: Service | None = None
        self._info: Model | None = None
        self._am_leader = False
        self._heartbeat_stop: threading.Event | None = None
        self._monitor_stop: threading.Event | None = None

    @property
    def leader_service(self) -> Service | None:
        return self._leader_service

    @property
    def am_leader(self) -> bool:
        return self._am_leader

    @property
    def info(self) -> Model | None:
        return self._info

    def add(self, service: Service) -> None:
        self._services.store(service.name, service)

    def remove(self, name: str) -> None:
        """Close and forget the named member, if known."""
        service, found = self._services.load(name)
        if found and service is not None:
            with contextlib.suppress(Exception):
                service.client.close()
            self._services.delete(name)

    def remove_all(self) -> None:
        for name in list(self._services.to_dict()):
            self.remove(name)

    def be_leader(self) -> None:
        self._am_leader = True

    def dont_be_leader(self) -> None:
        self._am_leader = False

    def assign_leader(self, leader_service: Service) -> None:
        with self._leader_lock:
            self._leader_service = leader_service

    def remove_leader(self) -> None:
        with self._leader_lock:
            leader = self._leader_service
            if leader is None:
                return
            with contextlib.suppress(Exception):
                leader.client.close()
            self._leader_service = None

    def reassign_leader(self) -> None:
        """Reconnect to the leader and register with it again."""
        with self._leader_lock:
            leader = self._leader_service
        if leader is None:
            raise LeaderNotAssignedError("leader is not assigned")
        leader.client.reconnect()
        leader.client.register()

    def heartbeat_once(self) -> None:
        """Ping the leader and every member; drop those that do not answer."""
        leader = self._leader_service
        if leader is not None:
            try:
                leader.client.ping()
            except Exception:  # noqa: BLE001 - any failure means the leader is down
                get_logger().error("leader is down, health check failed for leader")
                try:
                    self.reassign_leader()
                except Exception:  # noqa: BLE001
                    if leader is not self._leader_service:
                        with contextlib.suppress(Exception):
                            leader.client.close()
                    else:
                        self.remove_leader()

        failed = []
        for name, service in self._services.to_dict().items():
            try:
                service.client.ping()
            except Exception:  # noqa: BLE001
                failed.append(name)

        for name in failed:
            self.remove(name)
            get_logger().debug("client %s disconnected", name)

    def start_heartbeat(self) -> None:
        stop = threading.Event()
        self._heartbeat_stop = stop

        def loop() -> None:
            while not stop.wait(self.interval):
                self.heartbeat_once()

        threading.Thread(target=loop, name="heartbeat", daemon=True).start()

    def stop_heartbeat(self) -> None:
        if self._heartbeat_stop is not None:
            self._heartbeat_stop.set()

    def monitor_once(self) -> None:
        """As leader, take member number 1 and number the others by join time."""
        if not self._am_leader:
            return

        names = self.get_all()
        total_members = len(names) + 1

        self.set_info(1, total_members)

        for index, name in enumerate(names):
            service, found = self._services.load(name)
            if not found or service is None:
                continue
            try:
                service.client.rebalance(index + 2, total_members)
            except Exception:  # noqa: BLE001
                get_logger().error("rebalance failed for %s", name)

    def start_monitor(self) -> None:
        stop = threading.Event()
        self._monitor_stop = stop

        def loop() -> None:
            get_logger().info(
                "service discovery will start after %s seconds", self.rebalance_delay
            )
            if stop.wait(self.rebalance_delay):
                return
            while not stop.wait(self.interval):
                self.monitor_once()

        threading.Thread(target=loop, name="monitor", daemon=True).start()

    def stop_monitor(self) -> None:
        if self._monitor_stop is not None:
            self._monitor_stop.set()

    def get_all(self) -> list[str]:
        """Names of the known members, earliest to join first."""
        services = sorted(
            self._services.to_dict().values(), key=lambda s: s.cluster_join_time
        )
        return [service.name for service in services]

    def set_info(self, member_number: int, total_members: int) -> None:
        """Record this instance's place and announce it when it changed."""
        new_info = Model(member_number, total_members)
        if new_info.is_changed(self._info):
            self._info = new_info
            get_logger().debug(
                "new info arrived for member: %s/%s", member_number, total_members
            )
            self._bus.publish(MEMBERSHIP_CHANGED_BUS_EVENT_NAME, new_info)