"""Remote calls between the members of a group, as JSON lines over TCP."""

from __future__ import annotations

import contextlib
import itertools
import json
import socket
import threading
from dataclasses import dataclass
from typing import Any, BinaryIO

from .discovery import (
    PingMessage,
    PongMessage,
    RebalanceMessage,
    RegisterMessage,
    Service,
    ServiceClient,
    ServiceDiscovery,
)
from .helpers import retry
from .logger import get_logger
from .models import Identity

CONNECT_ATTEMPTS = 3
CONNECT_RETRY_DELAY = 1.0
CALL_ATTEMPTS = 3
CALL_RETRY_DELAY = 0.1

_ACCEPT_POLL = 0.2


class RpcError(Exception):
    """Raised when the remote side answers a call with an error."""


def _identity_to_dict(identity: Identity | None) -> dict[str, Any] | None:
    if identity is None:
        return None
    return json.loads(identity.to_json())


def _identity_from_dict(data: Any) -> Identity | None:
    if data is None:
        return None
    return Identity.from_json(json.dumps(data))


def _pong_from_dict(data: Any) -> PongMessage:
    data = data or {}
    return PongMessage(sender=_identity_from_dict(data.get("From")))


def _pong_to_dict(message: PongMessage) -> dict[str, Any]:
    return {"From": _identity_to_dict(message.sender)}


class RpcClient(ServiceClient):
    """A connection to another member's RPC server."""

    def __init__(self, port: int, my_identity: Identity, target_identity: Identity) -> None:
        self.port = port
        self.my_identity = my_identity
        self.target_identity = target_identity
        self._lock = threading.Lock()
        self._ids = itertools.count()
        self._sock: socket.socket | None = None
        self._reader: BinaryIO | None = None
        self._connected = False

    def _connect(self) -> None:
        def attempt() -> None:
            sock = socket.create_connection((self.target_identity.ip, self.port))
            with self._lock:
                self._drop_socket()
                self._sock = sock
                self._reader = sock.makefile("rb")
                self._connected = True
            get_logger().debug("connected to %s as rpc", self.target_identity.name)

        retry(attempt, CONNECT_ATTEMPTS, CONNECT_RETRY_DELAY)

    def _drop_socket(self) -> None:
        if self._reader is not None:
            with contextlib.suppress(OSError):
                self._reader.close()
        if self._sock is not None:
            with contextlib.suppress(OSError):
                self._sock.close()
        self._reader = None
        self._sock = None

    def close(self) -> None:
        if not self.is_connected():
            return
        get_logger().debug("closing rpc client %s", self.target_identity.name)
        with self._lock:
            self._connected = False
            self._drop_socket()

    def is_connected(self) -> bool:
        return self._connected

    def reconnect(self) -> None:
        get_logger().debug("reconnecting rpc client %s", self.target_identity.name)
        self._connect()

    def _call_once(self, method: str, params: dict[str, Any]) -> Any:
        with self._lock:
            if self._sock is None or self._reader is None:
                raise ConnectionError("rpc client is not connected")
            request = {"id": next(self._ids), "method": method, "params": params}
            self._sock.sendall(json.dumps(request).encode() + b"\n")
            raw = self._reader.readline()
        if not raw:
            raise ConnectionError("connection closed by peer")
        response = json.loads(raw)
        if response.get("error"):
            raise RpcError(response["error"])
        return response.get("result")

    def _call(self, method: str, params: dict[str, Any]) -> Any:
        return retry(lambda: self._call_once(method, params), CALL_ATTEMPTS, CALL_RETRY_DELAY)

    def ping(self) -> PongMessage:
        result = self._call("Handler.Ping", {"From": _identity_to_dict(self.my_identity)})
        return _pong_from_dict(result)

    def register(self) -> bool:
        me = _identity_to_dict(self.my_identity)
        return bool(self._call("Handler.Register", {"From": me, "Identity": me}))

    def rebalance(self, member_number: int, total_members: int) -> bool:
        params = {
            "From": _identity_to_dict(self.my_identity),
            "MemberNumber": member_number,
            "TotalMembers": total_members,
        }
        return bool(self._call("Handler.Rebalance", params))


def connect_client(port: int, my_identity: Identity, target_identity: Identity) -> RpcClient:
    """Open a client to the target member, retrying a few times."""
    client = RpcClient(port, my_identity, target_identity)
    client._connect()
    return client


@dataclass
class RpcHandler:
    """Answers the calls other members make to this one."""

    port: int
    my_identity: Identity
    service_discovery: ServiceDiscovery

    def ping(self, payload: PingMessage) -> PongMessage:
        return PongMessage(sender=self.my_identity)

    def register(self, payload: RegisterMessage) -> bool:
        """Connect back to the registering member and add it as a service."""
        identity = payload.identity
        if identity is None:
            raise ValueError("register payload carries no identity")
        follower_client = connect_client(self.port, self.my_identity, identity)
        self.service_discovery.add(
            Service(follower_client, identity.name, identity.cluster_join_time)
        )
        get_logger().debug("registered client %s", identity.name)
        return True

    def rebalance(self, payload: RebalanceMessage) -> bool:
        self.service_discovery.set_info(payload.member_number, payload.total_members)
        return True


class RpcServer:
    """Listens for other members' calls and hands them to an RpcHandler."""

    def __init__(
        self, port: int, my_identity: Identity, service_discovery: ServiceDiscovery
    ) -> None:
        self.port = port
        self.handler = RpcHandler(port, my_identity, service_discovery)
        self.bound_port: int | None = None
        self._listener: socket.socket | None = None
        self._stop = threading.Event()
        self._accept_thread: threading.Thread | None = None

    def listen(self) -> None:
        try:
            listener = socket.create_server(("", self.port))
        except OSError as exc:
            get_logger().error("error while listening rpc server, err: %s", exc)
            raise
        listener.settimeout(_ACCEPT_POLL)

        self._listener = listener
        self._stop.clear()
        self.bound_port = listener.getsockname()[1]
        if self.handler.port == 0:
            self.handler.port = self.bound_port
        get_logger().info("rpc server started on port %d", self.bound_port)

        self._accept_thread = threading.Thread(
            target=self._accept_loop, args=(listener,), name="rpc-accept", daemon=True
        )
        self._accept_thread.start()

    def _accept_loop(self, listener: socket.socket) -> None:
        while True:
            try:
                conn, _ = listener.accept()
            except TimeoutError:
                if self._stop.is_set():
                    break
                continue
            except OSError as exc:
                if not self._stop.is_set():
                    get_logger().error("rpc server error: %s", exc)
                break
            threading.Thread(target=self._serve, args=(conn,), daemon=True).start()
        get_logger().info("rpc server stopped")

    def _dispatch(self, method: Any, params: dict[str, Any]) -> Any:
        sender = _identity_from_dict(params.get("From"))
        if method == "Handler.Ping":
            return _pong_to_dict(self.handler.ping(PingMessage(sender=sender)))
        if method == "Handler.Register":
            message = RegisterMessage(
                sender=sender, identity=_identity_from_dict(params.get("Identity"))
            )
            return self.handler.register(message)
        if method == "Handler.Rebalance":
            message = RebalanceMessage(
                sender=sender,
                member_number=int(params.get("MemberNumber", 0)),
                total_members=int(params.get("TotalMembers", 0)),
            )
            return self.handler.rebalance(message)
        raise RpcError(f"rpc: can't find method {method}")

    def _serve(self, conn: socket.socket) -> None:
        with contextlib.suppress(OSError), conn, conn.makefile("rb") as reader:
            for raw in reader:
                try:
                    request = json.loads(raw)
                except ValueError:
                    break
                if not isinstance(request, dict):
                    break
                result: Any = None
                error: str | None = None
                try:
                    result = self._dispatch(request.get("method"), request.get("params") or {})
                except Exception as exc:  # noqa: BLE001 - reported to the caller
                    error = str(exc) or type(exc).__name__
                response = {"id": request.get("id"), "result": result, "error": error}
                conn.sendall(json.dumps(response).encode() + b"\n")

    def shutdown(self) -> None:
        listener = self._listener
        if listener is None:
            return
        self._stop.set()
        self._listener = None
        with contextlib.suppress(OSError):
            listener.shutdown(socket.SHUT_RDWR)
        try:
            listener.close()
        except OSError as exc:
            get_logger().error("error while closing rpc server: %s", exc)
        if self._accept_thread is not None:
            self._accept_thread.join(timeout=2.0)
            self._accept_thread = None