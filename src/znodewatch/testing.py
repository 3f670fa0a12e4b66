"""In-memory stand-ins for the coordination service and for listeners.

``InMemoryCoordinationService`` models the parts of ZooKeeper the observer
relies on: a tree of nodes, one-shot data and child watches, session
notifications and ``NodeNotFoundError`` for missing nodes. Notifications are
delivered synchronously from the mutating call, which keeps tests
deterministic.

Example:
    service = InMemoryCoordinationService()
    service.create("/a")
    observer = StateObserver(config, registry, client_factory=service.client)
    observer.start()
    service.create("/a/x")   # the observer processes the change inline
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple, Type

from .client import (
    ConnectError,
    CoordinationError,
    NodeNotFoundError,
    Notification,
    NotificationSink,
    NotificationType,
)
from .events import ChangeMessage, MessageType, NodeStat, SessionState


@dataclass
class _Node:
    data: bytes
    czxid: int
    mzxid: int
    version: int = 0
    cversion: int = 0
    pzxid: int = 0
    children: Set[str] = field(default_factory=set)


class InMemoryCoordinationService:
    """A single-process coordination tree shared by :class:`InMemoryClient` sessions."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: Dict[str, _Node] = {"/": _Node(data=b"", czxid=0, mzxid=0)}
        self._zxid = 0
        self._clients: List["InMemoryClient"] = []
        self._faults: Dict[Tuple[str, str], Exception] = {}
        self.refuse_connections = False
        self.fail_close = False
        self.calls: List[Tuple[str, str]] = []
        self.sessions_opened = 0

    def client(self, hosts: str, session_timeout: float) -> "InMemoryClient":
        """Client factory, suitable for ``StateObserver(client_factory=...)``."""

        return InMemoryClient(self, hosts, session_timeout)

    @property
    def live_clients(self) -> List["InMemoryClient"]:
        with self._lock:
            return list(self._clients)

    def create(self, path: str, data: bytes = b"") -> None:
        parent = _parent_of(path)
        with self._lock:
            if path in self._nodes:
                raise CoordinationError(f"Node already exists: {path}")
            if parent not in self._nodes:
                raise NodeNotFoundError(parent)
            self._zxid += 1
            self._nodes[path] = _Node(data=data, czxid=self._zxid, mzxid=self._zxid, pzxid=self._zxid)
            parent_node = self._nodes[parent]
            parent_node.children.add(_name_of(path))
            parent_node.cversion += 1
            parent_node.pzxid = self._zxid
            pending = self._trigger(path, data=True, children=False, kind=NotificationType.NODE_CREATED)
            pending += self._trigger(parent, data=False, children=True, kind=NotificationType.CHILDREN_CHANGED)
        _deliver_all(pending)

    def delete(self, path: str) -> None:
        parent = _parent_of(path)
        with self._lock:
            node = self._nodes.get(path)
            if node is None:
                raise NodeNotFoundError(path)
            if node.children:
                raise CoordinationError(f"Node not empty: {path}")
            self._zxid += 1
            del self._nodes[path]
            parent_node = self._nodes[parent]
            parent_node.children.discard(_name_of(path))
            parent_node.cversion += 1
            parent_node.pzxid = self._zxid
            pending = self._trigger(path, data=True, children=True, kind=NotificationType.NODE_DELETED)
            pending += self._trigger(parent, data=False, children=True, kind=NotificationType.CHILDREN_CHANGED)
        _deliver_all(pending)

    def set_data(self, path: str, data: bytes) -> None:
        with self._lock:
            node = self._nodes.get(path)
            if node is None:
                raise NodeNotFoundError(path)
            self._zxid += 1
            node.data = data
            node.mzxid = self._zxid
            node.version += 1
            pending = self._trigger(path, data=True, children=False, kind=NotificationType.DATA_CHANGED)
        _deliver_all(pending)

    def expire_sessions(self) -> None:
        """Report session expiry to every live client."""

        for client in self.live_clients:
            client.notify(Notification.session(SessionState.EXPIRED))

    def inject_fault(self, operation: str, path: str, error: Exception) -> None:
        """Fail the next ``operation`` (get_children, exists, get_data) on ``path``."""

        with self._lock:
            self._faults[(operation, path)] = error

    def reads(self, operation: Optional[str] = None) -> List[str]:
        return [path for op, path in self.calls if operation is None or op == operation]

    def _read(self, client: "InMemoryClient", operation: str, path: str, watch: bool) -> _Node:
        with self._lock:
            self.calls.append((operation, path))
            fault = self._faults.pop((operation, path), None)
            if fault is not None:
                raise fault
            node = self._nodes.get(path)
            if node is None:
                raise NodeNotFoundError(path)
            if watch:
                if operation == "get_children":
                    client._child_watches.add(path)
                else:
                    client._data_watches.add(path)
            return node

    def _stat(self, node: _Node) -> NodeStat:
        return NodeStat(
            czxid=node.czxid,
            mzxid=node.mzxid,
            ctime=node.czxid,
            mtime=node.mzxid,
            version=node.version,
            cversion=node.cversion,
            data_length=len(node.data),
            num_children=len(node.children),
            pzxid=node.pzxid,
        )

    def _trigger(
        self, path: str, *, data: bool, children: bool, kind: NotificationType
    ) -> List[Tuple["InMemoryClient", Notification]]:
        pending: List[Tuple[InMemoryClient, Notification]] = []
        for client in self._clients:
            fired = False
            if data and path in client._data_watches:
                client._data_watches.discard(path)
                fired = True
            if children and path in client._child_watches:
                client._child_watches.discard(path)
                fired = True
            if fired:
                pending.append((client, Notification.node(kind, path)))
        return pending

    def _attach(self, client: "InMemoryClient") -> None:
        with self._lock:
            if self.refuse_connections:
                raise ConnectError(f"Unable to reach {client.hosts}")
            self._clients.append(client)
            self.sessions_opened += 1

    def _detach(self, client: "InMemoryClient") -> None:
        with self._lock:
            if client in self._clients:
                self._clients.remove(client)


class InMemoryClient:
    """One session against an :class:`InMemoryCoordinationService`."""

    def __init__(self, service: InMemoryCoordinationService, hosts: str, session_timeout: float):
        self.hosts = hosts
        self.session_timeout = session_timeout
        self.closed = False
        self._service = service
        self._sink: Optional[NotificationSink] = None
        self._data_watches: Set[str] = set()
        self._child_watches: Set[str] = set()

    def register(self, sink: NotificationSink) -> None:
        self._sink = sink

    def connect(self, timeout: float) -> None:
        self._service._attach(self)
        self.notify(Notification.session(SessionState.CONNECTED))

    def close(self) -> None:
        self.closed = True
        self._service._detach(self)
        self._data_watches.clear()
        self._child_watches.clear()
        if self._service.fail_close:
            raise CoordinationError("connection already broken")

    def get_children(self, path: str, watch: bool = False) -> List[str]:
        node = self._service._read(self, "get_children", path, watch)
        return sorted(node.children)

    def exists(self, path: str, watch: bool = False) -> NodeStat:
        node = self._service._read(self, "exists", path, watch)
        return self._service._stat(node)

    def get_data(self, path: str, watch: bool = False) -> Tuple[bytes, NodeStat]:
        node = self._service._read(self, "get_data", path, watch)
        return node.data, self._service._stat(node)

    def notify(self, notification: Notification) -> None:
        if not self.closed:
            self.deliver_late(notification)

    def deliver_late(self, notification: Notification) -> None:
        """Deliver even after close, like a callback that was already in flight."""

        sink = self._sink
        if sink is not None:
            sink(notification)


class RecordingListener:
    """Listener that keeps every message it receives."""

    def __init__(self, fail_with: Optional[Type[Exception]] = None):
        self.messages: List[ChangeMessage] = []
        self._fail_with = fail_with

    def receive(self, message: ChangeMessage) -> None:
        self.messages.append(message)
        if self._fail_with is not None:
            raise self._fail_with("listener failure")

    def of_type(self, message_type: MessageType) -> List[ChangeMessage]:
        return [message for message in self.messages if message.message_type is message_type]

    def paths(self, message_type: MessageType) -> List[str]:
        return [getattr(message, "path") for message in self.of_type(message_type)]

    def clear(self) -> None:
        self.messages.clear()


def _parent_of(path: str) -> str:
    parent = path.rsplit("/", 1)[0]
    return parent or "/"


def _name_of(path: str) -> str:
    return path.rsplit("/", 1)[1]


def _deliver_all(pending: List[Tuple[InMemoryClient, Notification]]) -> None:
    for client, notification in pending:
        client.notify(notification)
