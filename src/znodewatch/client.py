"""Coordination-service client contract and its kazoo (ZooKeeper) binding."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List, Optional, Protocol, Tuple

from kazoo.client import KazooClient, KazooState
from kazoo.exceptions import KazooException, NoNodeError
from kazoo.handlers.threading import KazooTimeoutError
from kazoo.protocol.states import EventType, WatchedEvent

from .events import NodeStat, SessionState

logger = logging.getLogger(__name__)


class CoordinationError(Exception):
    """Raised when a call to the coordination service fails."""


class NodeNotFoundError(CoordinationError):
    """Raised when the node a call refers to does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Node does not exist: {path}")
        self.path = path


class ConnectError(CoordinationError):
    """Raised when a session cannot be established."""


class NotificationType(str, Enum):
    """Kinds of raw notifications delivered by the coordination client."""

    SESSION = "session"
    NODE_CREATED = "node_created"
    NODE_DELETED = "node_deleted"
    DATA_CHANGED = "data_changed"
    CHILDREN_CHANGED = "children_changed"


@dataclass(frozen=True)
class Notification:
    """A single watch or session notification."""

    kind: NotificationType
    path: Optional[str] = None
    state: Optional[SessionState] = None

    @classmethod
    def session(cls, state: SessionState) -> "Notification":
        return cls(kind=NotificationType.SESSION, state=state)

    @classmethod
    def node(cls, kind: NotificationType, path: str) -> "Notification":
        return cls(kind=kind, path=path)


NotificationSink = Callable[[Notification], None]


class CoordinationClient(Protocol):
    """The subset of a coordination-service session used by the observer."""

    hosts: str

    def register(self, sink: NotificationSink) -> None:
        ...

    def connect(self, timeout: float) -> None:
        ...

    def close(self) -> None:
        ...

    def get_children(self, path: str, watch: bool = False) -> List[str]:
        ...

    def exists(self, path: str, watch: bool = False) -> NodeStat:
        ...

    def get_data(self, path: str, watch: bool = False) -> Tuple[bytes, NodeStat]:
        ...


ClientFactory = Callable[[str, float], CoordinationClient]


_EVENT_TYPES = {
    EventType.CREATED: NotificationType.NODE_CREATED,
    EventType.DELETED: NotificationType.NODE_DELETED,
    EventType.CHANGED: NotificationType.DATA_CHANGED,
    EventType.CHILD: NotificationType.CHILDREN_CHANGED,
}

_SESSION_STATES = {
    KazooState.CONNECTED: SessionState.CONNECTED,
    KazooState.SUSPENDED: SessionState.SUSPENDED,
    KazooState.LOST: SessionState.EXPIRED,
}


class KazooCoordinationClient:
    """One ZooKeeper session, backed by a ``KazooClient``."""

    def __init__(self, hosts: str, session_timeout: float):
        self.hosts = hosts
        self._client = KazooClient(hosts=hosts, timeout=session_timeout)
        self._sink: Optional[NotificationSink] = None
        self._closed = False

    def register(self, sink: NotificationSink) -> None:
        self._sink = sink

    def connect(self, timeout: float) -> None:
        self._client.add_listener(self._on_state_change)
        try:
            self._client.start(timeout=timeout)
        except (KazooTimeoutError, KazooException) as exc:
            raise ConnectError(f"Unable to reach ZooKeeper at {self.hosts}: {exc}") from exc

    def close(self) -> None:
        self._closed = True
        self._client.stop()
        self._client.close()

    def get_children(self, path: str, watch: bool = False) -> List[str]:
        with _translate_errors("get_children", path):
            return self._client.get_children(path, watch=self._on_watch if watch else None)

    def exists(self, path: str, watch: bool = False) -> NodeStat:
        with _translate_errors("exists", path):
            stat = self._client.exists(path, watch=self._on_watch if watch else None)
        if stat is None:
            raise NodeNotFoundError(path)
        return _to_node_stat(stat)

    def get_data(self, path: str, watch: bool = False) -> Tuple[bytes, NodeStat]:
        with _translate_errors("get_data", path):
            data, stat = self._client.get_data(path, watch=self._on_watch if watch else None)
        return data or b"", _to_node_stat(stat)

    def _on_watch(self, event: WatchedEvent) -> None:
        kind = _EVENT_TYPES.get(event.type)
        if kind is None:
            return
        self._deliver(Notification.node(kind, event.path))

    def _on_state_change(self, state: str) -> None:
        # Runs on kazoo's connection thread, which must never block.
        if self._closed:
            return
        session_state = _SESSION_STATES.get(state)
        if session_state is None:
            logger.debug("Ignoring unknown kazoo state %s", state)
            return
        self._client.handler.spawn(self._deliver, Notification.session(session_state))

    def _deliver(self, notification: Notification) -> None:
        sink = self._sink
        if sink is None or self._closed:
            return
        sink(notification)


@contextmanager
def _translate_errors(operation: str, path: str) -> Iterator[None]:
    try:
        yield
    except NoNodeError as exc:
        raise NodeNotFoundError(path) from exc
    except (KazooTimeoutError, KazooException) as exc:
        raise CoordinationError(f"{operation}({path}) failed: {exc!r}") from exc


def _to_node_stat(stat) -> NodeStat:
    return NodeStat(
        czxid=stat.czxid,
        mzxid=stat.mzxid,
        ctime=stat.ctime,
        mtime=stat.mtime,
        version=stat.version,
        cversion=stat.cversion,
        aversion=stat.aversion,
        ephemeral_owner=stat.ephemeralOwner,
        data_length=stat.dataLength,
        num_children=stat.numChildren,
        pzxid=stat.pzxid,
    )
