"""Tests for the kazoo binding, against a mocked KazooClient."""

from unittest.mock import MagicMock

import pytest
from kazoo.client import KazooState
from kazoo.exceptions import ConnectionLoss, NoNodeError
from kazoo.handlers.threading import KazooTimeoutError
from kazoo.protocol.states import EventType, KeeperState, WatchedEvent, ZnodeStat

import znodewatch.client as client_module
from znodewatch.client import (
    ConnectError,
    CoordinationError,
    KazooCoordinationClient,
    NodeNotFoundError,
    Notification,
    NotificationType,
)
from znodewatch.events import NodeStat, SessionState


ZSTAT = ZnodeStat(11, 12, 13, 14, 5, 6, 7, 0, 3, 2, 15)


@pytest.fixture
def kazoo(monkeypatch):
    instance = MagicMock()
    instance.handler.spawn.side_effect = lambda func, *args: func(*args)
    factory = MagicMock(return_value=instance)
    monkeypatch.setattr(client_module, "KazooClient", factory)
    instance.factory = factory
    return instance


@pytest.fixture
def received():
    return []


@pytest.fixture
def client(kazoo, received):
    zk = KazooCoordinationClient("zk:2181", 30.0)
    zk.register(received.append)
    return zk


class TestConnection:
    def test_client_is_built_with_session_timeout(self, kazoo, client):
        kazoo.factory.assert_called_once_with(hosts="zk:2181", timeout=30.0)
        assert client.hosts == "zk:2181"

    def test_connect_starts_session(self, kazoo, client):
        client.connect(5.0)

        kazoo.start.assert_called_once_with(timeout=5.0)
        kazoo.add_listener.assert_called_once()

    def test_connect_timeout_becomes_connect_error(self, kazoo, client):
        kazoo.start.side_effect = KazooTimeoutError("Connection time-out")

        with pytest.raises(ConnectError, match="zk:2181"):
            client.connect(1.0)

    def test_close_stops_and_closes(self, kazoo, client):
        client.close()

        kazoo.stop.assert_called_once_with()
        kazoo.close.assert_called_once_with()


class TestReads:
    def test_get_children_with_watch(self, kazoo, client):
        kazoo.get_children.return_value = ["a", "b"]

        assert client.get_children("/", watch=True) == ["a", "b"]
        assert kazoo.get_children.call_args.kwargs["watch"] is not None

    def test_get_children_without_watch(self, kazoo, client):
        kazoo.get_children.return_value = []

        client.get_children("/")

        assert kazoo.get_children.call_args.kwargs["watch"] is None

    def test_missing_node_is_translated(self, kazoo, client):
        kazoo.get_children.side_effect = NoNodeError()

        with pytest.raises(NodeNotFoundError) as excinfo:
            client.get_children("/gone", watch=True)

        assert excinfo.value.path == "/gone"

    def test_other_failures_are_transient(self, kazoo, client):
        kazoo.get_data.side_effect = ConnectionLoss()

        with pytest.raises(CoordinationError) as excinfo:
            client.get_data("/a")

        assert not isinstance(excinfo.value, NodeNotFoundError)

    def test_exists_converts_stat(self, kazoo, client):
        kazoo.exists.return_value = ZSTAT

        stat = client.exists("/a", watch=True)

        assert stat == NodeStat(
            czxid=11,
            mzxid=12,
            ctime=13,
            mtime=14,
            version=5,
            cversion=6,
            aversion=7,
            ephemeral_owner=0,
            data_length=3,
            num_children=2,
            pzxid=15,
        )

    def test_exists_none_means_not_found(self, kazoo, client):
        kazoo.exists.return_value = None

        with pytest.raises(NodeNotFoundError):
            client.exists("/a")

    def test_get_data_normalises_empty_data(self, kazoo, client):
        kazoo.get_data.return_value = (None, ZSTAT)

        data, stat = client.get_data("/a", watch=True)

        assert data == b""
        assert stat.version == 5


class TestNotifications:
    def _watch_function(self, kazoo, client):
        kazoo.get_children.return_value = []
        client.get_children("/a", watch=True)
        return kazoo.get_children.call_args.kwargs["watch"]

    @pytest.mark.parametrize(
        "event_type,kind",
        [
            (EventType.CREATED, NotificationType.NODE_CREATED),
            (EventType.DELETED, NotificationType.NODE_DELETED),
            (EventType.CHANGED, NotificationType.DATA_CHANGED),
            (EventType.CHILD, NotificationType.CHILDREN_CHANGED),
        ],
    )
    def test_watch_events_are_mapped(self, kazoo, client, received, event_type, kind):
        watch = self._watch_function(kazoo, client)

        watch(WatchedEvent(event_type, KeeperState.CONNECTED, "/a"))

        assert received == [Notification.node(kind, "/a")]

    def test_none_event_is_ignored(self, kazoo, client, received):
        watch = self._watch_function(kazoo, client)

        watch(WatchedEvent(EventType.NONE, KeeperState.CONNECTED, None))

        assert received == []

    @pytest.mark.parametrize(
        "kazoo_state,state",
        [
            (KazooState.CONNECTED, SessionState.CONNECTED),
            (KazooState.SUSPENDED, SessionState.SUSPENDED),
            (KazooState.LOST, SessionState.EXPIRED),
        ],
    )
    def test_session_states_are_spawned(self, kazoo, client, received, kazoo_state, state):
        client.connect(1.0)
        listener = kazoo.add_listener.call_args.args[0]

        listener(kazoo_state)

        kazoo.handler.spawn.assert_called_once()
        assert received == [Notification.session(state)]

    def test_state_changes_after_close_are_ignored(self, kazoo, client, received):
        client.connect(1.0)
        listener = kazoo.add_listener.call_args.args[0]
        client.close()

        listener(KazooState.LOST)

        assert received == []
        kazoo.handler.spawn.assert_not_called()
