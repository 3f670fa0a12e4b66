"""Watch re-arming, children diffing and session recovery."""
from __future__ import annotations

import functools
import logging
import threading
from dataclasses import dataclass
from typing import AbstractSet, FrozenSet, Iterable, Optional, Set, Tuple

from .cache import NodeStateCache
from .client import (
    ClientFactory,
    ConnectError,
    CoordinationClient,
    CoordinationError,
    KazooCoordinationClient,
    NodeNotFoundError,
    Notification,
    NotificationType,
)
from .config import ObserverConfig
from .events import (
    ConnectionStateChanged,
    DataPayload,
    NodeCreated,
    NodeDeleted,
    NodeUpdated,
    SessionState,
)
from .listeners import Listener, ListenerRegistry
from .walker import TreeWalker, child_path

logger = logging.getLogger(__name__)


@dataclass
class ObserverStats:
    """Counters kept by the observer for observability."""

    notifications: int = 0
    dropped: int = 0
    reconnects: int = 0


def diff_children(previous: AbstractSet[str], current: AbstractSet[str]) -> Tuple[Set[str], Set[str]]:
    """Return ``(removed, added)`` child names between two snapshots."""

    return set(previous) - set(current), set(current) - set(previous)


class StateObserver:
    """Mirrors a coordination tree and republishes its changes to listeners.

    A single session is live at a time. Each session's notifications are
    tagged with the generation that was current when it was opened; anything
    arriving for an older generation is dropped on entry. A callback already
    past that check when :meth:`stop` runs may still finish against the old
    session.
    """

    def __init__(
        self,
        config: ObserverConfig,
        registry: Optional[ListenerRegistry] = None,
        *,
        client_factory: ClientFactory = KazooCoordinationClient,
    ):
        self._config = config
        self._registry = registry if registry is not None else ListenerRegistry()
        self._client_factory = client_factory
        self._cache = NodeStateCache()
        self._walker = TreeWalker(self._cache, self._registry)
        self._lock = threading.Lock()
        self._connection: Optional[CoordinationClient] = None
        self._generation = 0
        self._status = SessionState.UNKNOWN.value
        self._stats = ObserverStats()
        self._stats_lock = threading.Lock()
        self._shutdown_event = threading.Event()

    @property
    def hosts(self) -> str:
        return self._config.hosts

    @property
    def status(self) -> str:
        return self._status

    @property
    def connection(self) -> Optional[CoordinationClient]:
        return self._connection

    @property
    def cache(self) -> NodeStateCache:
        return self._cache

    @property
    def registry(self) -> ListenerRegistry:
        return self._registry

    @property
    def stats(self) -> ObserverStats:
        return self._stats

    def add_listener(self, listener: Listener) -> None:
        self._registry.register(listener)

    def remove_listener(self, listener: Listener) -> bool:
        return self._registry.unregister(listener)

    def start(self) -> None:
        """Open a session and walk the configured subtree.

        Raises :class:`ConnectError` when the service cannot be reached.
        """

        with self._lock:
            if self._connection is not None:
                raise RuntimeError("Observer is already started")
            self._generation += 1
            generation = self._generation

        self._status = SessionState.CONNECTING.value
        logger.info("Trying to reach coordination service at %s", self._config.hosts)
        client = self._client_factory(self._config.hosts, self._config.session_timeout)
        client.register(functools.partial(self._on_notification, generation))
        try:
            client.connect(self._config.connect_timeout)
        except ConnectError:
            self._status = SessionState.CLOSED.value
            self._close_quietly(client)
            raise

        with self._lock:
            if generation != self._generation:
                logger.info("Observer was stopped while connecting to %s", self._config.hosts)
                self._close_quietly(client)
                return
            self._connection = client

        logger.info(
            "Connected to %s; walking %s to depth %s",
            self._config.hosts,
            self._config.root_path,
            self._config.depth,
        )
        self._walker.walk(client, self._config.root_path, self._config.depth)

    def stop(self) -> None:
        """Detach and close the current session, if any."""

        with self._lock:
            client = self._connection
            self._connection = None
            self._generation += 1
        self._status = SessionState.CLOSED.value
        if client is not None:
            logger.info("Closing session to %s", client.hosts)
            self._close_quietly(client)

    def run(self) -> None:
        """Start observing and block until :meth:`shutdown` or Ctrl-C."""

        self.start()
        try:
            while not self._shutdown_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Observer interrupted by user")
        finally:
            self.stop()
            logger.info(
                "Observer stopped after %s notifications (%s dropped), %s reconnects",
                self._stats.notifications,
                self._stats.dropped,
                self._stats.reconnects,
            )

    def shutdown(self) -> None:
        """Signal :meth:`run` to return at the next opportunity."""

        self._shutdown_event.set()

    def load_initial_tree(
        self,
        path: Optional[str],
        depth: int,
        listeners: Optional[Iterable[Listener]] = None,
    ) -> None:
        """Walk ``path`` on the live session, announcing nodes to ``listeners``."""

        client = self._connection
        if client is None:
            logger.warning("No active session; cannot load tree below %s", path)
            return
        self._walker.walk(client, path, depth, listeners)

    def fetch_node_data(self, path: str) -> Optional[DataPayload]:
        client = self._connection
        if client is None:
            logger.warning("No active session; cannot read %s", path)
            return None
        try:
            data, stat = client.get_data(path, watch=True)
        except CoordinationError as exc:
            logger.warning("Unable to read data of %s: %s", path, exc)
            return None
        return DataPayload.from_read(path, data, stat)

    def process(self, notification: Notification) -> None:
        """Handle one raw notification from the current session."""

        kind = notification.kind
        if kind is NotificationType.SESSION:
            self._handle_session_event(notification.state or SessionState.UNKNOWN)
            return

        path = notification.path
        if path is None:
            logger.debug("Ignoring %s without a path", kind.value)
            return
        # Creations and deletions are reported from the parent's children diff.
        if kind is NotificationType.NODE_CREATED:
            return
        if kind is NotificationType.NODE_DELETED:
            self._cache.remove(path)
            return

        client = self._connection
        if client is None:
            logger.debug("No active session; ignoring %s for %s", kind.value, path)
            return

        if kind is NotificationType.DATA_CHANGED:
            self._handle_data_changed(client, path)
        # A data change also re-validates the children.
        self._handle_children_changed(client, path)

    def _on_notification(self, generation: int, notification: Notification) -> None:
        if generation != self._generation:
            self._count("dropped")
            logger.debug("Dropping %s from a closed session", notification)
            return
        self._count("notifications")
        try:
            self.process(notification)
        except Exception:
            logger.exception("Failed to process %s", notification)

    def _handle_session_event(self, state: SessionState) -> None:
        logger.info("New session state: %s", state.value)
        if state is SessionState.EXPIRED:
            self._recover_expired_session()
            return
        self._status = state.value
        self._registry.dispatch(ConnectionStateChanged(state=state))

    def _recover_expired_session(self) -> None:
        logger.info("Trying to re-establish expired session to %s", self._config.hosts)
        self.stop()
        watched = sorted(self._cache.clear())
        try:
            self.start()
        except ConnectError as exc:
            self._status = SessionState.EXPIRED.value
            logger.error("Unable to re-establish session: %s", exc)
            return
        self._count("reconnects")

        client = self._connection
        if client is None:
            return
        # Every previously watched node re-announces its children, including
        # nodes the walk has already repopulated.
        for path in watched:
            self._handle_children_changed(client, path, baseline=frozenset())

    def _handle_data_changed(self, client: CoordinationClient, path: str) -> None:
        try:
            stat = client.exists(path, watch=True)
        except NodeNotFoundError:
            stat = None
        except CoordinationError as exc:
            logger.warning("Unable to stat %s after a data change: %s", path, exc)
            return
        self._registry.dispatch(NodeUpdated(path=path, stat=stat))

    def _handle_children_changed(
        self,
        client: CoordinationClient,
        path: str,
        baseline: Optional[FrozenSet[str]] = None,
    ) -> None:
        state = self._cache.get_or_create(path)
        # Held from the read to the store so concurrent notifications for the
        # same node never diff against an overwritten baseline.
        with state.lock:
            try:
                current = frozenset(client.get_children(path, watch=True))
            except NodeNotFoundError:
                logger.debug("%s is gone; evicting it from the cache", path)
                self._cache.remove(path)
                return
            except CoordinationError as exc:
                logger.warning("Unable to list children of %s: %s", path, exc)
                return

            previous = state.children if baseline is None else baseline
            removed, added = diff_children(previous, current)
            state.children = current

            for name in sorted(removed):
                self._registry.dispatch(NodeDeleted(path=child_path(path, name)))
            for name in sorted(added):
                self._announce_created(client, child_path(path, name))

    def _announce_created(self, client: CoordinationClient, path: str) -> None:
        try:
            stat = client.exists(path, watch=True)
        except NodeNotFoundError:
            logger.debug("%s was removed before it could be announced", path)
            return
        except CoordinationError as exc:
            logger.warning("Unable to stat new node %s: %s", path, exc)
            return
        self._registry.dispatch(NodeCreated(path=path, stat=stat))
        try:
            client.get_children(path, watch=True)
        except CoordinationError as exc:
            logger.debug("Unable to watch children of %s: %s", path, exc)

    def _count(self, counter: str) -> None:
        with self._stats_lock:
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)

    @staticmethod
    def _close_quietly(client: CoordinationClient) -> None:
        try:
            client.close()
        except Exception as exc:
            logger.debug("Ignoring error while closing session to %s: %s", client.hosts, exc)
