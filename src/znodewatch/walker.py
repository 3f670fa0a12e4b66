"""Bounded recursive walk that primes the cache and installs watches."""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from .cache import NodeStateCache
from .client import CoordinationClient, CoordinationError, NodeNotFoundError
from .events import NodeUpdated
from .listeners import Listener, ListenerRegistry

logger = logging.getLogger(__name__)


def child_path(parent: str, name: str) -> str:
    """Fully qualified path of ``name`` below ``parent``."""

    if parent == "/":
        return "/" + name
    return parent + "/" + name


class TreeWalker:
    """Walks a subtree, storing children snapshots and announcing each node."""

    def __init__(self, cache: NodeStateCache, registry: ListenerRegistry):
        self._cache = cache
        self._registry = registry

    def walk(
        self,
        client: CoordinationClient,
        root: Optional[str],
        max_depth: int,
        listeners: Optional[Iterable[Listener]] = None,
    ) -> None:
        """Walk ``root`` down to ``max_depth`` levels.

        Every read registers a watch in the same call, so nothing changes
        unobserved between reading a node and watching it.
        """

        if max_depth <= 0:
            return
        if not root:
            root = "/"

        state = self._cache.get_or_create(root)
        with state.lock:
            try:
                children = frozenset(client.get_children(root, watch=True))
            except NodeNotFoundError:
                logger.debug("%s disappeared before it could be walked", root)
                self._cache.remove(root)
                return
            except CoordinationError as exc:
                logger.warning("Unable to list children of %s: %s", root, exc)
                return
            state.children = children

        for name in sorted(children):
            path = child_path(root, name)
            try:
                stat = client.exists(path, watch=True)
            except NodeNotFoundError:
                logger.debug("%s disappeared during the walk", path)
                continue
            except CoordinationError as exc:
                logger.warning("Unable to stat %s: %s", path, exc)
                continue
            self._registry.dispatch(NodeUpdated(path=path, stat=stat), listeners)
            self.walk(client, path, max_depth - 1, listeners)
