"""Per-node shadow of the last known children."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional


@dataclass
class NodeState:
    """Last known children of one watched node.

    ``children`` is only read or replaced while ``lock`` is held, and it is
    always replaced wholesale.
    """

    children: FrozenSet[str] = frozenset()
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class NodeStateCache:
    """Maps node paths to their :class:`NodeState`, created lazily."""

    def __init__(self) -> None:
        self._states: Dict[str, NodeState] = {}
        self._insert_lock = threading.Lock()

    def get(self, path: str) -> Optional[NodeState]:
        return self._states.get(path)

    def get_or_create(self, path: str) -> NodeState:
        state = self._states.get(path)
        if state is not None:
            return state
        with self._insert_lock:
            state = self._states.get(path)
            if state is None:
                state = NodeState()
                self._states[path] = state
            return state

    def remove(self, path: str) -> None:
        with self._insert_lock:
            self._states.pop(path, None)

    def clear(self) -> List[str]:
        """Drop every entry and return the paths that were cached."""

        with self._insert_lock:
            paths = list(self._states)
            self._states.clear()
        return paths

    def paths(self) -> List[str]:
        with self._insert_lock:
            return list(self._states)

    def __contains__(self, path: object) -> bool:
        return path in self._states

    def __len__(self) -> int:
        return len(self._states)
