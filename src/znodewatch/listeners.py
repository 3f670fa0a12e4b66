"""Listener loading and message fan-out."""
from __future__ import annotations

import importlib
import logging
import threading
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, Optional, Protocol, cast

from .config import ListenerConfig
from .events import ChangeMessage, MessageType

logger = logging.getLogger(__name__)


ListenerCallback = Callable[[ChangeMessage, Dict[str, Any]], None]


class Listener(Protocol):
    def receive(self, message: ChangeMessage) -> None:
        ...


@dataclass(eq=False)
class CallbackListener:
    """Callable wrapper associated with configuration metadata."""

    name: str
    callback: ListenerCallback
    options: Dict[str, Any] = field(default_factory=dict)
    types: FrozenSet[MessageType] = frozenset()

    def accepts(self, message: ChangeMessage) -> bool:
        return not self.types or message.message_type in self.types

    def receive(self, message: ChangeMessage) -> None:
        if not self.accepts(message):
            return
        logger.debug("Delivering %s to listener %s", message.message_type.value, self.name)
        self.callback(message, self.options)


class ListenerRegistry:
    """Holds the registered listeners and delivers messages to them.

    Registration swaps in a new immutable snapshot, so listeners may be added
    or removed while a dispatch is iterating the previous one.
    """

    def __init__(self, listeners: Iterable[Listener] = ()):
        self._lock = threading.Lock()
        self._listeners: FrozenSet[Listener] = frozenset(listeners)

    @classmethod
    def from_config(cls, configs: Iterable[ListenerConfig]) -> "ListenerRegistry":
        return cls(load_listener(cfg) for cfg in configs)

    def __iter__(self) -> Iterator[Listener]:
        return iter(self._listeners)

    def __len__(self) -> int:
        return len(self._listeners)

    def __contains__(self, listener: object) -> bool:
        return listener in self._listeners

    def register(self, listener: Listener) -> None:
        with self._lock:
            self._listeners = self._listeners | {listener}

    def unregister(self, listener: Listener) -> bool:
        with self._lock:
            if listener not in self._listeners:
                return False
            self._listeners = self._listeners - {listener}
            return True

    def dispatch(self, message: ChangeMessage, targets: Optional[Iterable[Listener]] = None) -> None:
        receivers = self._listeners if targets is None else targets
        for listener in list(receivers):
            self._safe_deliver(listener, message)

    def _safe_deliver(self, listener: Listener, message: ChangeMessage) -> None:
        try:
            listener.receive(message)
        except Exception:
            logger.exception("Listener %r failed for message %s", listener, message)


def load_listener(config: ListenerConfig) -> CallbackListener:
    module = _import_module(config.module)
    try:
        callback = getattr(module, config.function)
    except AttributeError as exc:
        raise RuntimeError(
            f"Listener '{config.name}' could not find function '{config.function}' in {config.module}"
        ) from exc

    if not callable(callback):
        raise RuntimeError(
            f"Listener '{config.name}' attribute '{config.function}' in {config.module} is not callable"
        )

    return CallbackListener(
        name=config.name,
        callback=cast(ListenerCallback, callback),
        options=dict(config.options or {}),
        types=frozenset(config.types),
    )


def _import_module(module_path: str) -> ModuleType:
    try:
        return importlib.import_module(module_path)
    except ImportError as exc:
        raise RuntimeError(f"Unable to import listener module '{module_path}'") from exc
