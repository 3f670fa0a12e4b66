"""Change message models shared across observer components."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional

MAX_DATA_BYTES = 500


class MessageType(str, Enum):
    """Kinds of change messages published to listeners."""

    UPDATED = "updated"
    CREATED = "created"
    DELETED = "deleted"
    CONNECTION = "connection"
    DATA = "data"


class SessionState(str, Enum):
    """Session states reported by the coordination service (plus local labels)."""

    UNKNOWN = "unknown"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SUSPENDED = "suspended"
    EXPIRED = "expired"
    CLOSED = "closed"


@dataclass(frozen=True)
class NodeStat:
    """Metadata of a node as returned by an existence check or data read."""

    czxid: int = 0
    mzxid: int = 0
    ctime: int = 0
    mtime: int = 0
    version: int = 0
    cversion: int = 0
    aversion: int = 0
    ephemeral_owner: int = 0
    data_length: int = 0
    num_children: int = 0
    pzxid: int = 0


class ChangeMessage:
    """Base class for everything delivered to listeners."""

    message_type: ClassVar[MessageType]

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.message_type.value}
        for key, value in asdict(self).items():  # type: ignore[call-overload]
            if isinstance(value, bytes):
                value = value.decode("utf-8", errors="replace")
            elif isinstance(value, Enum):
                value = value.value
            payload[key] = value
        return payload


@dataclass(frozen=True)
class NodeUpdated(ChangeMessage):
    path: str
    stat: Optional[NodeStat] = None

    message_type: ClassVar[MessageType] = MessageType.UPDATED


@dataclass(frozen=True)
class NodeCreated(ChangeMessage):
    path: str
    stat: NodeStat

    message_type: ClassVar[MessageType] = MessageType.CREATED


@dataclass(frozen=True)
class NodeDeleted(ChangeMessage):
    path: str

    message_type: ClassVar[MessageType] = MessageType.DELETED


@dataclass(frozen=True)
class ConnectionStateChanged(ChangeMessage):
    state: SessionState

    message_type: ClassVar[MessageType] = MessageType.CONNECTION


@dataclass(frozen=True)
class DataPayload(ChangeMessage):
    """Result of an explicit data read, capped at ``MAX_DATA_BYTES``."""

    path: str
    data: bytes
    stat: NodeStat

    message_type: ClassVar[MessageType] = MessageType.DATA

    @classmethod
    def from_read(cls, path: str, data: Optional[bytes], stat: NodeStat) -> "DataPayload":
        # Oversized payloads are truncated, never rejected.
        return cls(path=path, data=(data or b"")[:MAX_DATA_BYTES], stat=stat)
