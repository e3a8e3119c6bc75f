from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, List, Tuple


class Origin(Enum):
    LOCAL = "local"
    REMOTE = "remote"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChatMessage:
    """A display-ready chat entry. Timestamps are assigned locally."""
    text: str
    origin: Origin
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_from_user(self) -> bool:
        return self.origin is Origin.LOCAL


@dataclass
class MessageHistory:
    messages: List[ChatMessage] = field(default_factory=list)

    def append(self, text: str, origin: Origin) -> ChatMessage:
        message = ChatMessage(text=text, origin=origin)
        self.messages.append(message)
        return message

    def clear(self) -> None:
        self.messages.clear()

    def snapshot(self) -> Tuple[ChatMessage, ...]:
        return tuple(self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self.snapshot())
