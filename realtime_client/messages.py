"""Decoding of the realtime event stream into tagged messages."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, Iterator, List, Optional
import json


class MessageKind:
    CONNECTED = "connected"
    LOCK_ACQUIRED = "lock-acquired"
    LOCK_RELEASED = "lock-released"
    USER_CREATED = "user-created"
    USER_UPDATED = "user-updated"
    USER_DELETED = "user-deleted"


class MessageDecodeError(ValueError):
    pass


@dataclass(frozen=True)
class RealtimeMessage:
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def triggered_by(self) -> Optional[str]:
        return self.payload.get("triggered_by")


def decode_message(data: str) -> RealtimeMessage:
    try:
        raw = json.loads(data)
    except ValueError as e:
        raise MessageDecodeError(f"Invalid JSON frame: {data[:80]!r}") from e
    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        raise MessageDecodeError("Frame has no event type")
    payload = raw.get("data")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise MessageDecodeError(f"Frame payload for {raw['type']} is not an object")
    return RealtimeMessage(kind=raw["type"], payload=payload)


class _SSEFramer:
    def __init__(self) -> None:
        self._data: List[str] = []

    def feed(self, line: str) -> Optional[str]:
        line = line.rstrip("\r\n")
        if not line:
            if not self._data:
                return None
            event, self._data = "\n".join(self._data), []
            return event
        if line.startswith(":"):
            # Comment (keep-alive)
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            self._data.append(value)
        # event/id/retry fields are not used by this stream
        return None


def iter_sse_data(lines: Iterable[str]) -> Iterator[str]:
    """Yield the ``data`` payload of every complete SSE event in ``lines``."""
    framer = _SSEFramer()
    for line in lines:
        event = framer.feed(line)
        if event is not None:
            yield event


async def aiter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    framer = _SSEFramer()
    async for line in lines:
        event = framer.feed(line)
        if event is not None:
            yield event
