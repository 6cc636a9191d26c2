"""Server-Sent-Events connection registry.

In-process only: one ``ConnectionRegistry`` per worker process, created in
``main.py`` and handed to request handlers through ``get_registry``. For
multi-process scale-out, replace the fan-out with Redis pub/sub or Postgres
LISTEN/NOTIFY.

Every method is synchronous. Handlers run on a single event loop, so a
register/unregister or a whole broadcast pass completes without another
callback touching the map in between.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set
from fastapi import Request
import asyncio
import json
import logging

logger = logging.getLogger(__name__)


class SinkClosedError(Exception):
    """Raised when pushing to a connection whose peer is gone."""


class Sink(Protocol):
    def send(self, frame: str) -> None: ...


class QueueSink:
    """Bounded outbound buffer drained by one streaming response."""

    _EOF = None

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize
        self.closed = False

    def send(self, frame: str) -> None:
        if self.closed:
            raise SinkClosedError("sink is closed")
        # One slot is reserved for the close sentinel
        if self._queue.qsize() >= self._maxsize:
            raise SinkClosedError(f"backlog of {self._maxsize} frames not drained")
        self._queue.put_nowait(frame)

    async def get(self) -> Optional[str]:
        """Next frame, or None once the sink has been closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(self._EOF)
        except asyncio.QueueFull:
            pass


@dataclass
class ConnectedClient:
    client_id: str
    holder_id: str
    holder_role: str
    holder_label: str
    sink: Sink = field(repr=False)
    connected_at: datetime = field(default_factory=datetime.utcnow)


def make_client_id(holder_id: str, connected_at: datetime) -> str:
    """Registry key: holder id plus connection time in epoch milliseconds."""
    return f"{holder_id}-{int(connected_at.timestamp() * 1000)}"


def encode_sse(message: Dict[str, Any]) -> str:
    return f"data: {json.dumps(message, default=str)}\n\n"


def keepalive_comment(now: datetime) -> str:
    # SSE comment line; EventSource ignores it
    return f":keepalive {now.isoformat()}\n\n"


class ConnectionRegistry:
    def __init__(self) -> None:
        # Map client_id -> connected client
        self._clients: Dict[str, ConnectedClient] = {}

    def register(self, client_id: str, holder_id: str, holder_role: str, holder_label: str, sink: Sink) -> ConnectedClient:
        client = ConnectedClient(
            client_id=client_id,
            holder_id=holder_id,
            holder_role=holder_role,
            holder_label=holder_label,
            sink=sink,
        )
        self._clients[client_id] = client
        logger.info("Registered realtime client %s (%s, %s); %d connected", client_id, holder_label, holder_role, len(self._clients))
        return client

    def unregister(self, client_id: str, sink: Optional[Sink] = None) -> Optional[ConnectedClient]:
        """Remove ``client_id``; with ``sink`` given, only if it still owns the entry."""
        if sink is not None:
            current = self._clients.get(client_id)
            if current is None or current.sink is not sink:
                return None
        client = self._clients.pop(client_id, None)
        if client is not None:
            logger.info("Unregistered realtime client %s (%s); %d connected", client_id, client.holder_label, len(self._clients))
        return client

    def get(self, client_id: str) -> Optional[ConnectedClient]:
        return self._clients.get(client_id)

    def list_all(self) -> List[ConnectedClient]:
        return list(self._clients.values())

    def list_by_role(self, role: str) -> List[ConnectedClient]:
        return [c for c in self._clients.values() if c.holder_role == role]

    def list_by_roles(self, roles: Iterable[str]) -> List[ConnectedClient]:
        allowed = set(roles)
        return [c for c in self._clients.values() if c.holder_role in allowed]

    def connected_holder_ids(self) -> Set[str]:
        return {c.holder_id for c in self._clients.values()}

    def is_holder_connected(self, holder_id: str) -> bool:
        return any(c.holder_id == holder_id for c in self._clients.values())

    def send(self, client: ConnectedClient, frame: str) -> bool:
        """Push one frame; a failing sink removes its client instead of raising."""
        try:
            client.sink.send(frame)
        except Exception as e:
            logger.warning("Dropping realtime client %s (%s): %s", client.client_id, client.holder_label, e)
            self.unregister(client.client_id, sink=client.sink)
            close = getattr(client.sink, "close", None)
            if callable(close):
                # Ends the stream that is still draining this sink
                close()
            return False
        return True

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry
