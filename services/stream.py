from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional
import asyncio
import logging

from realtime import ConnectionRegistry, QueueSink, encode_sse, keepalive_comment, make_client_id
from security import Identity

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    OPENING = "opening"
    OPEN = "open"
    CLOSED = "closed"


class ConnectionStream:
    """One Server-Sent-Events connection: opening -> open -> closed.

    ``frames()`` registers the connection, yields the ``connected`` frame and
    then whatever the broadcaster queues, with a keep-alive comment after each
    idle ``keepalive_seconds``. It ends when the peer disconnects, when the
    registry drops the sink, or when the generator is closed; the client is
    unregistered on the way out. Reconnecting is the client's job.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        identity: Identity,
        keepalive_seconds: float = 30.0,
        queue_size: int = 100,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.registry = registry
        self.identity = identity
        self.keepalive_seconds = keepalive_seconds
        self.sink = QueueSink(maxsize=queue_size)
        self._is_disconnected = is_disconnected
        self._clock = clock
        self.state = StreamState.OPENING
        self.client_id: Optional[str] = None

    def open(self) -> str:
        connected_at = self._clock()
        client_id = base_id = make_client_id(self.identity.holder_id, connected_at)
        suffix = 1
        # Two tabs can connect within the same millisecond
        while client_id in self.registry:
            suffix += 1
            client_id = f"{base_id}-{suffix}"
        self.client_id = client_id
        self.registry.register(
            self.client_id,
            self.identity.holder_id,
            self.identity.role,
            self.identity.holder_label,
            self.sink,
        )
        self.state = StreamState.OPEN
        return encode_sse({
            "type": "connected",
            "data": {
                "message": "Real-time updates connected",
                "client_id": self.client_id,
                "user_role": self.identity.role,
                "connected_at": connected_at.isoformat(),
            },
        })

    def close(self) -> None:
        if self.state == StreamState.CLOSED:
            return
        self.state = StreamState.CLOSED
        self.sink.close()
        if self.client_id is not None:
            self.registry.unregister(self.client_id, sink=self.sink)

    async def _peer_gone(self) -> bool:
        if self._is_disconnected is None:
            return False
        return await self._is_disconnected()

    async def frames(self) -> AsyncIterator[str]:
        try:
            yield self.open()
            while self.state == StreamState.OPEN:
                try:
                    frame = await asyncio.wait_for(self.sink.get(), timeout=self.keepalive_seconds)
                except asyncio.TimeoutError:
                    if await self._peer_gone():
                        break
                    frame = keepalive_comment(self._clock())
                if frame is None:
                    # Sink closed: the registry dropped this client
                    break
                yield frame
        finally:
            self.close()
            logger.info("Realtime stream %s closed", self.client_id)
