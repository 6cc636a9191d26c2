from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import asyncio
import logging

import httpx

from realtime_client.messages import MessageDecodeError, MessageKind, RealtimeMessage, aiter_sse_data, decode_message
from realtime_client.state import LockState

logger = logging.getLogger(__name__)

Listener = Callable[[RealtimeMessage], None]


@dataclass
class LockOutcome:
    granted: bool
    extended: bool = False
    locked_by: Optional[str] = None
    # Set when lock state could not be determined; callers must not open the editor
    error: Optional[str] = None


class RealtimeClient:
    """Consumer side of the realtime stream for one signed-in user.

    Keeps a ``LockState`` current from pushed lock events, re-fetches the
    active-lock snapshot shortly after each (re)connect as an admin, and
    reconnects ``reconnect_delay`` seconds after any stream error until
    ``disconnect()`` is called.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        label: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        reconnect_delay: float = 5.0,
        snapshot_delay: float = 1.0,
        api_prefix: str = "/api/v1",
    ):
        self._owns_http = http_client is None
        # No read timeout: the stream idles between keep-alives
        self.http = http_client or httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(10.0, read=None))
        self.token = token
        self.api_prefix = api_prefix.rstrip("/")
        self.reconnect_delay = reconnect_delay
        self.snapshot_delay = snapshot_delay
        self.state = LockState(label)
        self.client_id: Optional[str] = None
        self.connect_attempts = 0
        self.snapshot_task: Optional[asyncio.Task] = None
        self._run_task: Optional[asyncio.Task] = None
        self._should_connect = False
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def _url(self, path: str) -> str:
        return f"{self.api_prefix}{path}"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def on(self, kind: str, callback: Listener) -> None:
        """Register a callback for a message kind, or ``"*"`` for all."""
        self._listeners[kind].append(callback)

    # Connection lifecycle

    @property
    def is_connected(self) -> bool:
        return self.state.is_connected

    async def connect(self) -> None:
        if self._run_task is not None and not self._run_task.done():
            return
        self._should_connect = True
        if self.state.my_label is None:
            await self._load_identity()
        self._run_task = asyncio.create_task(self._run())

    async def disconnect(self) -> None:
        self._should_connect = False
        tasks = [t for t in (self._run_task, self.snapshot_task) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._run_task = None
        self.snapshot_task = None
        self.client_id = None
        self.state.is_connected = False
        self.state.assigned_role = None

    async def switch_identity(self, token: str, label: Optional[str] = None) -> None:
        """Tear everything down and rebuild for a different signed-in user."""
        await self.disconnect()
        self.state.clear()
        self.state.my_label = label
        self.token = token
        await self.connect()
        await self.fetch_active_locks()

    async def aclose(self) -> None:
        await self.disconnect()
        if self._owns_http:
            await self.http.aclose()

    async def _load_identity(self) -> None:
        try:
            response = await self.http.get(self._url("/auth/me"), headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Could not resolve current user: %s", e)
            return
        self.state.my_label = response.json().get("email")

    async def _run(self) -> None:
        while self._should_connect:
            try:
                await self.consume_stream()
            except httpx.HTTPError as e:
                logger.warning("Realtime stream error: %s", e)
            except Exception:
                # CancelledError is not an Exception and still ends the loop
                logger.exception("Realtime stream failed; will reconnect")
            self.state.is_connected = False
            if not self._should_connect:
                break
            logger.info("Reconnecting realtime stream in %.1fs", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    async def consume_stream(self) -> None:
        """Process one stream connection until the server ends it."""
        self.connect_attempts += 1
        async with self.http.stream("GET", self._url("/realtime/stream"), headers=self._headers()) as response:
            response.raise_for_status()
            self.state.is_connected = True
            async for data in aiter_sse_data(response.aiter_lines()):
                try:
                    message = decode_message(data)
                except MessageDecodeError as e:
                    logger.warning("Skipping realtime frame: %s", e)
                    continue
                self.dispatch(message)
        self.state.is_connected = False

    def dispatch(self, message: RealtimeMessage) -> None:
        payload = message.payload
        if message.kind == MessageKind.CONNECTED:
            self.state.assigned_role = payload.get("user_role")
            self.client_id = payload.get("client_id")
            if self.state.assigned_role == "admin":
                self._schedule_snapshot()
        elif message.kind == MessageKind.LOCK_ACQUIRED:
            self.state.apply_lock_acquired(str(payload.get("entity_id")), payload.get("holder_label"))
        elif message.kind == MessageKind.LOCK_RELEASED:
            self.state.apply_lock_released(str(payload.get("entity_id")))

        for callback in self._listeners.get(message.kind, []) + self._listeners.get("*", []):
            try:
                callback(message)
            except Exception:
                logger.exception("Realtime listener for %s failed", message.kind)

    def _schedule_snapshot(self) -> None:
        if self.snapshot_task is not None and not self.snapshot_task.done():
            self.snapshot_task.cancel()
        self.snapshot_task = asyncio.create_task(self._delayed_snapshot())

    async def _delayed_snapshot(self) -> None:
        # Let the connection settle before reconciling
        await asyncio.sleep(self.snapshot_delay)
        await self.fetch_active_locks()

    # Lock API

    async def fetch_active_locks(self) -> Optional[List[Dict[str, Any]]]:
        try:
            response = await self.http.get(self._url("/locks"), headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Could not fetch active locks: %s", e)
            return None
        locks = response.json().get("locks", [])
        self.state.load_snapshot(locks)
        return locks

    async def acquire(self, entity_id: str) -> LockOutcome:
        try:
            response = await self.http.post(
                self._url("/locks"),
                json={"entity_id": entity_id, "action": "acquire"},
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.warning("Lock acquire for %s failed: %s", entity_id, e)
            return LockOutcome(granted=False, error=str(e))

        if response.status_code == 409:
            locked_by = response.json().get("locked_by")
            if locked_by:
                self.state.apply_lock_acquired(entity_id, locked_by)
            return LockOutcome(granted=False, locked_by=locked_by)
        if response.is_error:
            return LockOutcome(granted=False, error=f"HTTP {response.status_code}")

        body = response.json()
        if not body.get("granted"):
            return LockOutcome(granted=False, error="Lock not granted")
        self.state.start_editing(entity_id)
        return LockOutcome(granted=True, extended=bool(body.get("extended")))

    async def release(self, entity_id: str) -> bool:
        try:
            response = await self.http.post(
                self._url("/locks"),
                json={"entity_id": entity_id, "action": "release"},
                headers=self._headers(),
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Lock release for %s failed: %s", entity_id, e)
            return False
        released = bool(response.json().get("released"))
        if released:
            self.state.end_editing(entity_id)
        else:
            # Someone else may own it now; keep their ownership visible
            self.state.my_editing_entities.discard(entity_id)
        return released

    def is_locked_by(self, entity_id: str) -> Optional[str]:
        return self.state.is_locked_by(entity_id)

    def am_i_editing(self, entity_id: str) -> bool:
        return self.state.am_i_editing(entity_id)
