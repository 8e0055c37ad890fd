"""Display-side settings client.

Keeps a local copy of the settings document current by listening on the
websocket push channel, reconnecting with backoff when it drops, and
re-pulling the document over HTTP on a timer in case a push went missing.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Optional

import httpx
import websockets

from utilities import normalize

logger = logging.getLogger(__name__)

Listener = Callable[[dict], None]


class ClientState(Enum):
    """Connection state of the push channel."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


class SettingsClient:
    """Live, normalized view of the server's settings document."""

    def __init__(
        self,
        base_url: str = "http://localhost:3333",
        reconnect_delay: float = 3.0,
        max_reconnect_delay: float = 60.0,
        resync_interval: float = 30.0,
        timeout: float = 10.0,
        connect: Optional[Callable[[str], Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: HTTP root of the settings server.
            reconnect_delay: First wait after the push channel drops, in seconds.
            max_reconnect_delay: Upper bound for the doubling reconnect wait.
            resync_interval: Seconds between HTTP re-pulls of the document.
            timeout: HTTP request timeout in seconds.
            connect: Websocket opener, ``websockets.connect`` by default.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.ws_url = _websocket_url(self.base_url)
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.resync_interval = resync_interval
        self.timeout = timeout
        self._connect = connect or websockets.connect
        self._transport = transport

        self.state = ClientState.DISCONNECTED
        self.settings = normalize(None)
        self._listeners: list[Listener] = []
        self._stop = asyncio.Event()
        self._ws = None

    def on_change(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def apply(self, doc: Any) -> dict:
        """Normalize a received document and publish it if it differs."""
        normalized = normalize(doc)
        if normalized != self.settings:
            self.settings = normalized
            for listener in list(self._listeners):
                try:
                    listener(normalized)
                except Exception:
                    logger.exception("Settings listener failed")
        return self.settings

    # ==================== HTTP ====================

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def reload(self) -> dict:
        """Pull the current document; on failure keep the last known one."""
        try:
            async with self._http() as client:
                response = await client.get("/api/settings")
                response.raise_for_status()
                return self.apply(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Settings re-pull failed: %s", e)
            return self.settings

    async def update(self, doc: dict) -> dict:
        """Submit a full replacement document.

        Raises:
            httpx.HTTPStatusError: The server rejected the document.
        """
        async with self._http() as client:
            response = await client.post("/api/settings", json=doc)
            response.raise_for_status()
            return self.apply(response.json())

    # ==================== Push channel ====================

    async def run(self) -> None:
        """Follow the server until ``close()`` is called."""
        self._stop.clear()
        resync = asyncio.create_task(self._resync_loop())
        try:
            await self._stream_loop()
        finally:
            resync.cancel()
            await asyncio.gather(resync, return_exceptions=True)

    async def close(self) -> None:
        self._stop.set()
        ws = self._ws
        if ws is not None:
            await ws.close()

    def _set_state(self, state: ClientState) -> None:
        if state is not self.state:
            logger.debug("Push channel %s -> %s", self.state.value, state.value)
            self.state = state

    async def _stream_loop(self) -> None:
        delay = self.reconnect_delay
        while not self._stop.is_set():
            self._set_state(ClientState.CONNECTING)
            try:
                async with self._connect(self.ws_url) as ws:
                    self._ws = ws
                    self._set_state(ClientState.SUBSCRIBED)
                    delay = self.reconnect_delay
                    async for message in ws:
                        self._handle_message(message)
            except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
                logger.warning("Push channel error: %s", e)
            finally:
                self._ws = None

            self._set_state(ClientState.DISCONNECTED)
            if await self._wait_stopped(delay):
                break
            delay = min(delay * 2, self.max_reconnect_delay)

    def _handle_message(self, message: Any) -> None:
        try:
            payload = json.loads(message)
        except (TypeError, ValueError):
            logger.debug("Ignoring malformed push payload")
            return
        if isinstance(payload, dict) and payload.get("type") == "settings":
            self.apply(payload.get("settings"))

    async def _resync_loop(self) -> None:
        while not await self._wait_stopped(self.resync_interval):
            await self.reload()

    async def _wait_stopped(self, seconds: float) -> bool:
        try:
            await asyncio.wait_for(self._stop.wait(), seconds)
        except asyncio.TimeoutError:
            return False
        return True


def _websocket_url(base_url: str) -> str:
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://"):] + "/ws"
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://"):] + "/ws"
    return base_url + "/ws"
