# === MODULE PURPOSE ===
# Transport interface between a Connection and the underlying push socket.

# === KEY CONCEPTS ===
# - PushTransport: What a Connection needs from a socket (send, ping, receive, close)
# - Activity callback: Invoked on inbound liveness signals the pumps can't see (pongs)
# - WebsocketsTransport: Adapter for a `websockets` server connection

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed

logger = logging.getLogger(__name__)

# WebSocket close codes used by the push server
CLOSE_NORMAL = 1000
CLOSE_POLICY_VIOLATION = 1008
CLOSE_MESSAGE_TOO_BIG = 1009

ActivityCallback = Callable[[], None]


class TransportClosed(Exception):
    """Raised when the peer has gone away or the socket is closed."""


class PushTransport(ABC):
    """
    Abstract push socket.

    Implementations raise TransportClosed (or any exception) from send/ping/
    receive once the socket is unusable; the Connection treats every error
    the same way and tears down.
    """

    def __init__(self) -> None:
        self._activity_callback: ActivityCallback | None = None

    def set_activity_callback(self, callback: ActivityCallback | None) -> None:
        """Register a hook called on inbound activity outside receive()."""
        self._activity_callback = callback

    def _notify_activity(self) -> None:
        if self._activity_callback is not None:
            self._activity_callback()

    @property
    def remote(self) -> str:
        """Human-readable peer address for logs."""
        return "unknown"

    @abstractmethod
    async def send_text(self, text: str) -> None:
        """Send one text frame."""
        ...

    @abstractmethod
    async def ping(self) -> None:
        """Send a liveness probe; the acknowledgement triggers the activity hook."""
        ...

    @abstractmethod
    async def receive(self) -> str | bytes:
        """Wait for the next inbound frame."""
        ...

    @abstractmethod
    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        """Send a close frame and release the socket. Must tolerate repeat calls."""
        ...


class WebsocketsTransport(PushTransport):
    """PushTransport backed by a `websockets` ServerConnection."""

    def __init__(self, websocket: ServerConnection):
        super().__init__()
        self._ws = websocket

    @property
    def remote(self) -> str:
        address = self._ws.remote_address
        if isinstance(address, tuple) and len(address) >= 2:
            return f"{address[0]}:{address[1]}"
        return str(address)

    async def send_text(self, text: str) -> None:
        try:
            await self._ws.send(text)
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e

    async def ping(self) -> None:
        try:
            pong_waiter = await self._ws.ping()
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e
        asyncio.ensure_future(pong_waiter).add_done_callback(self._on_pong)

    def _on_pong(self, future: asyncio.Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self._notify_activity()

    async def receive(self) -> str | bytes:
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        await self._ws.close(code=code, reason=reason)
