# === MODULE PURPOSE ===
# WebSocket push server.
# Accepts authenticated upgrades and runs one Connection per socket.

# === DEPENDENCIES ===
# - websockets: asyncio WebSocket server with ping/pong support
# - auth: Resolves the upgrade token to a user identity
# - bus/connection: Registration and delivery

# === KEY CONCEPTS ===
# - Upgrade auth: ?token=<jwt> (or Authorization header); 401 before any Connection exists
# - Keepalive: the library's own pings are disabled, Connection drives heartbeats

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.http11 import Request, Response

from tradejournal.notifications.bus import BusClosedError, NotificationBus
from tradejournal.notifications.connection import DEFAULT_MAX_MESSAGE_SIZE, Connection
from tradejournal.notifications.transport import CLOSE_POLICY_VIOLATION, WebsocketsTransport
from tradejournal.web.auth import TokenAuthenticator, extract_bearer_token

if TYPE_CHECKING:
    from tradejournal.common.config import Config

logger = logging.getLogger(__name__)

PUSH_PATH = "/api/ws"


class PushServer:
    """
    WebSocket server feeding the notification bus.

    Usage:
        server = PushServer(bus, authenticator, host="0.0.0.0", port=9001)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(
        self,
        bus: NotificationBus,
        authenticator: TokenAuthenticator,
        host: str = "0.0.0.0",
        port: int = 9001,
        connection_options: dict[str, Any] | None = None,
    ):
        """
        Initialize push server.

        Args:
            bus: Running notification bus.
            authenticator: Token resolver for upgrade requests.
            host: Bind host.
            port: Bind port.
            connection_options: Keyword arguments forwarded to Connection
                (mailbox_capacity, write_timeout, pong_timeout, ...).
        """
        self._bus = bus
        self._authenticator = authenticator
        self._host = host
        self._port = port
        self._connection_options = dict(connection_options or {})
        self._server: Server | None = None
        self._connections: set[Connection] = set()

    @classmethod
    def from_config(
        cls,
        bus: NotificationBus,
        authenticator: TokenAuthenticator,
        config: Config,
        host: str,
        port: int,
    ) -> PushServer:
        """Create server with Connection settings from notifications.*."""
        options: dict[str, Any] = {
            "mailbox_capacity": config.get_int("notifications.mailbox_capacity", 256),
            "write_timeout": config.get_float("notifications.write_timeout", 10.0),
            "pong_timeout": config.get_float("notifications.pong_timeout", 60.0),
            "max_message_size": config.get_int(
                "notifications.max_message_size", DEFAULT_MAX_MESSAGE_SIZE
            ),
        }
        ping_interval = config.get_float("notifications.ping_interval", 0.0)
        if ping_interval:
            options["ping_interval"] = ping_interval
        return cls(bus, authenticator, host=host, port=port, connection_options=options)

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    @property
    def bound_port(self) -> int | None:
        """Actual listening port (useful when started with port 0)."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    async def start(self) -> None:
        """Start listening for push connections."""
        if self._server is not None:
            return

        max_size = self._connection_options.get(
            "max_message_size", DEFAULT_MAX_MESSAGE_SIZE
        )
        self._server = await serve(
            self._handle,
            self._host,
            self._port,
            process_request=self._authenticate,
            max_size=max_size,
            ping_interval=None,
            ping_timeout=None,
        )
        logger.info(f"Push server listening on ws://{self._host}:{self._port}{PUSH_PATH}")

    async def stop(self) -> None:
        """Stop accepting connections and close the open ones."""
        if self._server is None:
            return

        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("Push server stopped")

    def resolve_user(self, request: Request) -> str | None:
        """Resolve the user identity of an upgrade request."""
        query = parse_qs(urlparse(request.path).query)
        token = (query.get("token") or [None])[0]
        if not token:
            token = extract_bearer_token(request.headers.get("Authorization"))
        return self._authenticator.resolve(token)

    def _authenticate(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        """Reject unknown paths and unauthenticated upgrades before the handshake."""
        if urlparse(request.path).path != PUSH_PATH:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")

        user_id = self.resolve_user(request)
        if user_id is None:
            logger.warning(f"Rejected push upgrade from {connection.remote_address}: unauthorized")
            return connection.respond(HTTPStatus.UNAUTHORIZED, "Unauthorized\n")

        connection.user_id = user_id
        return None

    async def _handle(self, websocket: ServerConnection) -> None:
        user_id = getattr(websocket, "user_id", None)
        if user_id is None:
            await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="unauthorized")
            return

        connection = Connection(
            user_id,
            WebsocketsTransport(websocket),
            self._bus,
            **self._connection_options,
        )
        self._connections.add(connection)
        try:
            await connection.run()
        except BusClosedError:
            logger.error(f"Notification bus unavailable, dropped push connection for {user_id}")
        finally:
            self._connections.discard(connection)
