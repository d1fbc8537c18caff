# === MODULE PURPOSE ===
# One long-lived push connection bound to one user.
# Bridges bus notifications to the wire via two concurrent pumps.

# === DEPENDENCIES ===
# - bus: Registration and teardown go through NotificationBus
# - mailbox: Bounded outbound queue filled by the bus
# - transport: Socket abstraction (send, ping, receive, close)

# === KEY CONCEPTS ===
# - Outbound pump: mailbox item | heartbeat due | mailbox closed
# - Inbound pump: keeps the liveness window fresh, discards payloads
# - Teardown: exactly one unregister and one transport close, whichever pump exits first

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any

from tradejournal.notifications.mailbox import DEFAULT_MAILBOX_CAPACITY, Mailbox, MailboxClosed
from tradejournal.notifications.models import Notification
from tradejournal.notifications.transport import (
    CLOSE_MESSAGE_TOO_BIG,
    CLOSE_NORMAL,
    PushTransport,
    TransportClosed,
)

if TYPE_CHECKING:
    from tradejournal.common.config import Config
    from tradejournal.notifications.bus import NotificationBus

logger = logging.getLogger(__name__)

# Time allowed to write a frame to the peer
DEFAULT_WRITE_TIMEOUT = 10.0

# Time allowed between inbound frames (including pong acknowledgements)
DEFAULT_PONG_TIMEOUT = 60.0

# Maximum inbound frame size; clients have nothing meaningful to send
DEFAULT_MAX_MESSAGE_SIZE = 512


class Connection:
    """
    A push connection for exactly one user.

    Lifecycle:
        1. Push server accepts an authenticated upgrade and builds a Connection
        2. run(): register with the bus, start both pumps
        3. Either pump exits (peer gone, write failure, liveness timeout,
           mailbox closed by the bus)
        4. Teardown: unregister + close transport, other pump cancelled

    Usage:
        connection = Connection(user_id, WebsocketsTransport(ws), bus)
        await connection.run()  # returns when the connection is finished
    """

    def __init__(
        self,
        user_id: Any,
        transport: PushTransport,
        bus: NotificationBus,
        *,
        mailbox_capacity: int = DEFAULT_MAILBOX_CAPACITY,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        pong_timeout: float = DEFAULT_PONG_TIMEOUT,
        ping_interval: float | None = None,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ):
        """
        Initialize connection.

        Args:
            user_id: Authenticated user identity (immutable).
            transport: Underlying push socket.
            bus: Notification bus this connection registers with.
            mailbox_capacity: Outbound queue size before the bus evicts us.
            write_timeout: Deadline for each outbound frame, in seconds.
            pong_timeout: Liveness window for inbound activity, in seconds.
            ping_interval: Heartbeat period. Defaults to half of pong_timeout.
            max_message_size: Largest inbound frame accepted, in bytes.

        Raises:
            ValueError: If ping_interval is not well below pong_timeout.
        """
        if ping_interval is None:
            ping_interval = pong_timeout / 2
        if ping_interval <= 0 or ping_interval >= pong_timeout * 2 / 3:
            raise ValueError(
                f"ping_interval ({ping_interval}s) must be positive and below "
                f"two thirds of pong_timeout ({pong_timeout}s)"
            )

        self.user_id = str(user_id)
        self.connection_id = uuid.uuid4().hex[:12]
        self.mailbox: Mailbox[Notification] = Mailbox(mailbox_capacity)

        self._transport = transport
        self._bus = bus
        self._write_timeout = write_timeout
        self._pong_timeout = pong_timeout
        self._ping_interval = ping_interval
        self._max_message_size = max_message_size

        self._last_activity = 0.0
        self._closing = False
        self._transport_closed = False
        self._sent = 0

        transport.set_activity_callback(self.mark_activity)

    @classmethod
    def from_config(
        cls,
        user_id: Any,
        transport: PushTransport,
        bus: NotificationBus,
        config: Config,
    ) -> Connection:
        """Create a connection using the notifications.* config section."""
        ping_interval = config.get_float("notifications.ping_interval", 0.0)
        return cls(
            user_id,
            transport,
            bus,
            mailbox_capacity=config.get_int(
                "notifications.mailbox_capacity", DEFAULT_MAILBOX_CAPACITY
            ),
            write_timeout=config.get_float(
                "notifications.write_timeout", DEFAULT_WRITE_TIMEOUT
            ),
            pong_timeout=config.get_float(
                "notifications.pong_timeout", DEFAULT_PONG_TIMEOUT
            ),
            ping_interval=ping_interval or None,
            max_message_size=config.get_int(
                "notifications.max_message_size", DEFAULT_MAX_MESSAGE_SIZE
            ),
        )

    @property
    def is_closed(self) -> bool:
        return self._closing

    @property
    def sent_count(self) -> int:
        """Notifications written to the transport so far."""
        return self._sent

    def __repr__(self) -> str:
        return f"Connection(id={self.connection_id}, user_id={self.user_id})"

    def mark_activity(self) -> None:
        """Refresh the liveness window."""
        self._last_activity = asyncio.get_running_loop().time()

    async def run(self) -> None:
        """
        Register with the bus and pump until the connection ends.

        Raises:
            BusClosedError: If the bus is not running (transport is closed first).
        """
        try:
            await self._bus.register(self)
        except Exception:
            self._closing = True
            await self._close_transport(CLOSE_NORMAL)
            raise

        logger.info(
            f"Push connection {self.connection_id} established for user {self.user_id} "
            f"from {self._transport.remote}"
        )
        self.mark_activity()

        write_task = asyncio.create_task(
            self._write_pump(), name=f"push-write-{self.connection_id}"
        )
        read_task = asyncio.create_task(
            self._read_pump(), name=f"push-read-{self.connection_id}"
        )
        try:
            await asyncio.wait(
                {write_task, read_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            await self.close()
            for task in (write_task, read_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(write_task, read_task, return_exceptions=True)
            logger.info(
                f"Push connection {self.connection_id} closed for user {self.user_id} "
                f"({self._sent} notifications sent)"
            )

    async def close(self) -> None:
        """
        Tear the connection down.

        Safe to call any number of times from either pump or from outside:
        the bus sees one unregister and the transport one close.
        """
        if self._closing:
            return
        self._closing = True

        try:
            await self._bus.unregister(self)
        except Exception as e:
            logger.error(f"Failed to unregister connection {self.connection_id}: {e}")
            self.mailbox.close()

        await self._close_transport(CLOSE_NORMAL)

    async def _close_transport(self, code: int, reason: str = "") -> None:
        if self._transport_closed:
            return
        self._transport_closed = True

        try:
            await asyncio.wait_for(
                self._transport.close(code, reason),
                timeout=self._write_timeout,
            )
        except Exception as e:
            logger.debug(f"Error closing transport for {self.connection_id}: {e}")

    # ==================== Pumps ====================

    async def _write_pump(self) -> None:
        """Deliver mailbox notifications and heartbeats until failure or close."""
        loop = asyncio.get_running_loop()
        next_ping_at = loop.time() + self._ping_interval

        while True:
            try:
                notification = await self.mailbox.receive(
                    timeout=max(0.0, next_ping_at - loop.time())
                )
            except MailboxClosed:
                # The bus closed the mailbox
                await self._close_transport(CLOSE_NORMAL)
                return

            try:
                if notification is None:
                    await asyncio.wait_for(
                        self._transport.ping(), timeout=self._write_timeout
                    )
                    next_ping_at = loop.time() + self._ping_interval
                    continue

                try:
                    frame = notification.to_json()
                except (TypeError, ValueError) as e:
                    logger.error(f"Failed to serialize notification {notification.id}: {e}")
                    continue

                await asyncio.wait_for(
                    self._transport.send_text(frame), timeout=self._write_timeout
                )
                self._sent += 1

            except asyncio.TimeoutError:
                logger.warning(
                    f"Write deadline exceeded for connection {self.connection_id} "
                    f"(user_id={self.user_id})"
                )
                return
            except TransportClosed:
                logger.debug(f"Transport closed during write for {self.connection_id}")
                return
            except Exception as e:
                logger.error(
                    f"Failed to write to connection {self.connection_id} "
                    f"(user_id={self.user_id}): {e}"
                )
                return

    async def _read_pump(self) -> None:
        """Enforce inbound limits and liveness; client payloads are ignored."""
        loop = asyncio.get_running_loop()

        while True:
            remaining = self._last_activity + self._pong_timeout - loop.time()
            if remaining <= 0:
                logger.info(
                    f"Liveness timeout for connection {self.connection_id} "
                    f"(user_id={self.user_id})"
                )
                return

            try:
                frame = await asyncio.wait_for(
                    self._transport.receive(), timeout=remaining
                )
            except asyncio.TimeoutError:
                # A pong may have refreshed the window meanwhile
                continue
            except TransportClosed:
                logger.debug(f"Peer closed connection {self.connection_id}")
                return
            except Exception as e:
                logger.error(
                    f"Read error on connection {self.connection_id} "
                    f"(user_id={self.user_id}): {e}"
                )
                return

            self.mark_activity()

            size = len(frame.encode("utf-8")) if isinstance(frame, str) else len(frame)
            if size > self._max_message_size:
                logger.warning(
                    f"Inbound frame of {size} bytes exceeds limit "
                    f"{self._max_message_size} on connection {self.connection_id}"
                )
                await self._close_transport(CLOSE_MESSAGE_TOO_BIG, "message too big")
                return
