# === MODULE PURPOSE ===
# Process-wide notification bus.
# Multiplexes per-user notifications onto live push connections.

# === DEPENDENCIES ===
# - models: Notification built by publish()
# - connection: Connections registered by the push server

# === KEY CONCEPTS ===
# - Registry: user_id -> set of live Connections
# - Coordinating loop: the only task that mutates the registry
# - Event queue: register, unregister and publish events, processed in issue order
# - Backpressure: full broadcast queue drops the notification, full mailbox evicts the connection

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from tradejournal.notifications.models import Notification, NotificationType

if TYPE_CHECKING:
    from tradejournal.common.config import Config
    from tradejournal.notifications.connection import Connection

logger = logging.getLogger(__name__)

DEFAULT_BROADCAST_CAPACITY = 256


class BusClosedError(RuntimeError):
    """Raised when registering with a bus that is not running."""


class _EventKind(Enum):
    REGISTER = "register"
    UNREGISTER = "unregister"
    PUBLISH = "publish"


@dataclass
class _BusEvent:
    kind: _EventKind
    connection: Connection | None = None
    notification: Notification | None = None
    done: asyncio.Future | None = None


class NotificationBus:
    """
    Central notification bus.

    All registry mutation happens inside one coordinating task. Register,
    unregister and publish are queued as events and applied one at a time,
    so a publish can never observe a half-applied registration.

    Architecture:
        ┌───────────┐  publish()   ┌──────────────┐   offer()   ┌──────────┐
        │ Producers │ ───────────▶ │              │ ──────────▶ │ Mailbox  │──▶ Connection
        └───────────┘              │ Event Queue  │             └──────────┘
        ┌───────────┐  register()  │      ▼       │   offer()   ┌──────────┐
        │Push server│ ───────────▶ │ Coordinating │ ──────────▶ │ Mailbox  │──▶ Connection
        └───────────┘ unregister() │    Loop      │             └──────────┘
                                   └──────────────┘

    Usage:
        bus = NotificationBus()
        await bus.start()

        # Push server side
        await bus.register(connection)

        # Producer side (never blocks, never raises)
        bus.publish(NotificationType.TRADE_CREATED, user_id, "Trade Created", "AAPL long")

        await bus.stop()

    Guarantees:
        - Per-user delivery follows publish order
        - A slow connection is evicted, never waited on
        - get_stats() is safe from any thread and may be slightly stale
    """

    def __init__(self, broadcast_capacity: int = DEFAULT_BROADCAST_CAPACITY):
        """
        Initialize bus.

        Args:
            broadcast_capacity: Maximum notifications queued for the
                coordinating loop before publish() starts dropping.
        """
        if broadcast_capacity <= 0:
            raise ValueError("broadcast_capacity must be positive")

        self._broadcast_capacity = broadcast_capacity
        self._clients: dict[str, set[Connection]] = {}
        self._events: asyncio.Queue[_BusEvent] = asyncio.Queue()
        self._queued_notifications = 0
        self._running = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_task: asyncio.Task | None = None
        self._snapshot: tuple[int, int] = (0, 0)
        self._counters: dict[str, int] = {
            "published": 0,
            "dropped": 0,
            "delivered": 0,
            "evicted": 0,
        }

    @classmethod
    def from_config(cls, config: Config) -> NotificationBus:
        """Create bus from the notifications.* config section."""
        return cls(
            broadcast_capacity=config.get_int(
                "notifications.broadcast_capacity", DEFAULT_BROADCAST_CAPACITY
            )
        )

    @property
    def is_running(self) -> bool:
        """Check if the coordinating loop is running."""
        return self._running

    @property
    def broadcast_capacity(self) -> int:
        return self._broadcast_capacity

    @property
    def queued_notifications(self) -> int:
        """Notifications accepted by publish() but not yet delivered."""
        return self._queued_notifications

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Start the coordinating loop."""
        if self._running:
            logger.warning("Notification bus already running")
            return

        self._loop = asyncio.get_running_loop()
        self._running = True
        self._loop_task = asyncio.create_task(
            self._run(),
            name="notification_bus",
        )
        logger.info("Notification bus started")

    async def stop(self) -> None:
        """
        Stop the coordinating loop.

        Pending events are discarded, every registered mailbox is closed so
        the outbound pumps send a close frame and exit.
        """
        if not self._running:
            return

        logger.info("Stopping notification bus...")
        self._running = False

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        # Release callers still waiting on register/unregister
        while not self._events.empty():
            event = self._events.get_nowait()
            if event.kind is _EventKind.PUBLISH:
                continue
            if event.connection is not None:
                event.connection.mailbox.close()
            if event.done is None or event.done.done():
                continue
            if event.kind is _EventKind.REGISTER:
                event.done.set_exception(BusClosedError("Notification bus stopped"))
            else:
                event.done.set_result(None)
        self._queued_notifications = 0

        for clients in self._clients.values():
            for connection in clients:
                connection.mailbox.close()
        self._clients.clear()
        self._refresh_snapshot()

        logger.info("Notification bus stopped")

    # ==================== Operations ====================

    async def register(self, connection: Connection) -> None:
        """
        Add a connection to its user's set.

        Returns once the coordinating loop has applied the registration.

        Raises:
            BusClosedError: If the bus is not running.
        """
        if not self._running:
            raise BusClosedError("Notification bus is not running")

        done = asyncio.get_running_loop().create_future()
        self._events.put_nowait(
            _BusEvent(kind=_EventKind.REGISTER, connection=connection, done=done)
        )
        await done

    async def unregister(self, connection: Connection) -> None:
        """
        Remove a connection and close its mailbox exactly once.

        Idempotent: unregistering a connection that is no longer registered
        is a no-op. When the bus is not running the mailbox is closed
        directly.
        """
        if not self._running:
            connection.mailbox.close()
            return

        done = asyncio.get_running_loop().create_future()
        self._events.put_nowait(
            _BusEvent(kind=_EventKind.UNREGISTER, connection=connection, done=done)
        )
        await done

    def publish(
        self,
        notification_type: NotificationType | str,
        user_id: Any,
        title: str,
        message: str,
        data: Any = None,
    ) -> Notification | None:
        """
        Publish a notification to every live connection of a user.

        Never blocks and never raises. If the broadcast queue is at
        capacity the notification is dropped with a warning.

        Args:
            notification_type: Notification category.
            user_id: Target user identity.
            title: Short headline.
            message: Human-readable message.
            data: Optional JSON-serialisable payload.

        Returns:
            The queued notification, or None if it was dropped.
        """
        try:
            notification = Notification.create(
                notification_type, user_id, title, message, data
            )
        except ValueError as e:
            logger.error(f"Invalid notification type {notification_type!r}: {e}")
            return None

        if not self._running:
            self._counters["dropped"] += 1
            logger.warning(
                f"Notification bus not running, dropping {notification.type.value} "
                f"for user {notification.user_id}"
            )
            return None

        if self._queued_notifications >= self._broadcast_capacity:
            self._counters["dropped"] += 1
            logger.warning(
                f"Notification broadcast queue full, dropping {notification.type.value} "
                f"for user {notification.user_id}"
            )
            return None

        self._queued_notifications += 1
        self._events.put_nowait(
            _BusEvent(kind=_EventKind.PUBLISH, notification=notification)
        )
        self._counters["published"] += 1
        logger.debug(
            f"Notification published: {notification.type.value} for user {notification.user_id}"
        )
        return notification

    def publish_threadsafe(
        self,
        notification_type: NotificationType | str,
        user_id: Any,
        title: str,
        message: str,
        data: Any = None,
    ) -> None:
        """
        Publish from a thread other than the bus event loop.

        Schedules publish() on the bus loop and returns immediately.
        """
        loop = self._loop
        if loop is None or not self._running or loop.is_closed():
            logger.warning(
                f"Notification bus not running, dropping {notification_type} for user {user_id}"
            )
            return
        loop.call_soon_threadsafe(
            self.publish, notification_type, user_id, title, message, data
        )

    def get_stats(self) -> dict[str, Any]:
        """
        Get a snapshot of live connection counts.

        Returns:
            Dictionary with total_users, total_clients and timestamp.
        """
        total_users, total_clients = self._snapshot
        return {
            "total_users": total_users,
            "total_clients": total_clients,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def get_counters(self) -> dict[str, Any]:
        """Get cumulative publish/delivery counters for diagnostics."""
        return {
            "running": self._running,
            "queued": self._queued_notifications,
            **self._counters,
        }

    def connections_for(self, user_id: Any) -> frozenset[Connection]:
        """Get the live connections registered for a user."""
        return frozenset(self._clients.get(str(user_id), ()))

    # ==================== Coordinating Loop ====================

    async def _run(self) -> None:
        """Coordinating loop: apply one event at a time."""
        while self._running:
            try:
                event = await self._events.get()
            except asyncio.CancelledError:
                break

            try:
                if event.kind is _EventKind.REGISTER:
                    self._apply_register(event.connection)
                elif event.kind is _EventKind.UNREGISTER:
                    self._apply_unregister(event.connection)
                else:
                    self._queued_notifications -= 1
                    self._deliver(event.notification)
            except Exception as e:
                logger.error(f"Error in notification bus loop: {e}", exc_info=True)
            finally:
                if event.done is not None and not event.done.done():
                    event.done.set_result(True)

    def _apply_register(self, connection: Connection) -> None:
        clients = self._clients.setdefault(connection.user_id, set())
        clients.add(connection)
        self._refresh_snapshot()
        logger.info(
            f"Client registered: user_id={connection.user_id} "
            f"total_clients={self._snapshot[1]}"
        )

    def _apply_unregister(self, connection: Connection) -> None:
        if not self._remove(connection):
            logger.debug(f"Client {connection.connection_id} already unregistered")
            return
        logger.info(
            f"Client unregistered: user_id={connection.user_id} "
            f"total_clients={self._snapshot[1]}"
        )

    def _deliver(self, notification: Notification) -> None:
        """Hand a notification to every connection of its target user."""
        clients = self._clients.get(notification.user_id)
        if not clients:
            return

        for connection in list(clients):
            if connection.mailbox.offer(notification):
                self._counters["delivered"] += 1
                continue

            # Mailbox full: the connection is not draining fast enough
            self._remove(connection)
            self._counters["evicted"] += 1
            logger.warning(
                f"Mailbox full for client {connection.connection_id} "
                f"(user_id={connection.user_id}), disconnecting"
            )

    def _remove(self, connection: Connection) -> bool:
        """Remove a connection and close its mailbox. Returns False if absent."""
        clients = self._clients.get(connection.user_id)
        if not clients or connection not in clients:
            return False

        clients.discard(connection)
        connection.mailbox.close()
        if not clients:
            del self._clients[connection.user_id]
        self._refresh_snapshot()
        return True

    def _refresh_snapshot(self) -> None:
        self._snapshot = (
            len(self._clients),
            sum(len(clients) for clients in self._clients.values()),
        )
