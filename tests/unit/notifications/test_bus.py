# === MODULE PURPOSE ===
# Tests for NotificationBus.
# Verifies per-user delivery, ordering, backpressure and lifecycle.

import asyncio
import threading
import uuid

import pytest

from tradejournal.notifications.bus import BusClosedError, NotificationBus
from tradejournal.notifications.mailbox import Mailbox
from tradejournal.notifications.models import NotificationType


class StubConnection:
    """Minimal registrant: the bus only touches user_id, connection_id and mailbox."""

    def __init__(self, user_id: str, capacity: int = 256):
        self.user_id = user_id
        self.connection_id = uuid.uuid4().hex[:12]
        self.mailbox = Mailbox(capacity)


def drain(mailbox: Mailbox) -> list:
    items = []
    while mailbox.qsize():
        items.append(mailbox._queue.get_nowait())
    return items


async def flush(bus: NotificationBus) -> None:
    """Wait until every event queued so far has been applied."""
    barrier = StubConnection("flush-barrier")
    await bus.register(barrier)
    await bus.unregister(barrier)


USER_A = "11111111-1111-1111-1111-111111111111"
USER_B = "22222222-2222-2222-2222-222222222222"


class TestNotificationBusDelivery:
    """Tests for publish() routing."""

    @pytest.mark.asyncio
    async def test_delivers_to_every_connection_of_user(self):
        """Test one publish reaches all of the user's connections."""
        bus = NotificationBus()
        await bus.start()
        try:
            first, second = StubConnection(USER_A), StubConnection(USER_A)
            await bus.register(first)
            await bus.register(second)

            notification = bus.publish(
                NotificationType.TRADE_CREATED, USER_A, "Trade Created", "AAPL", {"id": "t1"}
            )
            await flush(bus)

            assert notification is not None
            assert drain(first.mailbox) == [notification]
            assert drain(second.mailbox) == [notification]
        finally:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_other_users_receive_nothing(self):
        """Test notifications never cross users."""
        bus = NotificationBus()
        await bus.start()
        try:
            alice, bob = StubConnection(USER_A), StubConnection(USER_B)
            await bus.register(alice)
            await bus.register(bob)

            bus.publish(NotificationType.INFO, USER_A, "Hi", "only for A")
            await flush(bus)

            assert len(drain(alice.mailbox)) == 1
            assert drain(bob.mailbox) == []
        finally:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_publish_without_connections_is_discarded(self):
        """Test publishing to an offline user is a silent no-op."""
        bus = NotificationBus()
        await bus.start()
        try:
            assert bus.publish(NotificationType.INFO, USER_A, "Hi", "nobody home") is not None
            await flush(bus)
            assert bus.get_stats()["total_clients"] == 0
            assert bus.queued_notifications == 0
        finally:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_per_user_order_follows_publish_order(self):
        """Test a connection observes notifications in publish order."""
        bus = NotificationBus()
        await bus.start()
        try:
            connection = StubConnection(USER_A)
            await bus.register(connection)

            published = [
                bus.publish(NotificationType.INFO, USER_A, f"n{i}", "msg") for i in range(20)
            ]
            await flush(bus)

            assert [n.title for n in drain(connection.mailbox)] == [
                n.title for n in published
            ]
        finally:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_publish_accepts_uuid_user_id(self):
        """Test UUID and string identities address the same user."""
        bus = NotificationBus()
        await bus.start()
        try:
            connection = StubConnection(USER_A)
            await bus.register(connection)

            bus.publish(NotificationType.INFO, uuid.UUID(USER_A), "Hi", "uuid target")
            await flush(bus)

            assert len(drain(connection.mailbox)) == 1
        finally:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_publish_invalid_type_returns_none(self):
        """Test an unknown notification type is rejected without raising."""
        bus = NotificationBus()
        await bus.start()
        try:
            assert bus.publish("not.a.type", USER_A, "Hi", "msg") is None
        finally:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_publish_threadsafe_from_worker_thread(self):
        """Test publishing from another thread is marshalled onto the bus loop."""
        bus = NotificationBus()
        await bus.start()
        try:
            connection = StubConnection(USER_A)
            await bus.register(connection)

            thread = threading.Thread(
                target=bus.publish_threadsafe,
                args=(NotificationType.SUCCESS, USER_A, "Done", "from thread"),
            )
            thread.start()
            thread.join()

            for _ in range(100):
                await asyncio.sleep(0.01)
                if connection.mailbox.qsize():
                    break
            assert [n.title for n in drain(connection.mailbox)] == ["Done"]
        finally:
            await bus.stop()


class TestNotificationBusBackpressure:
    """Tests for drop and eviction behaviour."""

    @pytest.mark.asyncio
    async def test_full_broadcast_queue_drops_without_blocking(self):
        """Test publish drops once broadcast_capacity notifications are pending."""
        bus = NotificationBus(broadcast_capacity=2)
        await bus.start()
        try:
            # No await in between: the loop cannot drain
            results = [
                bus.publish(NotificationType.INFO, USER_A, f"n{i}", "msg") for i in range(3)
            ]

            assert results[0] is not None
            assert results[1] is not None
            assert results[2] is None
            assert bus.get_counters()["dropped"] == 1

            await flush(bus)
            assert bus.queued_notifications == 0
        finally:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_full_mailbox_evicts_only_that_connection(self):
        """Test a slow connection is removed while its sibling keeps receiving."""
        bus = NotificationBus()
        await bus.start()
        try:
            slow = StubConnection(USER_A, capacity=2)
            fast = StubConnection(USER_A, capacity=10)
            await bus.register(slow)
            await bus.register(fast)

            for i in range(3):
                bus.publish(NotificationType.INFO, USER_A, f"n{i}", "msg")
            await flush(bus)

            assert slow.mailbox.closed is True
            assert slow not in bus.connections_for(USER_A)
            assert fast in bus.connections_for(USER_A)
            assert len(drain(fast.mailbox)) == 3
            assert bus.get_stats()["total_clients"] == 1
            assert bus.get_counters()["evicted"] == 1
        finally:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_evicted_connection_unregister_is_noop(self):
        """Test the connection's own later unregister does not double-close."""
        bus = NotificationBus()
        await bus.start()
        try:
            slow = StubConnection(USER_A, capacity=1)
            await bus.register(slow)
            bus.publish(NotificationType.INFO, USER_A, "n0", "msg")
            bus.publish(NotificationType.INFO, USER_A, "n1", "msg")
            await flush(bus)
            assert slow.mailbox.closed is True

            await bus.unregister(slow)

            assert bus.get_stats()["total_users"] == 0
        finally:
            await bus.stop()


class TestNotificationBusRegistry:
    """Tests for register/unregister and stats."""

    @pytest.mark.asyncio
    async def test_stats_count_users_and_clients(self):
        """Test total_users and total_clients track the registry."""
        bus = NotificationBus()
        await bus.start()
        try:
            await bus.register(StubConnection(USER_A))
            await bus.register(StubConnection(USER_A))
            await bus.register(StubConnection(USER_B))

            stats = bus.get_stats()
            assert stats["total_users"] == 2
            assert stats["total_clients"] == 3
            assert "timestamp" in stats
        finally:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_unregister_removes_empty_user(self):
        """Test a user with no remaining connections disappears from the registry."""
        bus = NotificationBus()
        await bus.start()
        try:
            connection = StubConnection(USER_A)
            await bus.register(connection)
            await bus.unregister(connection)

            assert bus.get_stats()["total_users"] == 0
            assert bus.connections_for(USER_A) == frozenset()
            assert connection.mailbox.closed is True
        finally:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_unregister_twice_closes_mailbox_once(self):
        """Test unregister is idempotent."""
        bus = NotificationBus()
        await bus.start()
        try:
            connection = StubConnection(USER_A)
            await bus.register(connection)
            await bus.unregister(connection)
            await bus.unregister(connection)

            # Already closed by the first unregister
            assert connection.mailbox.close() is False
            assert bus.get_stats()["total_clients"] == 0
        finally:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_unregister_unknown_connection_is_noop(self):
        """Test unregistering a never-registered connection changes nothing."""
        bus = NotificationBus()
        await bus.start()
        try:
            registered = StubConnection(USER_A)
            await bus.register(registered)

            await bus.unregister(StubConnection(USER_A))

            assert bus.get_stats()["total_clients"] == 1
            assert registered.mailbox.closed is False
        finally:
            await bus.stop()

    @pytest.mark.asyncio
    async def test_register_publish_unregister_sequence(self):
        """Test a notification published while registered is delivered before removal."""
        bus = NotificationBus()
        await bus.start()
        try:
            connection = StubConnection(USER_A)
            await bus.register(connection)
            bus.publish(NotificationType.INFO, USER_A, "n0", "msg")
            await bus.unregister(connection)

            assert [n.title for n in drain(connection.mailbox)] == ["n0"]
        finally:
            await bus.stop()


class TestNotificationBusLifecycle:
    """Tests for start/stop."""

    @pytest.mark.asyncio
    async def test_register_before_start_raises(self):
        """Test register fails fast when the bus is not running."""
        bus = NotificationBus()
        with pytest.raises(BusClosedError):
            await bus.register(StubConnection(USER_A))

    @pytest.mark.asyncio
    async def test_publish_before_start_drops(self):
        """Test publish on a stopped bus returns None."""
        bus = NotificationBus()
        assert bus.publish(NotificationType.INFO, USER_A, "Hi", "msg") is None

    @pytest.mark.asyncio
    async def test_stop_closes_all_mailboxes(self):
        """Test stop releases every registered connection."""
        bus = NotificationBus()
        await bus.start()
        connections = [StubConnection(USER_A), StubConnection(USER_B)]
        for connection in connections:
            await bus.register(connection)

        await bus.stop()

        assert bus.is_running is False
        assert all(c.mailbox.closed for c in connections)
        assert bus.get_stats()["total_clients"] == 0

    @pytest.mark.asyncio
    async def test_register_pending_at_stop_raises(self):
        """Test a registration still queued when the bus stops fails."""
        bus = NotificationBus()
        await bus.start()
        connection = StubConnection(USER_A)

        task = asyncio.create_task(bus.register(connection))
        await asyncio.sleep(0)
        await bus.stop()

        with pytest.raises(BusClosedError):
            await task
        assert connection.mailbox.closed is True
        assert bus.connections_for(USER_A) == frozenset()

    @pytest.mark.asyncio
    async def test_unregister_after_stop_closes_mailbox(self):
        """Test unregister still closes the mailbox once the bus is stopped."""
        bus = NotificationBus()
        connection = StubConnection(USER_A)

        await bus.unregister(connection)

        assert connection.mailbox.closed is True

    def test_invalid_capacity(self):
        """Test broadcast_capacity must be positive."""
        with pytest.raises(ValueError):
            NotificationBus(broadcast_capacity=0)
