# === MODULE PURPOSE ===
# Real-time notification fan-out to WebSocket push connections.

# === KEY CONCEPTS ===
# - NotificationBus: Single-task registry of user -> live connections
# - Connection: One push socket with outbound and inbound pumps
# - PushServer: Authenticated WebSocket endpoint creating Connections

from tradejournal.notifications.bus import BusClosedError, NotificationBus
from tradejournal.notifications.connection import Connection
from tradejournal.notifications.mailbox import Mailbox, MailboxClosed
from tradejournal.notifications.models import Notification, NotificationType
from tradejournal.notifications.transport import (
    PushTransport,
    TransportClosed,
    WebsocketsTransport,
)

__all__ = [
    "BusClosedError",
    "Connection",
    "Mailbox",
    "MailboxClosed",
    "Notification",
    "NotificationBus",
    "NotificationType",
    "PushTransport",
    "TransportClosed",
    "WebsocketsTransport",
]
