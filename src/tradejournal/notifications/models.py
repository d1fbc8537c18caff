# === MODULE PURPOSE ===
# Notification message model delivered to push connections.

# === KEY CONCEPTS ===
# - Notification: Immutable event addressed to exactly one user
# - NotificationType: Enumerated event categories shared with the frontend
# - Wire format: One JSON object per text frame, stable key order

from __future__ import annotations

import dataclasses
import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


class NotificationType(str, Enum):
    """Notification categories understood by the web client."""

    TRADE_CREATED = "trade.created"
    TRADE_UPDATED = "trade.updated"
    TRADE_DELETED = "trade.deleted"
    JOURNAL_CREATED = "journal.created"
    JOURNAL_UPDATED = "journal.updated"
    CSV_IMPORT = "csv.import"
    ERROR = "error"
    INFO = "info"
    SUCCESS = "success"


@dataclass(frozen=True)
class Notification:
    """
    A single notification for one user.

    Built by NotificationBus.publish() and owned by the bus until it is
    handed to a connection mailbox or dropped. Never persisted.

    Fields:
        id: Unique identifier (uuid4)
        type: Notification category
        user_id: Target user identity (string form)
        title: Short headline
        message: Human-readable message
        data: Optional JSON-serialisable payload, opaque to the bus
        timestamp: Creation time (UTC)
    """

    id: str
    type: NotificationType
    user_id: str
    title: str
    message: str
    data: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(
        cls,
        notification_type: NotificationType | str,
        user_id: Any,
        title: str,
        message: str,
        data: Any = None,
    ) -> Notification:
        """Build a notification with a fresh id and timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            type=NotificationType(notification_type),
            user_id=str(user_id),
            title=title,
            message=message,
            data=data,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary (data omitted when absent)."""
        result: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
        }
        if self.data is not None:
            result["data"] = self.data
        result["timestamp"] = self.timestamp.isoformat()
        return result

    def to_json(self) -> str:
        """
        Serialize to a JSON text frame.

        Raises:
            TypeError: If the payload contains values that cannot be encoded.
        """
        return json.dumps(self.to_dict(), default=_json_default)


def _json_default(value: Any) -> Any:
    """Encode payload values that json does not handle natively."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        to_dict = getattr(value, "to_dict", None)
        if callable(to_dict):
            return to_dict()
        return dataclasses.asdict(value)
    if isinstance(value, (set, frozenset)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
