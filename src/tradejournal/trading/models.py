# === MODULE PURPOSE ===
# Trade data models.
# Reconstructed trades (from broker fills) and persisted trade rows.

# === KEY CONCEPTS ===
# - TradeDirection: LONG or SHORT
# - ReconstructedTrade: Position summary produced per reconstruction run, no identity
# - Trade: A stored trade row owned by a user

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TradeDirection(str, Enum):
    """Position direction."""

    LONG = "LONG"
    SHORT = "SHORT"


@dataclass(frozen=True)
class ReconstructedTrade:
    """
    A position rebuilt from a group of fills.

    Open positions have no exit_price, closed_at or pnl.
    """

    symbol: str
    direction: TradeDirection
    quantity: float
    entry_price: float
    opened_at: datetime
    fees: float = 0.0
    exit_price: float | None = None
    closed_at: datetime | None = None
    pnl: float | None = None

    @property
    def is_closed(self) -> bool:
        """Check if both the opening and closing side were captured."""
        return self.closed_at is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API response (absent values omitted)."""
        result: dict[str, Any] = {
            "symbol": self.symbol,
            "trade_type": self.direction.value,
            "quantity": self.quantity,
            "entry_price": self.entry_price,
            "fees": self.fees,
            "opened_at": self.opened_at.isoformat(),
        }
        if self.exit_price is not None:
            result["exit_price"] = self.exit_price
        if self.pnl is not None:
            result["pnl"] = self.pnl
        if self.closed_at is not None:
            result["closed_at"] = self.closed_at.isoformat()
        return result


@dataclass
class Trade:
    """A persisted trade belonging to one user."""

    id: str
    user_id: str
    symbol: str
    direction: TradeDirection
    quantity: float
    entry_price: float
    opened_at: datetime
    fees: float = 0.0
    exit_price: float | None = None
    closed_at: datetime | None = None
    pnl: float | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_row(cls, row: Any) -> Trade:
        """Create from a database row (asyncpg Record or mapping)."""
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            symbol=row["symbol"],
            direction=TradeDirection(row["trade_type"]),
            quantity=float(row["quantity"]),
            entry_price=float(row["entry_price"]),
            exit_price=_optional_float(row["exit_price"]),
            fees=float(row["fees"] or 0),
            pnl=_optional_float(row["pnl"]),
            opened_at=row["opened_at"],
            closed_at=row["closed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API response."""
        result: dict[str, Any] = {
            "id": self.id,
            "user_id": self.user_id,
            "symbol": self.symbol,
            "trade_type": self.direction.value,
            "quantity": self.quantity,
            "entry_price": self.entry_price,
            "fees": self.fees,
            "opened_at": self.opened_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.exit_price is not None:
            result["exit_price"] = self.exit_price
        if self.pnl is not None:
            result["pnl"] = self.pnl
        if self.closed_at is not None:
            result["closed_at"] = self.closed_at.isoformat()
        return result


def compute_pnl(
    direction: TradeDirection,
    entry_price: float,
    exit_price: float,
    quantity: float,
    fees: float = 0.0,
) -> float:
    """Realized P&L of a closed position, net of fees."""
    if direction is TradeDirection.LONG:
        return (exit_price - entry_price) * quantity - fees
    return (entry_price - exit_price) * quantity - fees


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)
