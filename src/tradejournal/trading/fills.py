# === MODULE PURPOSE ===
# Broker execution records (fills) and their parsing from CSV rows.

# === KEY CONCEPTS ===
# - Fill: One immutable buy or sell execution
# - Row layout: Date/Time, Account, B/S, Qty, Symbol, Price, Route, Liq,
#   Comm, Ecn Fee, SEC, TAF, NSCC, Clr, Misc, Order Id, Fill Id, ...
# - Malformed rows (short, trailer, header, bad timestamp) are skipped, not fatal
# - Bad numeric fields contribute zero instead of discarding the fill

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)

FILL_TIME_FORMAT = "%m/%d/%Y %H:%M:%S"

# Minimum columns: Date/Time, Account, Side, Qty, Symbol, Price, Route
MIN_FILL_FIELDS = 7

# Column indices
COL_DATETIME = 0
COL_ACCOUNT = 1
COL_SIDE = 2
COL_QTY = 3
COL_SYMBOL = 4
COL_PRICE = 5
COL_ROUTE = 6
COL_LIQUIDITY = 7
COL_ORDER_ID = 15
COL_FILL_ID = 16

# Comm, Ecn Fee, SEC, TAF, NSCC, Clr, Misc
FEE_COLUMNS = range(8, 15)

PAGE_TRAILER_PREFIX = "Page "


class FillSide(str, Enum):
    """Execution side codes."""

    BUY = "B"
    SELL = "S"
    SHORT_SELL = "T"  # Short sale, treated as a sell

    @property
    def is_buy(self) -> bool:
        return self is FillSide.BUY


@dataclass(frozen=True)
class Fill:
    """A single broker execution."""

    executed_at: datetime
    account: str
    side: FillSide
    quantity: float
    symbol: str
    price: float
    fees: float = 0.0
    route: str = ""
    liquidity: str = ""
    order_id: str = ""
    fill_id: str = ""

    @property
    def notional(self) -> float:
        return self.quantity * self.price


def parse_number(value: str | None) -> float:
    """Parse a numeric field; blank or invalid values count as zero."""
    if value is None:
        return 0.0
    text = value.strip().replace(",", "")
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        return 0.0


def is_page_trailer(row: Sequence[str]) -> bool:
    """Check for a 'Page X/Y' pagination trailer row."""
    return bool(row) and row[0].strip().startswith(PAGE_TRAILER_PREFIX)


def parse_fill_row(row: Sequence[str]) -> Fill | None:
    """
    Parse one CSV row into a Fill.

    Args:
        row: Positional fields as read from the broker CSV.

    Returns:
        Fill, or None if the row is malformed (too short, trailer/header,
        unknown side, missing symbol or unparsable timestamp).
    """
    if len(row) < MIN_FILL_FIELDS or is_page_trailer(row):
        return None

    try:
        executed_at = datetime.strptime(row[COL_DATETIME].strip(), FILL_TIME_FORMAT)
    except ValueError:
        return None

    try:
        side = FillSide(row[COL_SIDE].strip().upper())
    except ValueError:
        return None

    symbol = row[COL_SYMBOL].strip()
    if not symbol:
        return None

    def field_at(index: int) -> str:
        return row[index].strip() if len(row) > index else ""

    return Fill(
        executed_at=executed_at,
        account=row[COL_ACCOUNT].strip(),
        side=side,
        quantity=parse_number(row[COL_QTY]),
        symbol=symbol,
        price=parse_number(row[COL_PRICE]),
        fees=sum(parse_number(row[i]) for i in FEE_COLUMNS if i < len(row)),
        route=field_at(COL_ROUTE),
        liquidity=field_at(COL_LIQUIDITY),
        order_id=field_at(COL_ORDER_ID),
        fill_id=field_at(COL_FILL_ID),
    )


def parse_fill_rows(rows: Iterable[Sequence[str]]) -> list[Fill]:
    """
    Parse CSV rows into fills, skipping malformed rows.

    Returns:
        Fills in input order.
    """
    fills: list[Fill] = []
    skipped = 0

    for row in rows:
        fill = parse_fill_row(row)
        if fill is None:
            skipped += 1
            continue
        fills.append(fill)

    if skipped:
        logger.debug(f"Skipped {skipped} malformed fill rows")
    return fills
