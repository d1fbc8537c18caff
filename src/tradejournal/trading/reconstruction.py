# === MODULE PURPOSE ===
# Rebuilds position-level trades from an unordered list of broker fills.

# === DEPENDENCIES ===
# - fills: Fill records and CSV row parsing
# - models: ReconstructedTrade output

# === KEY CONCEPTS ===
# - Trade key: (symbol, calendar day of execution)
# - Side totals: quantity and quantity-weighted average price per side
# - Direction: whichever side traded first opens the position
# - Open positions: only one side present in the group

# === KNOWN LIMITATION ===
# Grouping is per calendar day, so a position held overnight becomes two
# separate open trades (one per day) rather than one round trip.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Sequence

from tradejournal.trading.fills import Fill, parse_fill_rows
from tradejournal.trading.models import ReconstructedTrade, TradeDirection, compute_pnl

logger = logging.getLogger(__name__)


@dataclass
class _SideTotals:
    """Aggregates for one side (buys or sells) of a trade group."""

    quantity: float = 0.0
    notional: float = 0.0
    first_at: datetime | None = None
    last_at: datetime | None = None

    def add(self, fill: Fill) -> None:
        self.quantity += fill.quantity
        self.notional += fill.quantity * fill.price
        # Fills with no quantity never decide direction or close time
        if fill.quantity <= 0:
            return
        if self.first_at is None or fill.executed_at < self.first_at:
            self.first_at = fill.executed_at
        if self.last_at is None or fill.executed_at > self.last_at:
            self.last_at = fill.executed_at

    @property
    def present(self) -> bool:
        # Zero total quantity counts as absent (no average price to compute)
        return self.quantity > 0 and self.first_at is not None

    @property
    def average_price(self) -> float:
        return self.notional / self.quantity


@dataclass
class _TradeGroup:
    symbol: str
    day: date
    buys: _SideTotals = field(default_factory=_SideTotals)
    sells: _SideTotals = field(default_factory=_SideTotals)
    fees: float = 0.0

    def add(self, fill: Fill) -> None:
        if fill.side.is_buy:
            self.buys.add(fill)
        else:
            self.sells.add(fill)
        self.fees += fill.fees


def group_fills(fills: Iterable[Fill]) -> dict[tuple[str, date], _TradeGroup]:
    """Group fills by (symbol, execution day)."""
    groups: dict[tuple[str, date], _TradeGroup] = {}
    for fill in fills:
        key = (fill.symbol, fill.executed_at.date())
        group = groups.get(key)
        if group is None:
            group = groups[key] = _TradeGroup(symbol=fill.symbol, day=key[1])
        group.add(fill)
    return groups


def _build_trade(group: _TradeGroup) -> ReconstructedTrade | None:
    buys, sells = group.buys, group.sells

    if buys.present and sells.present:
        # Round trip: the side that traded first is the entry
        if buys.first_at < sells.first_at:
            direction = TradeDirection.LONG
            entry, exit_ = buys, sells
        else:
            direction = TradeDirection.SHORT
            entry, exit_ = sells, buys

        entry_price = entry.average_price
        exit_price = exit_.average_price

        return ReconstructedTrade(
            symbol=group.symbol,
            direction=direction,
            quantity=entry.quantity,
            entry_price=entry_price,
            exit_price=exit_price,
            opened_at=entry.first_at,
            closed_at=exit_.last_at,
            pnl=compute_pnl(direction, entry_price, exit_price, entry.quantity, group.fees),
            fees=group.fees,
        )

    if buys.present:
        return ReconstructedTrade(
            symbol=group.symbol,
            direction=TradeDirection.LONG,
            quantity=buys.quantity,
            entry_price=buys.average_price,
            opened_at=buys.first_at,
            fees=group.fees,
        )

    if sells.present:
        return ReconstructedTrade(
            symbol=group.symbol,
            direction=TradeDirection.SHORT,
            quantity=sells.quantity,
            entry_price=sells.average_price,
            opened_at=sells.first_at,
            fees=group.fees,
        )

    return None


def reconstruct_trades(fills: Iterable[Fill]) -> list[ReconstructedTrade]:
    """
    Convert fills into trade summaries, one per (symbol, day) group.

    Args:
        fills: Fills in any order. Not modified.

    Returns:
        Trades sorted by open time, then symbol. Groups whose sides all
        have zero quantity are skipped.
    """
    trades: list[ReconstructedTrade] = []

    for key, group in group_fills(fills).items():
        trade = _build_trade(group)
        if trade is None:
            logger.debug(f"Skipping fill group {key[0]} {key[1]}: no quantity on either side")
            continue
        trades.append(trade)

    trades.sort(key=lambda t: (t.opened_at, t.symbol))
    return trades


def reconstruct_from_rows(rows: Iterable[Sequence[str]]) -> list[ReconstructedTrade]:
    """Parse broker CSV rows and reconstruct trades in one step."""
    return reconstruct_trades(parse_fill_rows(rows))
