# === MODULE PURPOSE ===
# Trade reconstruction and persistence.

# === KEY CONCEPTS ===
# - Fill: One broker execution parsed from a CSV row
# - reconstruct_trades: Groups fills per (symbol, day) into position summaries
# - TradeRepository: PostgreSQL persistence for user trades

from tradejournal.trading.fills import Fill, FillSide, parse_fill_row, parse_fill_rows
from tradejournal.trading.models import ReconstructedTrade, Trade, TradeDirection
from tradejournal.trading.reconstruction import reconstruct_from_rows, reconstruct_trades

__all__ = [
    "Fill",
    "FillSide",
    "ReconstructedTrade",
    "Trade",
    "TradeDirection",
    "parse_fill_row",
    "parse_fill_rows",
    "reconstruct_from_rows",
    "reconstruct_trades",
]
