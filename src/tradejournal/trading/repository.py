# === MODULE PURPOSE ===
# PostgreSQL repository for user trades.
# Backs the trade CRUD and import endpoints that publish notifications.

# === DEPENDENCIES ===
# - asyncpg: Async PostgreSQL client
# - models: Trade rows and P&L calculation

# === KEY CONCEPTS ===
# - Ownership: Every query is scoped by user_id
# - P&L: Computed on write when an exit price is present
# - Timestamps: Stored as TIMESTAMPTZ; naive datetimes are taken as UTC
# - Auto-migration: Creates the trades table if not exist

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

import asyncpg

from tradejournal.trading.models import ReconstructedTrade, Trade, TradeDirection, compute_pnl

logger = logging.getLogger(__name__)


@dataclass
class TradeRepositoryConfig:
    """Configuration for trade repository."""

    host: str = "localhost"
    port: int = 5432
    database: str = "tradepulse"
    user: str = "tradepulse"
    password: str = ""
    pool_min_size: int = 2
    pool_max_size: int = 10
    auto_create_schema: bool = True


TABLES_SQL = """
CREATE EXTENSION IF NOT EXISTS pgcrypto;

CREATE TABLE IF NOT EXISTS trades (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL,
    symbol VARCHAR(20) NOT NULL,
    trade_type VARCHAR(5) NOT NULL,  -- LONG/SHORT
    quantity DECIMAL(18, 4) NOT NULL,
    entry_price DECIMAL(18, 6) NOT NULL,
    exit_price DECIMAL(18, 6),
    fees DECIMAL(18, 4) NOT NULL DEFAULT 0,
    pnl DECIMAL(18, 4),
    opened_at TIMESTAMPTZ NOT NULL,
    closed_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_trades_user_opened ON trades(user_id, opened_at DESC);
"""

TRADE_COLUMNS = """
    id, user_id, symbol, trade_type, quantity, entry_price, exit_price,
    fees, pnl, opened_at, closed_at, created_at, updated_at
"""


class TradeRepository:
    """
    PostgreSQL repository for trades.

    Usage:
        repo = TradeRepository(config)
        await repo.connect()

        trade = await repo.create_trade(user_id, {
            "symbol": "AAPL", "trade_type": "LONG", "quantity": 100,
            "entry_price": 190.5, "opened_at": datetime(...),
        })
        trades = await repo.list_trades(user_id, status="open")

        await repo.close()
    """

    def __init__(self, config: TradeRepositoryConfig):
        self._config = config
        self._pool: asyncpg.Pool | None = None
        self._is_connected = False

    async def connect(self) -> None:
        """Establish connection pool and initialize tables."""
        if self._is_connected:
            return

        try:
            logger.info(
                f"Connecting to PostgreSQL: {self._config.host}:{self._config.port}"
                f"/{self._config.database}"
            )

            self._pool = await asyncpg.create_pool(
                host=self._config.host,
                port=self._config.port,
                database=self._config.database,
                user=self._config.user,
                password=self._config.password,
                min_size=self._config.pool_min_size,
                max_size=self._config.pool_max_size,
            )

            if self._config.auto_create_schema:
                async with self._pool.acquire() as conn:
                    await conn.execute(TABLES_SQL)

            self._is_connected = True
            logger.info("TradeRepository connected to PostgreSQL")

        except Exception as e:
            logger.error(f"Failed to connect to PostgreSQL: {e}")
            raise ConnectionError(f"Cannot connect to trade database: {e}") from e

    async def close(self) -> None:
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            self._is_connected = False
            logger.info("TradeRepository disconnected")

    # ==================== Queries ====================

    async def list_trades(
        self,
        user_id: str,
        symbol: str | None = None,
        status: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Trade]:
        """
        List a user's trades, most recent first.

        Args:
            user_id: Owner.
            symbol: Case-insensitive symbol filter.
            status: "open", "closed" or None for all.
            limit: Maximum rows.
            offset: Rows to skip.
        """
        query = f"SELECT {TRADE_COLUMNS} FROM trades WHERE user_id = $1"
        args: list[Any] = [uuid.UUID(user_id)]

        if symbol:
            args.append(symbol)
            query += f" AND UPPER(symbol) = UPPER(${len(args)})"
        if status == "open":
            query += " AND exit_price IS NULL"
        elif status == "closed":
            query += " AND exit_price IS NOT NULL"

        query += " ORDER BY opened_at DESC"

        if limit:
            args.append(limit)
            query += f" LIMIT ${len(args)}"
        if offset:
            args.append(offset)
            query += f" OFFSET ${len(args)}"

        async with self._db_pool.acquire() as conn:
            rows = await conn.fetch(query, *args)

        return [Trade.from_row(row) for row in rows]

    async def get_trade(self, user_id: str, trade_id: str) -> Trade | None:
        """Get a single trade owned by the user."""
        async with self._db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {TRADE_COLUMNS} FROM trades WHERE id = $1 AND user_id = $2",
                uuid.UUID(trade_id),
                uuid.UUID(user_id),
            )
        return Trade.from_row(row) if row else None

    # ==================== Mutations ====================

    async def create_trade(self, user_id: str, fields: dict[str, Any]) -> Trade:
        """
        Insert a trade.

        Args:
            user_id: Owner.
            fields: symbol, trade_type, quantity, entry_price, opened_at and
                optionally exit_price, fees, closed_at.
        """
        values = _prepare_fields(fields)
        async with self._db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO trades
                    (user_id, symbol, trade_type, quantity, entry_price, exit_price,
                     fees, pnl, opened_at, closed_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                RETURNING {TRADE_COLUMNS}
                """,
                uuid.UUID(user_id),
                *values,
            )
        return Trade.from_row(row)

    async def update_trade(
        self, user_id: str, trade_id: str, fields: dict[str, Any]
    ) -> Trade | None:
        """
        Replace a trade's fields.

        Returns:
            Updated trade, or None if it does not exist for this user.
        """
        values = _prepare_fields(fields)
        async with self._db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE trades SET
                    symbol = $3, trade_type = $4, quantity = $5, entry_price = $6,
                    exit_price = $7, fees = $8, pnl = $9, opened_at = $10,
                    closed_at = $11, updated_at = CURRENT_TIMESTAMP
                WHERE id = $1 AND user_id = $2
                RETURNING {TRADE_COLUMNS}
                """,
                uuid.UUID(trade_id),
                uuid.UUID(user_id),
                *values,
            )
        return Trade.from_row(row) if row else None

    async def delete_trade(self, user_id: str, trade_id: str) -> bool:
        """Delete a trade. Returns False if it does not exist for this user."""
        async with self._db_pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM trades WHERE id = $1 AND user_id = $2",
                uuid.UUID(trade_id),
                uuid.UUID(user_id),
            )
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return result.split()[-1] != "0"

    async def bulk_create_trades(
        self, user_id: str, trades: Iterable[ReconstructedTrade]
    ) -> list[str]:
        """
        Insert many trades in one transaction.

        Returns:
            IDs of the inserted trades, in input order.
        """
        trade_ids: list[str] = []
        async with self._db_pool.acquire() as conn:
            async with conn.transaction():
                for trade in trades:
                    trade_id = await conn.fetchval(
                        """
                        INSERT INTO trades
                            (user_id, symbol, trade_type, quantity, entry_price, exit_price,
                             fees, pnl, opened_at, closed_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                        RETURNING id
                        """,
                        uuid.UUID(user_id),
                        trade.symbol,
                        trade.direction.value,
                        trade.quantity,
                        trade.entry_price,
                        trade.exit_price,
                        trade.fees,
                        trade.pnl,
                        trade.opened_at,
                        trade.closed_at,
                    )
                    trade_ids.append(str(trade_id))

        logger.info(f"Imported {len(trade_ids)} trades for user {user_id}")
        return trade_ids

    # ==================== Utilities ====================

    def _ensure_connected(self) -> None:
        """Ensure repository is connected."""
        if not self._is_connected or not self._pool:
            raise RuntimeError("TradeRepository is not connected. Call connect() first.")

    @property
    def _db_pool(self) -> asyncpg.Pool:
        """Get the database pool, raising if not connected."""
        self._ensure_connected()
        assert self._pool is not None  # For type checker
        return self._pool

    @property
    def is_connected(self) -> bool:
        """Check if connected."""
        return self._is_connected


def _prepare_fields(fields: dict[str, Any]) -> tuple[Any, ...]:
    """Order trade fields for INSERT/UPDATE and derive P&L."""
    direction = TradeDirection(fields["trade_type"])
    quantity = float(fields["quantity"])
    entry_price = float(fields["entry_price"])
    exit_price = fields.get("exit_price")
    fees = float(fields.get("fees") or 0)

    pnl = None
    if exit_price is not None:
        exit_price = float(exit_price)
        pnl = compute_pnl(direction, entry_price, exit_price, quantity, fees)

    return (
        fields["symbol"],
        direction.value,
        quantity,
        entry_price,
        exit_price,
        fees,
        pnl,
        _as_utc(fields["opened_at"]),
        _as_utc(fields.get("closed_at")),
    )


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_trade_repository(db_config: dict[str, Any]) -> TradeRepository:
    """
    Create TradeRepository from a database settings dictionary.

    Args:
        db_config: Output of common.config.get_database_config().
    """
    return TradeRepository(
        TradeRepositoryConfig(
            host=db_config.get("host", "localhost"),
            port=int(db_config.get("port", 5432)),
            database=db_config.get("database", "tradepulse"),
            user=db_config.get("user", "tradepulse"),
            password=db_config.get("password", ""),
            pool_min_size=int(db_config.get("pool_min_size", 2)),
            pool_max_size=int(db_config.get("pool_max_size", 10)),
        )
    )
