# === MODULE PURPOSE ===
# Tests for TradeRepository.
# Uses a mocked asyncpg pool; no database required.

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from tradejournal.trading.models import ReconstructedTrade, TradeDirection
from tradejournal.trading.repository import (
    TABLES_SQL,
    TradeRepository,
    TradeRepositoryConfig,
    _prepare_fields,
    create_trade_repository,
)

USER_ID = "55555555-5555-5555-5555-555555555555"
TRADE_ID = "66666666-6666-6666-6666-666666666666"
OPENED = datetime(2026, 1, 15, 9, 30)


def make_row(**overrides) -> dict:
    row = {
        "id": uuid.UUID(TRADE_ID),
        "user_id": uuid.UUID(USER_ID),
        "symbol": "AAPL",
        "trade_type": "LONG",
        "quantity": 100,
        "entry_price": 10,
        "exit_price": None,
        "fees": 0,
        "pnl": None,
        "opened_at": OPENED,
        "closed_at": None,
        "created_at": OPENED,
        "updated_at": OPENED,
    }
    row.update(overrides)
    return row


def connected_repository(conn: MagicMock) -> TradeRepository:
    """Build a repository whose pool hands out the given connection."""

    @asynccontextmanager
    async def acquire():
        yield conn

    pool = MagicMock()
    pool.acquire = acquire
    repository = TradeRepository(TradeRepositoryConfig())
    repository._pool = pool
    repository._is_connected = True
    return repository


class TestPrepareFields:
    """Tests for field ordering and P&L derivation."""

    def test_open_trade_has_no_pnl(self):
        """Test no exit price means no P&L."""
        values = _prepare_fields({
            "symbol": "AAPL", "trade_type": "LONG", "quantity": 100,
            "entry_price": 10, "opened_at": OPENED,
        })
        assert values == (
            "AAPL", "LONG", 100.0, 10.0, None, 0.0, None,
            OPENED.replace(tzinfo=timezone.utc), None,
        )

    def test_closed_short_pnl(self):
        """Test P&L is computed for closed trades, net of fees."""
        values = _prepare_fields({
            "symbol": "AAPL", "trade_type": TradeDirection.SHORT, "quantity": 50,
            "entry_price": 20, "exit_price": 18, "fees": 2, "opened_at": OPENED,
            "closed_at": OPENED,
        })
        assert values[6] == pytest.approx(98.0)

    def test_aware_timestamps_kept(self):
        """Test timezone-aware timestamps pass through unchanged."""
        opened = datetime(2026, 1, 5, 9, 30, tzinfo=timezone(timedelta(hours=-5)))
        values = _prepare_fields({
            "symbol": "AAPL", "trade_type": "LONG", "quantity": 1,
            "entry_price": 1, "opened_at": opened, "closed_at": None,
        })
        assert values[7] is opened
        assert values[8] is None

    def test_schema_stores_timezone_aware_timestamps(self):
        """Test every timestamp column is TIMESTAMPTZ."""
        for column in ("opened_at", "closed_at", "created_at", "updated_at"):
            assert f"{column} TIMESTAMPTZ" in TABLES_SQL


class TestTradeRepository:
    """Tests for TradeRepository queries."""

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        """Test queries fail clearly before connect()."""
        repository = TradeRepository(TradeRepositoryConfig())
        with pytest.raises(RuntimeError):
            await repository.list_trades(USER_ID)

    @pytest.mark.asyncio
    async def test_list_trades_filters(self):
        """Test optional filters become positional parameters."""
        conn = MagicMock()
        conn.fetch = AsyncMock(return_value=[make_row()])
        repository = connected_repository(conn)

        trades = await repository.list_trades(USER_ID, symbol="aapl", status="open", limit=10)

        query, *args = conn.fetch.call_args.args
        assert "UPPER(symbol) = UPPER($2)" in query
        assert "exit_price IS NULL" in query
        assert "LIMIT $3" in query
        assert args == [uuid.UUID(USER_ID), "aapl", 10]
        assert trades[0].id == TRADE_ID
        assert trades[0].direction is TradeDirection.LONG

    @pytest.mark.asyncio
    async def test_get_trade_scoped_to_user(self):
        """Test a single trade is looked up by id and owner."""
        conn = MagicMock()
        conn.fetchrow = AsyncMock(side_effect=[make_row(), None])
        repository = connected_repository(conn)

        trade = await repository.get_trade(USER_ID, TRADE_ID)
        missing = await repository.get_trade(USER_ID, TRADE_ID)

        _, *args = conn.fetchrow.call_args.args
        assert args == [uuid.UUID(TRADE_ID), uuid.UUID(USER_ID)]
        assert trade.id == TRADE_ID
        assert missing is None

    @pytest.mark.asyncio
    async def test_create_trade_binds_utc_timestamps(self):
        """Test UTC client timestamps reach the query as aware datetimes."""
        opened = datetime(2026, 1, 5, 14, 30, tzinfo=timezone.utc)
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=make_row(opened_at=opened))
        repository = connected_repository(conn)

        trade = await repository.create_trade(USER_ID, {
            "symbol": "AAPL", "trade_type": "LONG", "quantity": 100,
            "entry_price": 10, "opened_at": opened,
        })

        _, *args = conn.fetchrow.call_args.args
        assert args[8] == opened
        assert args[8].tzinfo is not None
        assert trade.opened_at == opened

    @pytest.mark.asyncio
    async def test_update_missing_returns_none(self):
        """Test updating another user's or a missing trade yields None."""
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=None)
        repository = connected_repository(conn)

        result = await repository.update_trade(USER_ID, TRADE_ID, {
            "symbol": "AAPL", "trade_type": "LONG", "quantity": 1,
            "entry_price": 1, "opened_at": OPENED,
        })

        assert result is None

    @pytest.mark.asyncio
    async def test_delete_reports_whether_row_existed(self):
        """Test the command tag is interpreted."""
        conn = MagicMock()
        conn.execute = AsyncMock(side_effect=["DELETE 1", "DELETE 0"])
        repository = connected_repository(conn)

        assert await repository.delete_trade(USER_ID, TRADE_ID) is True
        assert await repository.delete_trade(USER_ID, TRADE_ID) is False

    @pytest.mark.asyncio
    async def test_bulk_create_returns_ids_in_order(self):
        """Test bulk import inserts every trade in one transaction."""
        ids = [uuid.uuid4(), uuid.uuid4()]
        conn = MagicMock()
        conn.fetchval = AsyncMock(side_effect=ids)
        conn.transaction = MagicMock(return_value=AsyncMock())
        repository = connected_repository(conn)

        trades = [
            ReconstructedTrade("AAPL", TradeDirection.LONG, 100, 10, OPENED),
            ReconstructedTrade("MSFT", TradeDirection.SHORT, 50, 20, OPENED),
        ]
        result = await repository.bulk_create_trades(USER_ID, trades)

        assert result == [str(i) for i in ids]
        assert conn.fetchval.await_count == 2
        conn.transaction.assert_called_once()


class TestCreateTradeRepository:
    """Tests for the factory."""

    def test_from_database_config(self):
        """Test settings are mapped onto the repository config."""
        repository = create_trade_repository({
            "host": "db", "port": "6543", "database": "journal",
            "user": "app", "password": "pw", "pool_min_size": 1, "pool_max_size": 4,
        })
        config = repository._config
        assert (config.host, config.port, config.database) == ("db", 6543, "journal")
        assert (config.pool_min_size, config.pool_max_size) == (1, 4)
        assert repository.is_connected is False
