# === MODULE PURPOSE ===
# REST API routes for the trade journal.
# Every successful mutation publishes a notification to the user's push connections.

# === ENDPOINTS ===
# GET    /health                               - Liveness check (JSON)
# GET    /api/notifications/stats              - Live push connection counts
# GET    /api/trades                           - List the user's trades
# POST   /api/trades                           - Create a trade
# GET    /api/trades/{trade_id}                - Get one trade
# PUT    /api/trades/{trade_id}                - Update a trade
# DELETE /api/trades/{trade_id}                - Delete a trade
# POST   /api/trades/import                    - Bulk import reconstructed trades
# POST   /api/integrations/propreports/fetch   - Fetch and reconstruct broker fills

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from tradejournal.data.clients.propreports_client import PropReportsError
from tradejournal.notifications.models import NotificationType
from tradejournal.trading.models import ReconstructedTrade, TradeDirection
from tradejournal.web.auth import require_user

if TYPE_CHECKING:
    from tradejournal.notifications.bus import NotificationBus
    from tradejournal.trading.repository import TradeRepository

logger = logging.getLogger(__name__)


class TradeRequest(BaseModel):
    """Request body for creating or updating a trade."""

    symbol: str = Field(min_length=1, max_length=20)
    trade_type: TradeDirection
    quantity: float = Field(gt=0)
    entry_price: float = Field(gt=0)
    exit_price: float | None = Field(default=None, gt=0)
    fees: float = 0.0
    opened_at: datetime
    closed_at: datetime | None = None

    def to_reconstructed(self) -> ReconstructedTrade:
        return ReconstructedTrade(
            symbol=self.symbol,
            direction=self.trade_type,
            quantity=self.quantity,
            entry_price=self.entry_price,
            opened_at=self.opened_at,
            fees=self.fees,
            exit_price=self.exit_price,
            closed_at=self.closed_at,
            pnl=None,
        )


class ImportRequest(BaseModel):
    """Request body for bulk trade import."""

    trades: list[TradeRequest]


class PropReportsFetchRequest(BaseModel):
    """Request body for a PropReports fetch. Dates are YYYY-MM-DD."""

    site: str = ""
    username: str = ""
    password: str = ""
    from_date: str | None = None
    to_date: str | None = None


def get_bus(request: Request) -> NotificationBus:
    return request.app.state.bus


def get_repository(request: Request) -> TradeRepository:
    """Get the trade repository, 503 if persistence is not configured."""
    repository = request.app.state.repository
    if repository is None:
        raise HTTPException(status_code=503, detail="Trade storage not available")
    return repository


def notify(
    bus: NotificationBus,
    notification_type: NotificationType,
    user_id: str,
    title: str,
    message: str,
    data: Any = None,
) -> None:
    """Publish a notification; failures are logged and never reach the caller."""
    try:
        bus.publish(notification_type, user_id, title, message, data)
    except Exception as e:
        logger.error(f"Failed to publish {notification_type.value} for user {user_id}: {e}")


def _parse_trade_id(trade_id: str) -> str:
    try:
        return str(uuid.UUID(trade_id))
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Trade {trade_id} not found") from None


def create_router() -> APIRouter:
    """Create API router with all endpoints."""
    router = APIRouter()

    @router.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @router.get("/api/notifications/stats")
    async def notification_stats(
        request: Request, user_id: str = Depends(require_user)
    ) -> dict:
        return get_bus(request).get_stats()

    # ==================== Trades ====================

    @router.get("/api/trades")
    async def list_trades(
        request: Request,
        symbol: str | None = None,
        status: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
        user_id: str = Depends(require_user),
    ) -> dict:
        if status not in (None, "open", "closed"):
            raise HTTPException(status_code=400, detail=f"Invalid status filter: {status}")

        repository = get_repository(request)
        trades = await repository.list_trades(
            user_id, symbol=symbol, status=status, limit=limit, offset=offset
        )
        return {"trades": [trade.to_dict() for trade in trades], "count": len(trades)}

    @router.post("/api/trades", status_code=201)
    async def create_trade(
        body: TradeRequest, request: Request, user_id: str = Depends(require_user)
    ) -> dict:
        repository = get_repository(request)
        trade = await repository.create_trade(user_id, body.model_dump())

        notify(
            get_bus(request),
            NotificationType.TRADE_CREATED,
            user_id,
            "Trade Created",
            f"New {trade.symbol} trade created",
            {"id": trade.id, "symbol": trade.symbol},
        )
        return trade.to_dict()

    @router.get("/api/trades/{trade_id}")
    async def get_trade(
        trade_id: str, request: Request, user_id: str = Depends(require_user)
    ) -> dict:
        repository = get_repository(request)
        trade = await repository.get_trade(user_id, _parse_trade_id(trade_id))
        if trade is None:
            raise HTTPException(status_code=404, detail=f"Trade {trade_id} not found")
        return trade.to_dict()

    @router.put("/api/trades/{trade_id}")
    async def update_trade(
        trade_id: str,
        body: TradeRequest,
        request: Request,
        user_id: str = Depends(require_user),
    ) -> dict:
        repository = get_repository(request)
        trade = await repository.update_trade(
            user_id, _parse_trade_id(trade_id), body.model_dump()
        )
        if trade is None:
            raise HTTPException(status_code=404, detail=f"Trade {trade_id} not found")

        notify(
            get_bus(request),
            NotificationType.TRADE_UPDATED,
            user_id,
            "Trade Updated",
            f"{trade.symbol} trade updated",
            {"id": trade.id, "symbol": trade.symbol},
        )
        return trade.to_dict()

    @router.delete("/api/trades/{trade_id}")
    async def delete_trade(
        trade_id: str, request: Request, user_id: str = Depends(require_user)
    ) -> dict:
        repository = get_repository(request)
        deleted = await repository.delete_trade(user_id, _parse_trade_id(trade_id))
        if not deleted:
            raise HTTPException(status_code=404, detail=f"Trade {trade_id} not found")

        notify(
            get_bus(request),
            NotificationType.TRADE_DELETED,
            user_id,
            "Trade Deleted",
            "Trade deleted",
            {"id": trade_id},
        )
        return {"success": True, "id": trade_id}

    @router.post("/api/trades/import", status_code=201)
    async def import_trades(
        body: ImportRequest, request: Request, user_id: str = Depends(require_user)
    ) -> dict:
        if not body.trades:
            raise HTTPException(status_code=400, detail="No trades to import")

        repository = get_repository(request)
        try:
            trade_ids = await repository.bulk_create_trades(
                user_id, [trade.to_reconstructed() for trade in body.trades]
            )
        except Exception as e:
            logger.error(f"Trade import failed for user {user_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to import trades") from e

        notify(
            get_bus(request),
            NotificationType.CSV_IMPORT,
            user_id,
            "CSV Import Complete",
            f"Successfully imported {len(trade_ids)} trades",
            {"count": len(trade_ids), "trade_ids": trade_ids},
        )
        return {"imported_count": len(trade_ids), "trade_ids": trade_ids}

    # ==================== Integrations ====================

    @router.post("/api/integrations/propreports/fetch")
    async def fetch_propreports(
        body: PropReportsFetchRequest,
        request: Request,
        user_id: str = Depends(require_user),
    ) -> dict:
        if not (body.site and body.username and body.password):
            raise HTTPException(
                status_code=400, detail="Site, username, and password are required"
            )

        bus = get_bus(request)
        notify(
            bus,
            NotificationType.INFO,
            user_id,
            "PropReports Sync Started",
            f"Fetching fills from {body.site}",
            {"site": body.site},
        )

        factory = request.app.state.propreports_factory
        try:
            async with factory(body.site, body.username, body.password) as client:
                trades = await client.fetch_trades(body.from_date, body.to_date)
        except PropReportsError as e:
            logger.error(
                f"Failed to fetch PropReports trades for {body.username}@{body.site}: {e}"
            )
            notify(
                bus,
                NotificationType.ERROR,
                user_id,
                "PropReports Sync Failed",
                str(e),
                {"site": body.site},
            )
            raise HTTPException(
                status_code=500,
                detail=f"Failed to fetch trades from PropReports: {e}",
            ) from e

        logger.info(
            f"Fetched {len(trades)} trades from PropReports for {body.username}@{body.site}"
        )
        notify(
            bus,
            NotificationType.SUCCESS,
            user_id,
            "PropReports Sync Complete",
            f"Fetched {len(trades)} trades from {body.site}",
            {"site": body.site, "count": len(trades)},
        )
        return {"trades": [trade.to_dict() for trade in trades], "count": len(trades)}

    return router
