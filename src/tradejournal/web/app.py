# === MODULE PURPOSE ===
# FastAPI application for the trade journal REST API.

# === DEPENDENCIES ===
# - bus: Notifications published after mutations
# - repository: Trade persistence (optional)
# - auth: Bearer token validation
# - propreports_client: Broker fill downloads

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from fastapi import FastAPI

from tradejournal.data.clients.propreports_client import PropReportsClient
from tradejournal.web.routes import create_router

if TYPE_CHECKING:
    from tradejournal.notifications.bus import NotificationBus
    from tradejournal.trading.repository import TradeRepository
    from tradejournal.web.auth import TokenAuthenticator

logger = logging.getLogger(__name__)

PropReportsFactory = Callable[[str, str, str], PropReportsClient]


def create_app(
    bus: NotificationBus,
    authenticator: TokenAuthenticator,
    repository: TradeRepository | None = None,
    propreports_factory: PropReportsFactory | None = None,
) -> FastAPI:
    """
    Create FastAPI application.

    Args:
        bus: Notification bus. Its lifecycle is owned by the caller.
        authenticator: Token validator for the Authorization header.
        repository: Trade repository; trade endpoints answer 503 without one.
        propreports_factory: Builds a PropReportsClient from (site, username,
            password). Defaults to the client with default settings.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="TradePulse API",
        description="Trade journal API with real-time notifications",
        version="1.0.0",
    )

    # Store references for routes
    app.state.bus = bus
    app.state.authenticator = authenticator
    app.state.repository = repository
    app.state.propreports_factory = propreports_factory or PropReportsClient

    app.include_router(create_router())

    @app.on_event("startup")
    async def startup():
        logger.info(
            f"Web API started (trade storage {'enabled' if repository else 'disabled'})"
        )

    @app.on_event("shutdown")
    async def shutdown():
        logger.info("Web API stopped")

    return app
