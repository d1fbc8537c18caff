#!/usr/bin/env python3
# === MODULE PURPOSE ===
# Entry point for the TradePulse backend.
# Runs the REST API and the WebSocket push server in one event loop.

# === USAGE ===
# uv run python scripts/run_server.py
# uv run python scripts/run_server.py --config config/server-config.yaml

# === KEY CONCEPTS ===
# - ServerManager: Owns the bus, repository, push server and web server lifecycles
# - Startup order: bus -> repository -> push server -> web API
# - Shutdown runs in reverse order on SIGINT/SIGTERM or web server exit

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

import uvicorn

# Add src directory to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from tradejournal.common.config import (
    Config,
    get_database_config,
    get_jwt_secret,
    get_server_config,
)
from tradejournal.data.clients.propreports_client import PropReportsClient
from tradejournal.notifications.bus import NotificationBus
from tradejournal.notifications.server import PushServer
from tradejournal.trading.repository import TradeRepository, create_trade_repository
from tradejournal.web.app import create_app
from tradejournal.web.auth import TokenAuthenticator

logger = logging.getLogger(__name__)


def setup_logging(config: Config) -> None:
    """Configure logging based on config."""
    level = config.get_str("logging.level", "INFO")
    format_str = config.get_str(
        "logging.format",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    log_file = config.get_str("logging.file")
    if log_file:
        log_path = project_root / log_file
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logging.basicConfig(
            level=getattr(logging, level.upper()),
            format=format_str,
            handlers=[
                logging.StreamHandler(),
                logging.FileHandler(log_path, encoding="utf-8"),
            ],
        )
    else:
        logging.basicConfig(
            level=getattr(logging, level.upper()),
            format=format_str,
        )


class EmbeddedUvicornServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to ServerManager."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class ServerManager:
    """Starts and stops all backend components."""

    def __init__(self, config: Config):
        self.config = config
        self.bus = NotificationBus.from_config(config)
        self.authenticator = TokenAuthenticator(get_jwt_secret())
        self.repository: TradeRepository | None = None
        self.push_server: PushServer | None = None
        self.web_server: EmbeddedUvicornServer | None = None
        self._web_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

    def _propreports_factory(self, site: str, username: str, password: str) -> PropReportsClient:
        return PropReportsClient(
            site,
            username,
            password,
            timeout=self.config.get_float("propreports.timeout", 30.0),
            max_pages=self.config.get_int("propreports.max_pages", 50),
        )

    async def initialize(self) -> None:
        """Start the bus, connect storage and bind both servers."""
        server_config = get_server_config(self.config)

        await self.bus.start()

        db_config = get_database_config(self.config)
        if db_config["enabled"]:
            self.repository = create_trade_repository(db_config)
            await self.repository.connect()
        else:
            logger.warning("Database disabled, trade endpoints will answer 503")

        self.push_server = PushServer.from_config(
            self.bus,
            self.authenticator,
            self.config,
            host=server_config["push_host"],
            port=server_config["push_port"],
        )
        await self.push_server.start()

        app = create_app(
            self.bus,
            self.authenticator,
            repository=self.repository,
            propreports_factory=self._propreports_factory,
        )
        self.web_server = EmbeddedUvicornServer(
            uvicorn.Config(
                app,
                host=server_config["web_host"],
                port=server_config["web_port"],
                log_config=None,
            )
        )

    async def run(self) -> None:
        """Serve until a shutdown is requested or the web server exits."""
        assert self.web_server is not None  # For type checker
        self._web_task = asyncio.create_task(self.web_server.serve(), name="web_server")
        shutdown_task = asyncio.create_task(self._shutdown_event.wait(), name="shutdown_wait")

        logger.info("TradePulse backend is running")
        done, _ = await asyncio.wait(
            {self._web_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
        )
        shutdown_task.cancel()

        if self._web_task in done and self._web_task.exception():
            raise self._web_task.exception()

    async def shutdown(self) -> None:
        """Graceful shutdown in reverse start order."""
        logger.info("Initiating shutdown...")

        if self.web_server:
            self.web_server.should_exit = True
        if self._web_task:
            await asyncio.gather(self._web_task, return_exceptions=True)

        if self.push_server:
            await self.push_server.stop()

        await self.bus.stop()

        if self.repository:
            await self.repository.close()

        logger.info("Shutdown complete")

    def request_shutdown(self) -> None:
        """Request shutdown."""
        self._shutdown_event.set()


async def main(config_path: str) -> None:
    """Main entry point."""
    config = Config.load(config_path)
    setup_logging(config)

    logger.info("=" * 60)
    logger.info("TradePulse backend")
    logger.info("=" * 60)

    manager = ServerManager(config)

    def signal_handler():
        logger.info("Shutdown signal received")
        manager.request_shutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: signal_handler())

    try:
        await manager.initialize()
        await manager.run()
    except Exception as e:
        logger.error(f"Server error: {e}", exc_info=True)
        raise
    finally:
        await manager.shutdown()

    logger.info("Server terminated")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="TradePulse backend server")
    parser.add_argument(
        "--config",
        "-c",
        default="config/server-config.yaml",
        help="Path to server configuration file",
    )
    args = parser.parse_args()

    asyncio.run(main(args.config))
