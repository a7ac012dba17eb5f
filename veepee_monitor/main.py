"""
Main application entry point for the Veepee restock monitor.
"""
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

import aiohttp

from .config.environment import Environment
from .config.config_manager import config
from .database.connection import db
from .database.repository import MonitoredItemRepository, HistoryRepository, CartStateRepository
from .services.api_server import ApiServer
from .services.cart_lifecycle import CartLifecycleManager
from .services.error_handler import ErrorHandler, CredentialsAlert
from .services.item_manager import ItemManager
from .services.notification_service import NotificationService
from .services.registry import Registry
from .services.reservation import ReservationAttempter
from .services.stock_watcher import StockWatcher
from .services.veepee_client import VeepeeClient


def setup_logging():
    """Set up logging configuration."""
    from .config.logging_config import configure_logging
    return configure_logging()


def load_configuration() -> bool:
    """Load configuration from files and environment variables."""
    logger = logging.getLogger(__name__)

    config_dir = Environment.get_config_dir()
    default_config_path = config_dir / "config.yaml"
    env_config_path = config_dir / f"config.{Environment.get_env()}.yaml"

    for path in (default_config_path, env_config_path):
        if path.exists():
            try:
                logger.info(f"Loading configuration from {path}")
                config.load_config(str(path))
            except Exception as e:
                logger.error(f"Error loading configuration from {path}: {e}")

    custom_config_path = os.getenv('CONFIG_FILE')
    if custom_config_path and Path(custom_config_path).exists():
        try:
            logger.info(f"Loading custom configuration from {custom_config_path}")
            config.load_config(custom_config_path)
        except Exception as e:
            logger.error(f"Error loading custom configuration: {e}")

    try:
        config.validate_config()
        logger.info("Configuration validated successfully")
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        return False

    return True


def build_manager(config_manager, session: aiohttp.ClientSession, database=None) -> ItemManager:
    """Wire the collaborators together."""
    database = database or db
    client = VeepeeClient(config_manager, session=session)
    notifier = NotificationService(config_manager, session=session)
    error_handler = ErrorHandler()
    credentials_alert = CredentialsAlert(notifier)

    registry = Registry(MonitoredItemRepository(database), HistoryRepository(database))
    lifecycle = CartLifecycleManager(
        client, notifier, credentials_alert, error_handler,
        cart_repo=CartStateRepository(database), config_manager=config_manager
    )
    reserver = ReservationAttempter(client, lifecycle, error_handler, credentials_alert)
    watcher = StockWatcher(
        registry, client, reserver, notifier, credentials_alert, error_handler,
        config_manager=config_manager
    )
    return ItemManager(
        client, registry, watcher, lifecycle, reserver, notifier,
        credentials_alert, error_handler, config_manager=config_manager
    )


async def main():
    """Main application entry point."""
    logger = logging.getLogger(__name__)
    logger.info(f"Starting Veepee monitor in {Environment.get_env()} mode")

    if not load_configuration():
        logger.error("Failed to load valid configuration. Exiting.")
        return

    logger = setup_logging()

    database_url = config.get('database.url')
    db.database_path = Environment.database_path_from_url(database_url)
    logger.info("Initializing database")
    if not db.initialize():
        logger.warning("Running with in-memory state only")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

    timeout = aiohttp.ClientTimeout(total=config.get('veepee.request_timeout', 30))
    async with aiohttp.ClientSession(timeout=timeout) as session:
        manager = build_manager(config, session)
        server = ApiServer(manager, config.get('server.host', '0.0.0.0'), config.get('server.port', 3000))

        await manager.start()
        await server.start()

        if not manager.client.has_credentials:
            logger.warning("No Veepee authorization configured - set VEEPEE_AUTH or POST /api/config/auth")
        if not manager.notifier.is_configured:
            logger.warning("No Discord webhook configured - alerts will only be logged")

        try:
            await stop_event.wait()
        finally:
            logger.info("Shutting down services...")
            await server.stop()
            await manager.shutdown()
            await manager.notifier.close()

    db.close()
    logger.info("All services shut down")


def run():
    """Console script entry point."""
    Environment.setup_basic_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
