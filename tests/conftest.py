"""
Pytest configuration and fixtures for testing.
"""
import pytest
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

from veepee_monitor.database.connection import DatabaseConnection
from veepee_monitor.database.repository import (
    MonitoredItemRepository, HistoryRepository, CartStateRepository
)
from veepee_monitor.config.config_manager import ConfigManager
from veepee_monitor.models.inventory_data import (
    MonitoredItem, ProductInfo, SizeInfo, VariantStock
)
from veepee_monitor.services.cart_lifecycle import CartLifecycleManager
from veepee_monitor.services.error_handler import ErrorHandler, CredentialsAlert
from veepee_monitor.services.item_manager import ItemManager
from veepee_monitor.services.registry import Registry
from veepee_monitor.services.reservation import ReservationAttempter
from veepee_monitor.services.stock_watcher import StockWatcher
from veepee_monitor.services.veepee_client import VeepeeClient


def make_variants(**quantities):
    """Option rows keyed by variant id, e.g. make_variants(v111=5)."""
    return [
        VariantStock(variant_id=key.lstrip('v'), name=f"S{key}", quantity=quantity)
        for key, quantity in quantities.items()
    ]


def make_item(sale_id="897233", item_id="90983689", watched=("111",), **kwargs):
    """A monitored item with sizes for variants 111, 222 and 333."""
    return MonitoredItem(
        sale_id=sale_id,
        item_id=item_id,
        product_info=ProductInfo.placeholder(item_id),
        sizes={
            "111": SizeInfo(size="S"),
            "222": SizeInfo(size="M"),
            "333": SizeInfo(size="L"),
        },
        watched_sizes=set(watched),
        **kwargs
    )


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    temp_dir = tempfile.TemporaryDirectory()
    db_path = Path(temp_dir.name) / "test_db.sqlite"

    db = DatabaseConnection(str(db_path))
    db.initialize()

    yield db

    db.close()
    temp_dir.cleanup()


@pytest.fixture
def config_manager():
    """Create a config manager with test settings."""
    config = ConfigManager()
    config.set('veepee.auth_header', 'VPMWS test-user:signature')
    config.set('notifications.discord_webhook', '')
    config.set('monitoring.stock_interval', 60)
    config.set('monitoring.auto_reserve', True)
    config.set('monitoring.reserve_on_watch', True)
    config.set('cart.recovery_interval', 60)
    config.set('cart.treat_unparseable_as_empty', False)
    return config


@pytest.fixture
def mock_client():
    """A VeepeeClient double with async methods."""
    client = MagicMock(spec=VeepeeClient)
    client.has_credentials = True
    return client


@pytest.fixture
def notifier():
    """A notifier that records alerts instead of sending them."""
    return MagicMock()


@pytest.fixture
def error_handler():
    return ErrorHandler()


@pytest.fixture
def credentials_alert(notifier):
    return CredentialsAlert(notifier)


@pytest.fixture
def registry(temp_db):
    return Registry(MonitoredItemRepository(temp_db), HistoryRepository(temp_db))


@pytest.fixture
def cart_repo(temp_db):
    return CartStateRepository(temp_db)


@pytest.fixture
def lifecycle(mock_client, notifier, credentials_alert, error_handler, cart_repo, config_manager):
    return CartLifecycleManager(
        mock_client, notifier, credentials_alert, error_handler,
        cart_repo=cart_repo, config_manager=config_manager
    )


@pytest.fixture
def reserver(mock_client, lifecycle, error_handler, credentials_alert):
    return ReservationAttempter(mock_client, lifecycle, error_handler, credentials_alert)


@pytest.fixture
def watcher(registry, mock_client, reserver, notifier, credentials_alert, error_handler, config_manager):
    return StockWatcher(
        registry, mock_client, reserver, notifier, credentials_alert, error_handler,
        config_manager=config_manager
    )


@pytest.fixture
def item_manager(mock_client, registry, watcher, lifecycle, reserver, notifier,
                 credentials_alert, error_handler, config_manager):
    return ItemManager(
        mock_client, registry, watcher, lifecycle, reserver, notifier,
        credentials_alert, error_handler, config_manager=config_manager
    )


@pytest.fixture
def variants():
    """Factory for option rows, e.g. variants(v111=5, v222=0)."""
    return make_variants


@pytest.fixture
def item_factory():
    """Factory for monitored items."""
    return make_item
