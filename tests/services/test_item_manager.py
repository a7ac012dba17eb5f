"""
Tests for the item manager operations.
"""
import asyncio
import pytest

from veepee_monitor.models.inventory_data import (
    CartSnapshot, ProductDetails, ProductInfo, ReservationResult, SizeInfo, StockSnapshot
)
from veepee_monitor.services.notification_service import AlertEvent
from veepee_monitor.services.veepee_client import AuthenticationError, VeepeeAPIError


def product_details(**stock):
    """Details for item 897233-90983689 with sizes S/M/L on variants 111/222/333."""
    return ProductDetails(
        sale_id="897233",
        item_id="90983689",
        product_info=ProductInfo.placeholder("90983689"),
        sizes={"111": SizeInfo(size="S"), "222": SizeInfo(size="M"), "333": SizeInfo(size="L")},
        stock={key.lstrip('v'): StockSnapshot.from_quantity(q) for key, q in stock.items()}
    )


@pytest.fixture
def remote(mock_client, variants):
    """Remote with every size sold out and one item in the cart."""
    mock_client.fetch_product_details.return_value = product_details(v111=0, v222=0, v333=0)
    mock_client.fetch_variant_stock.return_value = variants(v111=0, v222=0, v333=0)
    mock_client.fetch_cart.return_value = CartSnapshot(
        items=[{'productName': 'Robe longue'}], unit_count=1, has_delivery_groups=True
    )
    return mock_client


class TestWatch:

    @pytest.mark.asyncio
    async def test_watch_and_unwatch(self, item_manager, remote, registry):
        result = await item_manager.watch("897233", "90983689", ["111", "222"])

        assert result['success'] is True
        assert result['key'] == "897233-90983689"
        assert result['watched_sizes'] == ["S", "M"]
        assert result['already_in_stock'] == []
        assert len(registry) == 1
        assert len(registry.history()) == 1
        assert item_manager.watcher.is_running is True

        assert item_manager.unwatch("897233-90983689") is True
        assert len(registry) == 0
        assert len(registry.history()) == 1
        assert item_manager.watcher.is_running is False
        await item_manager.shutdown()

    @pytest.mark.asyncio
    async def test_unwatch_unknown_key(self, item_manager):
        assert item_manager.unwatch("1-2") is False

    @pytest.mark.asyncio
    async def test_duplicate_variant_ids_are_merged(self, item_manager, remote, registry):
        await item_manager.watch("897233", "90983689", ["111", "111"])

        assert registry.get("897233-90983689").watched_sizes == {"111"}
        await item_manager.shutdown()

    @pytest.mark.asyncio
    async def test_empty_watch_list_is_rejected(self, item_manager, remote):
        with pytest.raises(ValueError):
            await item_manager.watch("897233", "90983689", [])

        remote.fetch_product_details.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_in_stock_variant_is_reserved_and_seeded(self, item_manager, remote, notifier, registry,
                                                           variants):
        remote.fetch_product_details.return_value = product_details(v111=3, v222=0)
        remote.fetch_variant_stock.return_value = variants(v111=3, v222=0)
        remote.add_to_cart.return_value = ReservationResult(
            success=True,
            product_info=ProductInfo(title="Robe longue", brand="Maison", price="39€", size="S"),
            expiration_date="2026-10-18T12:15:00"
        )

        result = await item_manager.watch("897233", "90983689", ["111", "222"])

        assert result['already_in_stock'] == ["S"]
        remote.add_to_cart.assert_awaited_once_with("897233", "111")
        item = registry.get("897233-90983689")
        assert item.notified == {"111"}
        assert item.product_info.title == "Robe longue"
        assert item.product_info.size is None

        reserved = [c.args[1] for c in notifier.notify.call_args_list if c.args[0] == AlertEvent.ITEM_RESERVED]
        assert len(reserved) == 1
        assert reserved[0]['size'] == "S"
        assert reserved[0]['product_url'] == "https://www.veepee.fr/gr/product/897233/90983689"
        assert item_manager.lifecycle.state.has_items is True
        await item_manager.shutdown()

    @pytest.mark.asyncio
    async def test_reserve_on_watch_disabled(self, item_manager, remote, registry, variants):
        item_manager.reserve_on_watch = False
        remote.fetch_product_details.return_value = product_details(v111=3)
        remote.fetch_variant_stock.return_value = variants(v111=3)

        result = await item_manager.watch("897233", "90983689", ["111"])

        assert result['already_in_stock'] == ["S"]
        remote.add_to_cart.assert_not_awaited()
        assert registry.get("897233-90983689").notified == {"111"}
        await item_manager.shutdown()

    @pytest.mark.asyncio
    async def test_fetch_error_propagates(self, item_manager, remote, registry, error_handler):
        remote.fetch_product_details.side_effect = VeepeeAPIError("HTTP Error 404: Not Found", status=404)

        with pytest.raises(VeepeeAPIError):
            await item_manager.watch("897233", "90983689", ["111"])

        assert len(registry) == 0
        assert error_handler.get_error_summary()['counts']['transient'] == 1


class TestOperations:

    @pytest.mark.asyncio
    async def test_reset_notifications(self, item_manager, registry, item_factory):
        item = item_factory(watched=("111",), notified={"111"})
        registry.add_item(item)

        assert item_manager.reset_notifications(item.key) is True
        assert registry.item_repo.get_item(item.key).notified == set()
        assert item_manager.reset_notifications("1-2") is False

    @pytest.mark.asyncio
    async def test_update_credentials_rearms_alert(self, item_manager, mock_client, credentials_alert,
                                                   notifier, registry, item_factory):
        registry.add_item(item_factory())
        mock_client.fetch_variant_stock.side_effect = AuthenticationError(
            "Unauthorized (401) - Token expired or invalid", status=401
        )
        await item_manager.poll_all_now()
        assert credentials_alert.is_tripped is True

        item_manager.update_credentials("VPMWS new-user:signature")

        mock_client.update_credentials.assert_called_once_with("VPMWS new-user:signature")
        assert credentials_alert.is_tripped is False
        await item_manager.poll_all_now()
        expired = [c for c in notifier.notify.call_args_list if c.args[0] == AlertEvent.CREDENTIALS_EXPIRED]
        assert len(expired) == 2

    @pytest.mark.asyncio
    async def test_history_marks_monitored_items(self, item_manager, remote):
        await item_manager.watch("897233", "90983689", ["111"])
        history = item_manager.get_history()
        assert history[0]['is_currently_monitored'] is True

        item_manager.unwatch("897233-90983689")
        assert item_manager.get_history()[0]['is_currently_monitored'] is False

        assert item_manager.remove_history("897233-90983689") is True
        assert item_manager.get_history() == []
        await item_manager.shutdown()

    @pytest.mark.asyncio
    async def test_start_restores_and_resumes(self, item_manager, remote, registry, item_factory):
        registry.item_repo.save_item(item_factory())

        await item_manager.start()
        await asyncio.sleep(0.01)

        assert "897233-90983689" in registry
        assert item_manager.watcher.is_running is True
        await item_manager.shutdown()

    @pytest.mark.asyncio
    async def test_status(self, item_manager):
        status = item_manager.status()

        assert status['status'] == 'alive'
        assert status['monitored_items'] == 0
        assert status['is_monitoring'] is False
        assert status['has_auth'] is True
        assert status['credentials_alert_sent'] is False
        assert status['cart_recovery']['has_items'] is False

    @pytest.mark.asyncio
    async def test_probe_add_to_cart_bypasses_lifecycle(self, item_manager, mock_client):
        mock_client.add_to_cart.return_value = ReservationResult(success=True, expiration_date="x")

        result = await item_manager.probe_add_to_cart("897233", "111")

        assert result['success'] is True
        assert item_manager.lifecycle.state.has_items is False
