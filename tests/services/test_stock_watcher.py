"""
Tests for restock detection in the stock watcher.
"""
import asyncio
import pytest
from unittest.mock import MagicMock, AsyncMock

from veepee_monitor.models.inventory_data import (
    ProductInfo, ReservationResult, StockSnapshot
)
from veepee_monitor.services.notification_service import AlertEvent
from veepee_monitor.services.stock_watcher import StockWatcher
from veepee_monitor.services.veepee_client import AuthenticationError, VeepeeAPIError


@pytest.fixture
def stub_reserver():
    reserver = MagicMock()
    reserver.reserve = AsyncMock(return_value=ReservationResult.failure("Article épuisé"))
    return reserver


@pytest.fixture
def stock_watcher(registry, mock_client, stub_reserver, notifier, credentials_alert,
                  error_handler, config_manager):
    return StockWatcher(
        registry, mock_client, stub_reserver, notifier, credentials_alert, error_handler,
        config_manager=config_manager
    )


def alerts_of(notifier, event):
    return [c for c in notifier.notify.call_args_list if c.args[0] == event]


class TestRestockDetection:
    """Restock transition rules."""

    @pytest.mark.asyncio
    async def test_single_fire_per_in_stock_streak(self, stock_watcher, registry, mock_client,
                                                   stub_reserver, notifier, item_factory, variants):
        """The sequence 0,0,5,5,0,5 fires at the third and sixth polls only."""
        registry.add_item(item_factory(watched=("111",)))
        fired_at = []

        for index, quantity in enumerate([0, 0, 5, 5, 0, 5]):
            mock_client.fetch_variant_stock.return_value = variants(v111=quantity)
            summary = await stock_watcher.poll_all()
            if summary['fired']:
                fired_at.append(index)

        assert fired_at == [2, 5]
        assert stub_reserver.reserve.await_count == 2
        assert len(alerts_of(notifier, AlertEvent.RESTOCK)) == 2

    @pytest.mark.asyncio
    async def test_rearm_when_quantity_returns_to_zero(self, stock_watcher, registry, mock_client,
                                                       item_factory, variants):
        item = item_factory(watched=("111",))
        registry.add_item(item)

        mock_client.fetch_variant_stock.return_value = variants(v111=3)
        await stock_watcher.poll_all()
        assert item.notified == {"111"}

        mock_client.fetch_variant_stock.return_value = variants(v111=0)
        await stock_watcher.poll_all()
        assert item.notified == set()

    @pytest.mark.asyncio
    async def test_rearm_when_variant_disappears(self, stock_watcher, registry, mock_client,
                                                 item_factory, variants):
        item = item_factory(watched=("111", "222"))
        registry.add_item(item)

        mock_client.fetch_variant_stock.return_value = variants(v111=3, v222=2)
        await stock_watcher.poll_all()
        assert item.notified == {"111", "222"}

        mock_client.fetch_variant_stock.return_value = variants(v111=3)
        await stock_watcher.poll_all()
        assert item.notified == {"111"}
        assert set(item.previous_stock) == {"111"}

    @pytest.mark.asyncio
    async def test_unchanged_response_is_idempotent(self, stock_watcher, registry, mock_client,
                                                    item_factory, variants):
        item = item_factory(watched=("111",))
        registry.add_item(item)
        mock_client.fetch_variant_stock.return_value = variants(v111=4, v222=0)

        await stock_watcher.poll_all()
        notified = set(item.notified)
        snapshot = dict(item.previous_stock)

        summary = await stock_watcher.poll_all()

        assert summary['fired'] == 0
        assert item.notified == notified
        assert item.previous_stock == snapshot

    @pytest.mark.asyncio
    async def test_unwatched_variants_never_fire(self, stock_watcher, registry, mock_client,
                                                 stub_reserver, item_factory, variants):
        registry.add_item(item_factory(watched=("111",)))
        mock_client.fetch_variant_stock.return_value = variants(v111=0, v222=7)

        await stock_watcher.poll_all()

        stub_reserver.reserve.assert_not_awaited()

    def test_detect_restocks_replaces_snapshot(self, item_factory):
        item = item_factory(watched=("111",))
        item.previous_stock = {"999": StockSnapshot(quantity=1, in_stock=True)}

        fired = StockWatcher.detect_restocks(item, {"111": StockSnapshot.from_quantity(2)})

        assert fired == ["111"]
        assert item.previous_stock == {"111": StockSnapshot(quantity=2, in_stock=True)}


class TestRestockHandling:
    """What happens once a restock fires."""

    @pytest.mark.asyncio
    async def test_variant_marked_before_reservation(self, stock_watcher, registry, mock_client,
                                                     stub_reserver, item_factory, variants):
        item = item_factory(watched=("111",))
        registry.add_item(item)
        seen = {}

        async def reserve(sale_id, variant_id):
            seen['notified'] = set(item.notified)
            return ReservationResult.failure("nope")

        stub_reserver.reserve.side_effect = reserve
        mock_client.fetch_variant_stock.return_value = variants(v111=1)

        await stock_watcher.poll_all()

        assert seen['notified'] == {"111"}

    @pytest.mark.asyncio
    async def test_alert_carries_reservation_outcome(self, stock_watcher, registry, mock_client,
                                                     stub_reserver, notifier, item_factory, variants):
        registry.add_item(item_factory(watched=("111",)))
        reservation = ReservationResult(
            success=True,
            product_info=ProductInfo(title="Robe longue", brand="Maison", price="39€", size="S"),
            expiration_date="2026-10-18T12:15:00"
        )
        stub_reserver.reserve.return_value = reservation
        mock_client.fetch_variant_stock.return_value = variants(v111=2)

        await stock_watcher.poll_all()

        alert = alerts_of(notifier, AlertEvent.RESTOCK)[0].args[1]
        assert alert['reservation'] is reservation
        assert alert['size'] == "S"
        assert alert['quantity'] == 2
        assert alert['product_info'].title == "Robe longue"

    @pytest.mark.asyncio
    async def test_auto_reserve_disabled_reports_not_attempted(self, registry, mock_client, stub_reserver,
                                                               notifier, credentials_alert, error_handler,
                                                               config_manager, item_factory, variants):
        config_manager.set('monitoring.auto_reserve', False)
        stock_watcher = StockWatcher(
            registry, mock_client, stub_reserver, notifier, credentials_alert, error_handler,
            config_manager=config_manager
        )
        registry.add_item(item_factory(watched=("111",)))
        mock_client.fetch_variant_stock.return_value = variants(v111=2)

        await stock_watcher.poll_all()

        stub_reserver.reserve.assert_not_awaited()
        reservation = alerts_of(notifier, AlertEvent.RESTOCK)[0].args[1]['reservation']
        assert reservation.attempted is False
        assert reservation.success is False

    @pytest.mark.asyncio
    async def test_state_is_persisted_after_poll(self, stock_watcher, registry, mock_client,
                                                 item_factory, variants):
        item = item_factory(watched=("111",))
        registry.add_item(item)
        mock_client.fetch_variant_stock.return_value = variants(v111=5)

        await stock_watcher.poll_all()

        stored = registry.item_repo.get_item(item.key)
        assert stored.notified == {"111"}
        assert stored.previous_stock["111"].quantity == 5
        assert stored.last_check is not None


class TestPollFailures:
    """Per-item failure isolation and the credentials alert."""

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_other_items(self, stock_watcher, registry, mock_client,
                                                     stub_reserver, item_factory, variants):
        registry.add_item(item_factory(item_id="1", watched=("111",)))
        registry.add_item(item_factory(item_id="2", watched=("111",)))

        async def fetch(sale_id, item_id):
            if item_id == "1":
                raise VeepeeAPIError("HTTP Error 502: Bad Gateway", status=502)
            return variants(v111=1)

        mock_client.fetch_variant_stock.side_effect = fetch

        summary = await stock_watcher.poll_all()

        assert summary == {'checked': 2, 'fired': 1, 'failed': 1}
        stub_reserver.reserve.assert_awaited_once_with("897233", "111")

    @pytest.mark.asyncio
    async def test_auth_failures_alert_once_until_reset(self, stock_watcher, registry, mock_client,
                                                        notifier, credentials_alert, item_factory):
        registry.add_item(item_factory())
        mock_client.fetch_variant_stock.side_effect = AuthenticationError(
            "Unauthorized (401) - Token expired or invalid", status=401
        )

        await stock_watcher.poll_all()
        await stock_watcher.poll_all()
        assert len(alerts_of(notifier, AlertEvent.CREDENTIALS_EXPIRED)) == 1

        credentials_alert.reset()
        await stock_watcher.poll_all()
        assert len(alerts_of(notifier, AlertEvent.CREDENTIALS_EXPIRED)) == 2

    @pytest.mark.asyncio
    async def test_transient_failure_does_not_alert(self, stock_watcher, registry, mock_client,
                                                    notifier, error_handler, item_factory):
        registry.add_item(item_factory())
        mock_client.fetch_variant_stock.side_effect = VeepeeAPIError("Connection error on GET: reset")

        await stock_watcher.poll_all()

        assert alerts_of(notifier, AlertEvent.CREDENTIALS_EXPIRED) == []
        assert error_handler.get_error_summary()['counts']['transient'] == 1

    @pytest.mark.asyncio
    async def test_item_unwatched_during_poll_is_skipped(self, stock_watcher, registry, mock_client,
                                                         stub_reserver, item_factory, variants):
        item = item_factory()
        registry.add_item(item)

        async def fetch(sale_id, item_id):
            registry.remove_item(item.key)
            return variants(v111=5)

        mock_client.fetch_variant_stock.side_effect = fetch

        summary = await stock_watcher.poll_all()

        assert summary['fired'] == 0
        stub_reserver.reserve.assert_not_awaited()
        assert registry.item_repo.get_item(item.key) is None

    @pytest.mark.asyncio
    async def test_item_rewatched_during_poll_is_skipped(self, stock_watcher, registry, mock_client,
                                                         stub_reserver, item_factory, variants):
        old = item_factory(watched=("111",))
        registry.add_item(old)
        new = item_factory(watched=("222",))

        async def fetch(sale_id, item_id):
            registry.add_item(new)
            return variants(v111=5, v222=0)

        mock_client.fetch_variant_stock.side_effect = fetch

        summary = await stock_watcher.poll_all()

        assert summary['fired'] == 0
        stub_reserver.reserve.assert_not_awaited()
        assert registry.get(old.key) is new
        assert registry.item_repo.get_item(old.key).watched_sizes == {"222"}

    def test_stale_item_is_not_persisted(self, registry, item_factory):
        old = item_factory(watched=("111",))
        registry.add_item(old)
        registry.add_item(item_factory(watched=("222",)))

        assert registry.save_item(old) is False
        assert registry.item_repo.get_item(old.key).watched_sizes == {"222"}


class TestScheduling:
    """Start and stop of the polling loop."""

    @pytest.mark.asyncio
    async def test_start_polls_immediately(self, stock_watcher, registry, mock_client,
                                           item_factory, variants):
        registry.add_item(item_factory())
        mock_client.fetch_variant_stock.return_value = variants(v111=0)

        assert stock_watcher.start() is True
        assert stock_watcher.start() is False
        await asyncio.sleep(0.05)

        mock_client.fetch_variant_stock.assert_awaited()
        assert stock_watcher.stop() is True
        assert stock_watcher.is_running is False
        await stock_watcher.close()
