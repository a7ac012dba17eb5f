"""
Stock polling and restock-transition detection.

For each watched variant the watcher compares the new quantity with the one
seen on the previous poll. A variant fires when it was out of stock (or never
seen), is now in stock and has not already fired during the current in-stock
streak. Firing adds the variant to ``notified`` before anything is awaited,
then tries a reservation and sends one RESTOCK alert with the outcome. A
variant leaves ``notified`` once its quantity drops to zero or the remote
stops reporting it, which re-arms it for the next restock.
"""
import logging
from datetime import datetime
from dataclasses import replace
from typing import Any, Dict, List

from .error_handler import ErrorCategory, ErrorHandler, CredentialsAlert
from .notification_service import AlertEvent
from .registry import Registry
from .reservation import ReservationAttempter
from .scheduler import PeriodicTask
from ..config.config_manager import config
from ..models.interfaces import IVeepeeClient, INotifier
from ..models.inventory_data import MonitoredItem, ReservationResult, StockSnapshot


class StockWatcher:
    """Polls every monitored item on a fixed interval."""

    def __init__(self, registry: Registry, client: IVeepeeClient,
                 reserver: ReservationAttempter, notifier: INotifier,
                 credentials_alert: CredentialsAlert, error_handler: ErrorHandler,
                 config_manager=None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry
        self.client = client
        self.reserver = reserver
        self.notifier = notifier
        self.credentials_alert = credentials_alert
        self.error_handler = error_handler
        self.config = config_manager or config

        self.interval = self.config.get('monitoring.stock_interval', 60)
        self.auto_reserve = self.config.get('monitoring.auto_reserve', True)
        self._timer = PeriodicTask('Stock watcher', self.poll_all, self.interval)

    @property
    def is_running(self) -> bool:
        return self._timer.is_running

    def start(self) -> bool:
        """Start polling, beginning with an immediate poll."""
        return self._timer.start(immediate=True)

    def stop(self) -> bool:
        return self._timer.stop()

    async def close(self) -> None:
        await self._timer.close()

    async def poll_all(self) -> Dict[str, Any]:
        """Poll every item once. One item's failure never stops the others."""
        checked = fired = failed = 0

        for key in self.registry.keys():
            item = self.registry.get(key)
            if item is None:
                continue

            checked += 1
            try:
                fired += await self.poll_item(item)
            except Exception as e:
                failed += 1
                category = self.error_handler.record(e, {'operation': 'stock poll', 'item': key})
                if category == ErrorCategory.AUTHENTICATION:
                    self.credentials_alert.trigger(str(e))

        return {'checked': checked, 'fired': fired, 'failed': failed}

    async def poll_item(self, item: MonitoredItem) -> int:
        """Poll a single item. Returns the number of restocks that fired."""
        variants = await self.client.fetch_variant_stock(item.sale_id, item.item_id)

        if self.registry.get(item.key) is not item:
            self.logger.debug(f"{item.key} was unwatched or replaced during the poll, discarding result")
            return 0

        self.logger.info(f"Checking {item.product_info.title}")
        current = {v.variant_id: StockSnapshot.from_quantity(v.quantity) for v in variants}
        fired = self.detect_restocks(item, current)

        item.last_check = datetime.utcnow()
        self.registry.save_item(item)
        self.registry.touch_history(item.key)

        for variant_id in fired:
            await self._handle_restock(item, variant_id, current[variant_id])

        return len(fired)

    @staticmethod
    def detect_restocks(item: MonitoredItem, current: Dict[str, StockSnapshot]) -> List[str]:
        """
        Diff ``current`` against the item's previous snapshot.

        Mutates ``notified`` and replaces ``previous_stock`` in one
        synchronous step, and returns the variants that fired.
        """
        fired = []

        for variant_id, snapshot in current.items():
            previous = item.previous_stock.get(variant_id)
            was_out_of_stock = previous is None or previous.quantity == 0

            if (variant_id in item.watched_sizes and was_out_of_stock
                    and snapshot.in_stock and variant_id not in item.notified):
                item.notified.add(variant_id)
                fired.append(variant_id)

            if variant_id in item.notified and not snapshot.in_stock:
                item.notified.discard(variant_id)

        # variants the remote no longer reports are re-armed too
        item.notified &= set(current)
        item.previous_stock = dict(current)
        return fired

    async def _handle_restock(self, item: MonitoredItem, variant_id: str,
                              snapshot: StockSnapshot) -> None:
        size = item.size_label(variant_id)
        self.logger.info(f"NEW STOCK: {item.key} {size} ({variant_id}) - {snapshot.quantity} units!")

        if self.auto_reserve:
            reservation = await self.reserver.reserve(item.sale_id, variant_id)
        else:
            reservation = ReservationResult.not_attempted()

        if reservation.success and reservation.product_info:
            # the cart response carries the real product name and price
            info = reservation.product_info
            item.product_info = replace(info, size=None)
            self.registry.save_item(item)
            self.registry.record_history(item.sale_id, item.item_id, item.product_info, item.sizes)

        self.notifier.notify(AlertEvent.RESTOCK, {
            'product_info': item.product_info,
            'variant_id': variant_id,
            'size': size,
            'quantity': snapshot.quantity,
            'product_url': item.product_url,
            'reservation': reservation
        })
