"""
Core operations exposed to the HTTP API.
"""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List

from .cart_lifecycle import CartLifecycleManager
from .error_handler import ErrorCategory, ErrorHandler, CredentialsAlert
from .notification_service import AlertEvent
from .registry import Registry
from .reservation import ReservationAttempter
from .stock_watcher import StockWatcher
from ..config.config_manager import config
from ..models.interfaces import IVeepeeClient, INotifier
from ..models.inventory_data import MonitoredItem, ProductDetails, PRODUCT_URL_TEMPLATE


class ItemManager:
    """Façade over the registry, the stock watcher and the cart lifecycle."""

    def __init__(self, client: IVeepeeClient, registry: Registry, watcher: StockWatcher,
                 lifecycle: CartLifecycleManager, reserver: ReservationAttempter,
                 notifier: INotifier, credentials_alert: CredentialsAlert,
                 error_handler: ErrorHandler, config_manager=None):
        self.logger = logging.getLogger(__name__)
        self.client = client
        self.registry = registry
        self.watcher = watcher
        self.lifecycle = lifecycle
        self.reserver = reserver
        self.notifier = notifier
        self.credentials_alert = credentials_alert
        self.error_handler = error_handler
        self.config = config_manager or config
        self.reserve_on_watch = self.config.get('monitoring.reserve_on_watch', True)
        self.started_at = datetime.utcnow()

    async def start(self) -> None:
        """Load stored state and resume whatever was running."""
        self.registry.load()
        await self.lifecycle.restore()
        if len(self.registry) > 0:
            self.watcher.start()

    async def shutdown(self) -> None:
        await self.watcher.close()
        await self.lifecycle.close()

    def _classify(self, error: Exception, operation: str) -> None:
        category = self.error_handler.record(error, {'operation': operation})
        if category == ErrorCategory.AUTHENTICATION:
            self.credentials_alert.trigger(str(error))

    async def fetch_item(self, sale_id: str, item_id: str) -> ProductDetails:
        """Preview an item's sizes and stock. Errors propagate after classification."""
        try:
            return await self.client.fetch_product_details(sale_id, item_id)
        except Exception as e:
            self._classify(e, 'fetch item')
            raise

    async def watch(self, sale_id: str, item_id: str, variant_ids: Iterable[str]) -> Dict[str, Any]:
        """
        Start watching variants of an item.

        Watched variants that are already in stock are reserved right away
        (``monitoring.reserve_on_watch``) and seeded into ``notified`` so the
        first poll does not fire for them again.
        """
        watched: List[str] = []
        for variant_id in variant_ids:
            if str(variant_id) not in watched:
                watched.append(str(variant_id))
        if not watched:
            raise ValueError("At least one variant id is required")

        details = await self.fetch_item(sale_id, item_id)
        product_info = details.product_info
        already_in_stock = []
        in_stock_ids = set()

        for variant_id in watched:
            snapshot = details.stock.get(variant_id)
            if snapshot is None or not snapshot.in_stock:
                continue

            size = details.sizes[variant_id].size if variant_id in details.sizes else variant_id
            already_in_stock.append(size)
            in_stock_ids.add(variant_id)

            if not self.reserve_on_watch:
                continue

            result = await self.reserver.reserve(sale_id, variant_id)
            if result.success:
                if result.product_info:
                    product_info = replace(result.product_info, size=None)
                self.notifier.notify(AlertEvent.ITEM_RESERVED, {
                    'product_info': product_info,
                    'variant_id': variant_id,
                    'size': size,
                    'quantity': snapshot.quantity,
                    'product_url': PRODUCT_URL_TEMPLATE.format(sale_id=sale_id, item_id=item_id),
                    'reservation': result
                })
            else:
                self.logger.info(f"Could not auto-add {size} to cart: {result.error}")

        item = MonitoredItem(
            sale_id=details.sale_id,
            item_id=details.item_id,
            product_info=product_info,
            sizes=details.sizes,
            previous_stock=details.stock,
            watched_sizes=set(watched),
            notified=in_stock_ids
        )
        self.registry.add_item(item)
        self.registry.record_history(item.sale_id, item.item_id, product_info, details.sizes)
        self.watcher.start()

        self.logger.info(f"Now monitoring {product_info.title} ({item.key})")
        return {
            'success': True,
            'key': item.key,
            'message': f"Now monitoring {product_info.title}",
            'watched_sizes': [item.size_label(v) if v in item.sizes else v for v in watched],
            'already_in_stock': already_in_stock
        }

    def unwatch(self, key: str) -> bool:
        """Stop watching an item. Stops the watcher after the last one."""
        if not self.registry.remove_item(key):
            return False
        if len(self.registry) == 0:
            self.watcher.stop()
        return True

    def reset_notifications(self, key: str) -> bool:
        item = self.registry.get(key)
        if item is None:
            return False
        item.notified.clear()
        self.registry.save_item(item)
        return True

    async def poll_all_now(self) -> Dict[str, Any]:
        return await self.watcher.poll_all()

    async def start_cart_lifecycle(self) -> Dict[str, Any]:
        return await self.lifecycle.start()

    def stop_cart_lifecycle(self) -> Dict[str, Any]:
        return self.lifecycle.stop()

    async def check_cart(self) -> Dict[str, Any]:
        return await self.lifecycle.check_cart()

    async def force_recover(self) -> Dict[str, Any]:
        return await self.lifecycle.force_recover()

    def update_credentials(self, auth_header: str) -> None:
        """Swap the Authorization value and re-arm the credentials alert."""
        self.client.update_credentials(auth_header)
        self.credentials_alert.reset()

    def list_items(self) -> List[Dict[str, Any]]:
        return [item.to_api() for item in self.registry.items()]

    def get_history(self) -> List[Dict[str, Any]]:
        return [record.to_api(record.key in self.registry) for record in self.registry.history()]

    def remove_history(self, key: str) -> bool:
        return self.registry.remove_history(key)

    def clear_history(self) -> None:
        self.registry.clear_history()

    async def probe_stock(self, sale_id: str, item_id: str) -> Any:
        """Raw options payload, bypassing the watcher."""
        return await self.client.fetch_raw_options(sale_id, item_id)

    async def probe_add_to_cart(self, sale_id: str, variant_id: str) -> Dict[str, Any]:
        """Direct add-to-cart, without touching the cart lifecycle."""
        result = await self.client.add_to_cart(sale_id, variant_id)
        return result.to_dict()

    def status(self) -> Dict[str, Any]:
        uptime = (datetime.utcnow() - self.started_at).total_seconds()
        hours, remainder = divmod(int(uptime), 3600)
        minutes, seconds = divmod(remainder, 60)
        cart = self.lifecycle.state
        return {
            'status': 'alive',
            'uptime': f"{hours}h {minutes}m {seconds}s",
            'uptime_seconds': uptime,
            'monitored_items': len(self.registry),
            'is_monitoring': self.watcher.is_running,
            'has_auth': self.client.has_credentials,
            'credentials_alert_sent': self.credentials_alert.is_tripped,
            'cart_recovery': {
                'active': cart.recovery_active,
                'timer_running': self.lifecycle.is_running,
                'has_items': cart.has_items,
                'item_count': len(cart.items),
                'expiration_date': cart.expiration_date,
                'last_check': cart.last_check.isoformat() if cart.last_check else None,
                'last_recover': cart.last_recover.isoformat() if cart.last_recover else None
            },
            'errors': self.error_handler.get_error_summary()['counts'],
            'timestamp': datetime.utcnow().isoformat()
        }
