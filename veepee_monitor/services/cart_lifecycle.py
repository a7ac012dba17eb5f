"""
Cart lifecycle management.

The manager polls the remote cart on its own timer and moves the shared
CartState between four states:

* No-Cart    - ``has_items`` is false.
* Active     - the cart holds items that have not expired.
* Expiring   - the remote lists the items as recoverable; a recover call
               renews the hold.
* Recovering - the recover call itself is in flight. A failure here is an
               ordinary poll failure and leaves the previous state intact.

An empty cart while ``has_items`` is set is the only event that stops the
timer on its own. State is written with synchronous CartState methods and
persisted before each public coroutine returns, so a restart can resume
the timer when ``recovery_active`` and ``has_items`` are both found set.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .error_handler import ErrorCategory, ErrorHandler, CredentialsAlert
from .notification_service import AlertEvent
from .scheduler import PeriodicTask
from ..config.config_manager import config
from ..database.repository import CartStateRepository
from ..models.interfaces import IVeepeeClient, INotifier
from ..models.inventory_data import CartState, RecoveryResult, ReservationResult


class CartLifecycleManager:
    """Keeps the cart reservation alive until checkout or abandonment."""

    def __init__(self, client: IVeepeeClient, notifier: INotifier,
                 credentials_alert: CredentialsAlert, error_handler: ErrorHandler,
                 cart_repo: Optional[CartStateRepository] = None,
                 config_manager=None, state: Optional[CartState] = None):
        self.logger = logging.getLogger(__name__)
        self.client = client
        self.notifier = notifier
        self.credentials_alert = credentials_alert
        self.error_handler = error_handler
        self.cart_repo = cart_repo or CartStateRepository()
        self.config = config_manager or config
        self.state = state or CartState()

        self.recovery_interval = self.config.get('cart.recovery_interval', 13 * 60)
        self._timer = PeriodicTask('Cart lifecycle', self._tick, self.recovery_interval)

    @property
    def is_running(self) -> bool:
        return self._timer.is_running

    async def _tick(self) -> None:
        # a tick from a timer stopped mid-flight must not restart it
        await self.check_cart(auto_start=False)

    async def check_cart(self, auto_start: bool = True) -> Dict[str, Any]:
        """Poll the cart once and apply the resulting transition."""
        self.logger.info("Checking cart status...")
        try:
            snapshot = await self.client.fetch_cart()
        except Exception as e:
            return self._handle_failure(e, 'cart check')

        self.state.last_check = datetime.utcnow()

        if snapshot.empty:
            self.logger.info("Cart is empty")
            if self.state.has_items:
                self.state.mark_empty()
                self._halt()
                self.notifier.notify(AlertEvent.CART_EMPTIED, {})
            self._persist()
            return {'success': False, 'reason': 'empty'}

        if snapshot.is_recoverable:
            self.logger.info(f"Cart expired, recovering {len(snapshot.recoverable_items)} items...")
            try:
                recovered = await self.client.recover_cart()
            except Exception as e:
                self._persist()
                return self._handle_failure(e, 'cart recover')

            if recovered.success:
                self._apply_recovery(recovered, auto_start=auto_start)
                return {
                    'success': True,
                    'items': len(recovered.items),
                    'expiration_date': recovered.expiration_date,
                    'recovered': True
                }
            self.logger.warning("Recover call returned no expiration date")

        if snapshot.is_active:
            self.state.mark_items(snapshot.items, snapshot.expiration_date)
            if auto_start and snapshot.items:
                self._ensure_running()
            self._persist()
            self.logger.info(f"Cart has {len(snapshot.items)} items, expires: {snapshot.expiration_date}")
            return {
                'success': True,
                'items': len(snapshot.items),
                'expiration_date': snapshot.expiration_date,
                'needs_recovery': False
            }

        self._persist()
        return {'success': False, 'reason': 'unknown'}

    def _apply_recovery(self, recovered: RecoveryResult, auto_start: bool = True) -> None:
        self.state.mark_recovered(recovered.items, recovered.expiration_date)
        if auto_start:
            self._ensure_running()
        self._persist()
        self.logger.info(f"Cart recovered! New expiration: {recovered.expiration_date}")
        self.notifier.notify(AlertEvent.CART_EXTENDED, {
            'items': list(recovered.items),
            'expiration_date': recovered.expiration_date
        })

    def _ensure_running(self) -> None:
        if self._timer.is_running:
            return
        self.logger.info("Items in cart - auto-starting cart lifecycle")
        self.state.recovery_active = True
        self._timer.start(immediate=False)

    def _halt(self) -> None:
        self._timer.stop()
        self.state.recovery_active = False

    def _handle_failure(self, error: Exception, operation: str) -> Dict[str, Any]:
        category = self.error_handler.record(error, {'operation': operation})
        if category == ErrorCategory.AUTHENTICATION:
            self.credentials_alert.trigger(str(error))
        return {'success': False, 'error': str(error)}

    def _persist(self) -> None:
        self.cart_repo.save_state(self.state)

    async def start(self, skip_initial_check: bool = False) -> Dict[str, Any]:
        """Start the recurring cart poll, with one immediate check."""
        if self.is_running:
            self.logger.info("Cart lifecycle already running")
            return {'success': True, 'message': 'Already running'}

        if not skip_initial_check:
            try:
                snapshot = await self.client.fetch_cart()
            except Exception as e:
                result = self._handle_failure(e, 'cart start')
                result['message'] = f"Cart check failed: {e}"
                return result

            if snapshot.empty:
                self.logger.info("Cannot start cart lifecycle - cart is empty")
                return {'success': False, 'message': 'Cart is empty'}

            if self.is_running:
                return {'success': True, 'message': 'Already running'}

        self.state.recovery_active = True
        self._timer.start(immediate=True)
        self._persist()
        self.logger.info(f"Cart lifecycle started (interval: {self.recovery_interval / 60:g} min)")
        return {'success': True, 'message': 'Cart recovery started'}

    def stop(self) -> Dict[str, Any]:
        """Cancel the recurring poll. An in-flight poll still completes."""
        self._halt()
        self._persist()
        return {'success': True, 'message': 'Cart recovery stopped'}

    async def force_recover(self) -> Dict[str, Any]:
        """
        Recover/extend the cart on demand.

        Errors propagate to the caller after being classified.
        """
        try:
            recovered = await self.client.recover_cart()
        except Exception as e:
            self._handle_failure(e, 'manual cart recover')
            raise

        if recovered.success:
            self._apply_recovery(recovered, auto_start=True)

        return {
            'success': recovered.success,
            'items': len(recovered.items),
            'expiration_date': recovered.expiration_date
        }

    def record_reservation(self, result: ReservationResult) -> None:
        """Seed the cart state from a successful add-to-cart."""
        item = None
        if result.product_info:
            item = {
                'productName': result.product_info.title,
                'brand': result.product_info.brand,
                'size': result.product_info.size,
                'price': result.product_info.price
            }
        self.state.record_reservation(result.expiration_date, item)
        self._persist()

    async def restore(self) -> None:
        """Load the stored state and resume the timer if it was running."""
        stored = self.cart_repo.load_state()
        if stored is not None:
            self.state = stored

        if self.state.recovery_active and self.state.has_items:
            self.logger.info("Resuming cart lifecycle from stored state")
            self.state.recovery_active = False
            await self.start(skip_initial_check=True)
        elif self.state.recovery_active:
            self.state.recovery_active = False
            self._persist()

        self.logger.info(f"Loaded cart state ({len(self.state.items)} items)")

    def summary(self) -> Dict[str, Any]:
        data = self.state.to_api()
        data['timer_running'] = self.is_running
        data['recovery_interval_seconds'] = self.recovery_interval
        data['recovery_interval_minutes'] = self.recovery_interval / 60
        return data

    async def close(self) -> None:
        await self._timer.close()
