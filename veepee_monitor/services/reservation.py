"""
Reservation attempts triggered by restocks.
"""
import logging

from .cart_lifecycle import CartLifecycleManager
from .error_handler import ErrorCategory, ErrorHandler, CredentialsAlert
from ..models.interfaces import IVeepeeClient
from ..models.inventory_data import ReservationResult


class ReservationAttempter:
    """Adds a variant to the cart and hands the cart over to the lifecycle manager."""

    def __init__(self, client: IVeepeeClient, lifecycle: CartLifecycleManager,
                 error_handler: ErrorHandler, credentials_alert: CredentialsAlert):
        self.logger = logging.getLogger(__name__)
        self.client = client
        self.lifecycle = lifecycle
        self.error_handler = error_handler
        self.credentials_alert = credentials_alert

    async def reserve(self, sale_id: str, variant_id: str) -> ReservationResult:
        """Try to add one unit to the cart. Never raises."""
        self.logger.info(f"Adding to cart: {sale_id}/{variant_id}...")
        try:
            result = await self.client.add_to_cart(sale_id, variant_id)
        except Exception as e:
            category = self.error_handler.record(e, {'operation': 'add to cart', 'variant_id': variant_id})
            if category == ErrorCategory.AUTHENTICATION:
                self.credentials_alert.trigger(str(e))
            return ReservationResult.failure(str(e))

        if not result.success:
            self.logger.warning(f"Add to cart failed for {variant_id}: {result.error}")
            return result

        self.logger.info(f"Added to cart! Expires: {result.expiration_date}")
        try:
            self.lifecycle.record_reservation(result)
            if not self.lifecycle.is_running:
                # the cart is known to be non-empty, skip the emptiness check
                await self.lifecycle.start(skip_initial_check=True)
        except Exception as e:
            self.logger.error(f"Failed to hand reservation to cart lifecycle: {e}")

        return result
