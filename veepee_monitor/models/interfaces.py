"""
Base interfaces for the monitor's collaborators.
"""
from abc import ABC, abstractmethod
from typing import List, Dict, Any

from .inventory_data import (
    VariantStock, ProductDetails, CartSnapshot,
    RecoveryResult, ReservationResult
)


class IVeepeeClient(ABC):
    """Interface for the remote inventory and cart service."""

    @abstractmethod
    async def fetch_variant_stock(self, sale_id: str, item_id: str) -> List[VariantStock]:
        """Fetch current stock for every variant of an item."""
        pass

    @abstractmethod
    async def fetch_product_details(self, sale_id: str, item_id: str) -> ProductDetails:
        """Fetch product info, size mapping and stock for an item."""
        pass

    @abstractmethod
    async def fetch_cart(self) -> CartSnapshot:
        """Fetch and classify the remote cart."""
        pass

    @abstractmethod
    async def recover_cart(self) -> RecoveryResult:
        """Recover or extend the cart hold."""
        pass

    @abstractmethod
    async def add_to_cart(self, sale_id: str, variant_id: str) -> ReservationResult:
        """Add one unit of a variant to the cart."""
        pass

    @abstractmethod
    def update_credentials(self, auth_header: str) -> None:
        """Replace the Authorization value used for later requests."""
        pass

    @property
    @abstractmethod
    def has_credentials(self) -> bool:
        """Whether an Authorization value is configured."""
        pass


class INotifier(ABC):
    """Interface for fire-and-forget alert delivery."""

    @abstractmethod
    def notify(self, event, payload: Dict[str, Any]) -> None:
        """Schedule delivery of an alert and return immediately."""
        pass


class IConfigManager(ABC):
    """Interface for configuration management."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Set configuration value."""
        pass

    @abstractmethod
    def load_config(self, config_path: str) -> None:
        """Load configuration from file."""
        pass

    @abstractmethod
    def validate_config(self) -> bool:
        """Validate configuration values."""
        pass
