"""
Async client for the Veepee catalog and cart APIs.
"""
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from ..config.config_manager import config
from ..models.interfaces import IVeepeeClient
from ..models.inventory_data import (
    VariantStock, ProductDetails, ProductInfo, SizeInfo, StockSnapshot,
    CartSnapshot, RecoveryResult, ReservationResult
)

OPTIONS_PATH = '/api/catalog/v1/sale/{sale_id}/item/{item_id}/options'
CART_PATH = '/api/cartproxy/orderpiper/cart/v3'
RECOVER_PATH = '/api/cartproxy/orderpiper/cart/v3/recover'
ADD_ITEM_PATH = '/api/cartproxy/v1/item'


class VeepeeAPIError(Exception):
    """A failed remote call. Retried on the next cycle."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class AuthenticationError(VeepeeAPIError):
    """The remote rejected the configured credentials."""


class MalformedResponseError(VeepeeAPIError):
    """The remote answered with a body that is not valid JSON."""


def flatten_cart_items(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Collect line items from ``deliveryGroups[].cartItemGroups[].items[]``."""
    items: List[Dict[str, Any]] = []
    for group in data.get('deliveryGroups') or []:
        for cart_group in group.get('cartItemGroups') or []:
            items.extend(cart_group.get('items') or [])
    return items


class VeepeeClient(IVeepeeClient):
    """
    HTTP client for the Veepee mobile API.

    The Authorization value is opaque: it is sent as configured and only
    replaced through ``update_credentials``.
    """

    def __init__(self, config_manager=None, session: Optional[aiohttp.ClientSession] = None):
        """Initialize the client from the ``veepee`` and ``cart`` config sections."""
        self.config = config_manager or config
        veepee_config = self.config.get_veepee_config()

        self.base_url = veepee_config.get('base_url', 'https://www.veepee.fr').rstrip('/')
        self.app_version = veepee_config.get('app_version', '6.206.0')
        self.request_timeout = veepee_config.get('request_timeout', 30)
        self.treat_unparseable_as_empty = bool(self.config.get('cart.treat_unparseable_as_empty', False))

        self._auth_header = (veepee_config.get('auth_header') or '').strip()
        self._owns_session = session is None
        self.session = session
        self.logger = logging.getLogger(__name__)

    @property
    def has_credentials(self) -> bool:
        return bool(self._auth_header)

    def update_credentials(self, auth_header: str) -> None:
        """Replace the Authorization value used on subsequent requests."""
        value = (auth_header or '').strip()
        if not value:
            raise ValueError("Authorization value must not be empty")
        self._auth_header = value
        self.logger.info(f"Authorization updated: {value[:30]}...")

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create the shared aiohttp session."""
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self.session

    def _build_headers(self, with_body: bool = False) -> Dict[str, str]:
        vp_date = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S')
        headers = {
            'Accept': 'application/json',
            'X-VP-Date': vp_date,
            'Authorization': self._auth_header,
            'Brand': 'Apple-iPhone',
            'Accept-Language': 'fr-FR,fr;q=0.9',
            'x-vp-version': self.app_version,
            'User-Agent': f'vp-iphone {self.app_version} sysVer 26.2-iOS',
            'x-vp-device': '1',
            'X-VP-DeviceID': '1'
        }
        if with_body:
            headers['Content-Type'] = 'application/json; charset=utf-8'
        return headers

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> str:
        """
        Perform a request and return the raw response text.

        Raises:
            AuthenticationError: on HTTP 401/403
            VeepeeAPIError: on any other HTTP error or a transport failure
        """
        if not self._auth_header:
            raise AuthenticationError("No authorization configured - token missing")

        session = await self.get_session()
        url = f"{self.base_url}{path}"

        try:
            async with session.request(
                method, url,
                headers=self._build_headers(with_body=body is not None),
                json=body
            ) as response:
                text = await response.text()

                if response.status in (401, 403):
                    raise AuthenticationError(
                        f"Unauthorized ({response.status}) - Token expired or invalid",
                        status=response.status
                    )

                if response.status >= 400:
                    raise VeepeeAPIError(f"HTTP Error {response.status}: {text[:200]}", status=response.status)

                return text

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise VeepeeAPIError(f"Connection error on {method} {path}: {e}") from e

    @staticmethod
    def _parse_json(text: str) -> Any:
        try:
            return json.loads(text)
        except ValueError as e:
            raise MalformedResponseError(f"Parse error: {e} - Raw: {text[:200]}")

    async def fetch_variant_stock(self, sale_id: str, item_id: str) -> List[VariantStock]:
        """Fetch the option rows (one per variant) for an item."""
        path = OPTIONS_PATH.format(sale_id=sale_id, item_id=item_id)
        data = self._parse_json(await self._request('GET', path))

        if not isinstance(data, list):
            raise MalformedResponseError(f"Parse error: expected a list of options for {sale_id}-{item_id}")

        return [VariantStock.from_api(option) for option in data if isinstance(option, dict)]

    async def fetch_product_details(self, sale_id: str, item_id: str) -> ProductDetails:
        """
        Build the product preview from the options call.

        The options endpoint carries no product name, so the title stays a
        placeholder until an add-to-cart response supplies the real one.
        """
        variants = await self.fetch_variant_stock(sale_id, item_id)
        return ProductDetails(
            sale_id=str(sale_id),
            item_id=str(item_id),
            product_info=ProductInfo.placeholder(item_id),
            sizes={v.variant_id: SizeInfo(size=v.name, stock_label=v.stock_label) for v in variants},
            stock={v.variant_id: StockSnapshot.from_quantity(v.quantity) for v in variants}
        )

    async def fetch_cart(self) -> CartSnapshot:
        """
        Fetch and classify the cart.

        An empty body is the remote's way of saying the cart is empty. Any
        other unparseable body is reported as ``MalformedResponseError``
        unless ``cart.treat_unparseable_as_empty`` is set.
        """
        text = await self._request('GET', CART_PATH)
        if not text or not text.strip():
            return CartSnapshot(empty=True)

        try:
            data = self._parse_json(text)
        except MalformedResponseError:
            if self.treat_unparseable_as_empty:
                self.logger.warning("Unparseable cart response treated as empty cart")
                return CartSnapshot(empty=True)
            raise

        if not isinstance(data, dict):
            raise MalformedResponseError("Parse error: cart response is not an object")

        if data.get('empty'):
            return CartSnapshot(empty=True)

        recoverable = (data.get('recoverableItems') or {}).get('itemList') or []
        try:
            unit_count = int(data.get('unitCount') or 0)
        except (TypeError, ValueError):
            unit_count = 0

        return CartSnapshot(
            empty=False,
            items=flatten_cart_items(data),
            expiration_date=data.get('expirationDate'),
            unit_count=unit_count,
            has_delivery_groups=bool(data.get('deliveryGroups')),
            recoverable_items=list(recoverable)
        )

    async def recover_cart(self) -> RecoveryResult:
        """Ask the remote to renew the cart hold."""
        text = await self._request('POST', RECOVER_PATH, {'dismissedProducts': []})
        data = self._parse_json(text)
        if not isinstance(data, dict):
            raise MalformedResponseError("Parse error: recover response is not an object")
        return RecoveryResult(expiration_date=data.get('expirationDate'), items=flatten_cart_items(data))

    async def add_to_cart(self, sale_id: str, variant_id: str) -> ReservationResult:
        """Add one unit of a variant to the cart."""
        body = {
            'context': {
                'origin': 0,
                'sale_id': sale_id
            },
            'order_to_reopen': {
                'order_id': None
            },
            'product_id': variant_id,
            'quantity': 1,
            'cart_type': 'fs'
        }
        data = self._parse_json(await self._request('POST', ADD_ITEM_PATH, body))

        if isinstance(data, dict) and data.get('last_cart_item'):
            return ReservationResult(
                success=True,
                product_info=ProductInfo.from_cart_item(data['last_cart_item']),
                expiration_date=data.get('expiration_date'),
                subtotal=data.get('subtotal')
            )

        return ReservationResult.failure("Add to cart response did not include the item")

    async def fetch_raw_options(self, sale_id: str, item_id: str) -> Any:
        """Return the untouched options payload, for diagnostics."""
        path = OPTIONS_PATH.format(sale_id=sale_id, item_id=item_id)
        return self._parse_json(await self._request('GET', path))

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
