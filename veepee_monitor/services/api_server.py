"""
HTTP API for managing watched items and the cart.

Handlers only validate the request shape and delegate to the ItemManager.
Bad input is answered with 400 and never reaches the schedulers.
"""
import logging
from typing import Any, Dict, Optional, Tuple

import psutil
from aiohttp import web

from .item_manager import ItemManager
from ..utils.url_parser import parse_product_url


class RequestValidationError(Exception):
    """Raised by handlers for malformed requests; rendered as HTTP 400."""


def _field(body: Dict[str, Any], name: str, alias: str) -> Any:
    """Read a body field by its snake_case name or its camelCase alias."""
    value = body.get(name)
    return value if value is not None else body.get(alias)


class ApiServer:
    """aiohttp application exposing the monitor's operations."""

    def __init__(self, manager: ItemManager, host: str = '0.0.0.0', port: int = 3000):
        """Initialize the API server."""
        self.manager = manager
        self.host = host
        self.port = port
        self.logger = logging.getLogger(__name__)
        self.app = web.Application(middlewares=[self._error_middleware])
        self.setup_routes()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def setup_routes(self) -> None:
        """Set up HTTP routes."""
        self.app.add_routes([
            web.get('/api/products', self.list_products),
            web.post('/api/products/fetch', self.fetch_product),
            web.post('/api/products/add', self.add_product),
            web.post('/api/products/poll', self.poll_products),
            web.delete('/api/products/{key}', self.remove_product),
            web.post('/api/products/{key}/reset', self.reset_product),
            web.get('/api/history', self.list_history),
            web.delete('/api/history', self.clear_history),
            web.delete('/api/history/{key}', self.remove_history),
            web.get('/api/cart', self.get_cart),
            web.post('/api/cart/check', self.check_cart),
            web.post('/api/cart/recovery/start', self.start_recovery),
            web.post('/api/cart/recovery/stop', self.stop_recovery),
            web.post('/api/cart/recover', self.recover_cart),
            web.post('/api/config/auth', self.update_auth),
            web.get('/health', self.health),
            web.get('/ping', self.ping),
            web.post('/api/test/stock', self.test_stock),
            web.post('/api/test/addtocart', self.test_add_to_cart),
        ])

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler):
        try:
            return await handler(request)
        except RequestValidationError as e:
            return web.json_response({'error': str(e)}, status=400)
        except web.HTTPException:
            raise
        except Exception as e:
            self.logger.error(f"{request.method} {request.path} failed: {e}")
            return web.json_response({'error': str(e)}, status=500)

    async def _json_body(self, request: web.Request) -> Dict[str, Any]:
        if not request.can_read_body:
            return {}
        try:
            body = await request.json()
        except ValueError:
            raise RequestValidationError('Request body must be valid JSON')
        if not isinstance(body, dict):
            raise RequestValidationError('Request body must be a JSON object')
        return body

    def _item_ids(self, body: Dict[str, Any], strict_url: bool) -> Tuple[Optional[str], Optional[str]]:
        sale_id = _field(body, 'sale_id', 'saleId')
        item_id = _field(body, 'item_id', 'itemId')
        url = body.get('url')
        if url:
            parsed = parse_product_url(str(url))
            if parsed:
                sale_id, item_id = parsed
            elif strict_url:
                raise RequestValidationError('Invalid Veepee URL format')
        return (str(sale_id) if sale_id else None), (str(item_id) if item_id else None)

    # Products

    async def list_products(self, request: web.Request) -> web.Response:
        return web.json_response({
            'products': self.manager.list_items(),
            'is_monitoring': self.manager.watcher.is_running
        })

    async def fetch_product(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        sale_id, item_id = self._item_ids(body, strict_url=True)
        if not sale_id or not item_id:
            raise RequestValidationError('Sale ID and Item ID are required')

        details = await self.manager.fetch_item(sale_id, item_id)
        return web.json_response(details.to_dict())

    async def add_product(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        sale_id, item_id = self._item_ids(body, strict_url=False)
        watched_sizes = _field(body, 'watched_sizes', 'watchedSizes')

        if not sale_id or not item_id or not isinstance(watched_sizes, list) or not watched_sizes:
            raise RequestValidationError('Sale ID, Item ID, and watched_sizes array are required')

        result = await self.manager.watch(sale_id, item_id, [str(v) for v in watched_sizes])
        return web.json_response(result)

    async def poll_products(self, request: web.Request) -> web.Response:
        summary = await self.manager.poll_all_now()
        return web.json_response({'success': True, **summary})

    async def remove_product(self, request: web.Request) -> web.Response:
        if not self.manager.unwatch(request.match_info['key']):
            return web.json_response({'error': 'Product not found'}, status=404)
        return web.json_response({'success': True, 'message': 'Product removed'})

    async def reset_product(self, request: web.Request) -> web.Response:
        if not self.manager.reset_notifications(request.match_info['key']):
            return web.json_response({'error': 'Product not found'}, status=404)
        return web.json_response({'success': True, 'message': 'Notifications reset'})

    # History

    async def list_history(self, request: web.Request) -> web.Response:
        return web.json_response({'history': self.manager.get_history()})

    async def clear_history(self, request: web.Request) -> web.Response:
        self.manager.clear_history()
        return web.json_response({'success': True, 'message': 'History cleared'})

    async def remove_history(self, request: web.Request) -> web.Response:
        if not self.manager.remove_history(request.match_info['key']):
            return web.json_response({'error': 'Item not found in history'}, status=404)
        return web.json_response({'success': True, 'message': 'Item removed from history'})

    # Cart

    async def get_cart(self, request: web.Request) -> web.Response:
        return web.json_response(self.manager.lifecycle.summary())

    async def check_cart(self, request: web.Request) -> web.Response:
        result = await self.manager.check_cart()
        return web.json_response({**result, 'cart_state': self.manager.lifecycle.summary()})

    async def start_recovery(self, request: web.Request) -> web.Response:
        result = await self.manager.start_cart_lifecycle()
        return web.json_response({**result, 'cart_state': self.manager.lifecycle.summary()})

    async def stop_recovery(self, request: web.Request) -> web.Response:
        result = self.manager.stop_cart_lifecycle()
        return web.json_response({**result, 'cart_state': self.manager.lifecycle.summary()})

    async def recover_cart(self, request: web.Request) -> web.Response:
        result = await self.manager.force_recover()
        return web.json_response({'result': result, 'cart_state': self.manager.lifecycle.summary(),
                                  'success': result['success']})

    # Config and health

    async def update_auth(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        auth_header = _field(body, 'auth_header', 'authHeader')
        if not isinstance(auth_header, str) or not auth_header.strip():
            raise RequestValidationError('auth_header is required')

        try:
            self.manager.update_credentials(auth_header)
        except ValueError as e:
            raise RequestValidationError(str(e))
        return web.json_response({'success': True, 'message': 'Auth updated'})

    async def health(self, request: web.Request) -> web.Response:
        status = self.manager.status()
        try:
            memory_info = psutil.Process().memory_info()
            status['memory_mb'] = round(memory_info.rss / (1024 * 1024), 1)
        except psutil.Error as e:
            self.logger.warning(f"Could not read process memory: {e}")
        return web.json_response(status)

    async def ping(self, request: web.Request) -> web.Response:
        return web.Response(text='pong')

    # Diagnostics

    async def test_stock(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        sale_id, item_id = self._item_ids(body, strict_url=False)
        if not sale_id or not item_id:
            raise RequestValidationError('sale_id and item_id are required')

        options = await self.manager.probe_stock(sale_id, item_id)
        return web.json_response({'success': True, 'options': options})

    async def test_add_to_cart(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        sale_id = _field(body, 'sale_id', 'saleId')
        variant_id = _field(body, 'product_id', 'productId')
        if not sale_id or not variant_id:
            raise RequestValidationError('sale_id and product_id are required')

        result = await self.manager.probe_add_to_cart(str(sale_id), str(variant_id))
        return web.json_response({'success': result['success'], 'result': result})

    async def start(self) -> None:
        """Start serving."""
        try:
            self._runner = web.AppRunner(self.app)
            await self._runner.setup()
            self._site = web.TCPSite(self._runner, self.host, self.port)
            await self._site.start()
            self.logger.info(f"API server started on http://{self.host}:{self.port}")
        except Exception as e:
            self.logger.error(f"Failed to start API server: {e}")
            raise

    async def stop(self) -> None:
        """Stop serving."""
        if self._runner:
            try:
                await self._runner.cleanup()
                self._runner = None
                self.logger.info("API server stopped")
            except Exception as e:
                self.logger.error(f"Error stopping API server: {e}")
