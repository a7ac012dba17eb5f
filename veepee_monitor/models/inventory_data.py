"""
Core data models for the Veepee restock monitor.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, List, Dict, Any, Set
import json


PRODUCT_URL_TEMPLATE = "https://www.veepee.fr/gr/product/{sale_id}/{item_id}"


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Accept datetimes or ISO strings, as stored by the repositories."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    return None


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class StockSnapshot:
    """Last observed stock for one variant."""
    quantity: int
    in_stock: bool

    @classmethod
    def from_quantity(cls, quantity: Any) -> 'StockSnapshot':
        """Build a snapshot from a raw remote quantity."""
        try:
            quantity = int(quantity or 0)
        except (TypeError, ValueError):
            quantity = 0
        return cls(quantity=quantity, in_stock=quantity > 0)

    def to_dict(self) -> Dict[str, Any]:
        return {'quantity': self.quantity, 'in_stock': self.in_stock}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StockSnapshot':
        quantity = int(data.get('quantity') or 0)
        return cls(quantity=quantity, in_stock=bool(data.get('in_stock', quantity > 0)))


@dataclass
class SizeInfo:
    """Display metadata for a variant."""
    size: str
    stock_label: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SizeInfo':
        return cls(size=str(data.get('size', '?')), stock_label=data.get('stock_label') or '')


@dataclass
class VariantStock:
    """One option row returned by the catalog options endpoint."""
    variant_id: str
    name: str
    quantity: int
    stock_label: str = ''

    @property
    def in_stock(self) -> bool:
        return self.quantity > 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'VariantStock':
        """Create instance from a raw options entry."""
        snapshot = StockSnapshot.from_quantity(data.get('quantity'))
        return cls(
            variant_id=str(data.get('id')),
            name=str(data.get('name') or '?'),
            quantity=snapshot.quantity,
            stock_label=data.get('stockLabel') or ''
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['in_stock'] = self.in_stock
        return data


@dataclass
class ProductInfo:
    """Normalized product information shown in alerts and listings."""
    title: str
    brand: str = 'Veepee'
    price: str = '-'
    original_price: Optional[str] = None
    discount: str = '-'
    size: Optional[str] = None
    image: Optional[str] = None

    @classmethod
    def placeholder(cls, item_id: str) -> 'ProductInfo':
        """Info used until a cart add reveals the real product name."""
        return cls(title=f"Produit {item_id}")

    @classmethod
    def from_cart_item(cls, item: Dict[str, Any]) -> 'ProductInfo':
        """Normalize a ``last_cart_item`` payload from the add-to-cart endpoint."""
        return cls(
            title=item.get('item_name') or 'Produit',
            brand=item.get('campaign_name') or 'Veepee',
            price=f"{item.get('unit_amount')}€",
            original_price=f"{item.get('unit_MSRP')}€",
            discount=str(item.get('retail_discount_percentage') or '-'),
            size=item.get('size'),
            image=item.get('image')
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProductInfo':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known.setdefault('title', 'Produit')
        return cls(**known)


@dataclass
class ProductDetails:
    """Product preview built from a single options call."""
    sale_id: str
    item_id: str
    product_info: ProductInfo
    sizes: Dict[str, SizeInfo]
    stock: Dict[str, StockSnapshot]

    def to_dict(self) -> Dict[str, Any]:
        """Shape used by the fetch endpoint."""
        return {
            'sale_id': self.sale_id,
            'item_id': self.item_id,
            'product_info': self.product_info.to_dict(),
            'sizes': [
                {
                    'variant_id': variant_id,
                    'size': info.size,
                    'stock_label': info.stock_label,
                    'stock': self.stock[variant_id].quantity if variant_id in self.stock else 0
                }
                for variant_id, info in self.sizes.items()
            ]
        }


@dataclass
class MonitoredItem:
    """A sale/product pair under watch."""
    sale_id: str
    item_id: str
    product_info: ProductInfo
    sizes: Dict[str, SizeInfo] = field(default_factory=dict)
    previous_stock: Dict[str, StockSnapshot] = field(default_factory=dict)
    watched_sizes: Set[str] = field(default_factory=set)
    notified: Set[str] = field(default_factory=set)
    added_at: datetime = None
    last_check: Optional[datetime] = None

    def __post_init__(self):
        if self.added_at is None:
            self.added_at = datetime.utcnow()
        # notified must stay a subset of the watched variants
        self.notified &= self.watched_sizes

    @staticmethod
    def make_key(sale_id: str, item_id: str) -> str:
        return f"{sale_id}-{item_id}"

    @property
    def key(self) -> str:
        return self.make_key(self.sale_id, self.item_id)

    @property
    def product_url(self) -> str:
        return PRODUCT_URL_TEMPLATE.format(sale_id=self.sale_id, item_id=self.item_id)

    def size_label(self, variant_id: str) -> str:
        info = self.sizes.get(variant_id)
        return info.size if info else '?'

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for database storage."""
        return {
            'key': self.key,
            'sale_id': self.sale_id,
            'item_id': self.item_id,
            'product_info': json.dumps(self.product_info.to_dict()),
            'sizes': json.dumps({k: v.to_dict() for k, v in self.sizes.items()}),
            'previous_stock': json.dumps({k: v.to_dict() for k, v in self.previous_stock.items()}),
            'watched_sizes': json.dumps(sorted(self.watched_sizes)),
            'notified': json.dumps(sorted(self.notified)),
            'added_at': _format_datetime(self.added_at),
            'last_check': _format_datetime(self.last_check)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MonitoredItem':
        """Create instance from a database row."""
        def load(value, default):
            if value is None:
                return default
            return json.loads(value) if isinstance(value, str) else value

        return cls(
            sale_id=str(data['sale_id']),
            item_id=str(data['item_id']),
            product_info=ProductInfo.from_dict(load(data.get('product_info'), {})),
            sizes={k: SizeInfo.from_dict(v) for k, v in load(data.get('sizes'), {}).items()},
            previous_stock={
                k: StockSnapshot.from_dict(v) for k, v in load(data.get('previous_stock'), {}).items()
            },
            watched_sizes=set(load(data.get('watched_sizes'), [])),
            notified=set(load(data.get('notified'), [])),
            added_at=_parse_datetime(data.get('added_at')),
            last_check=_parse_datetime(data.get('last_check'))
        )

    def to_api(self) -> Dict[str, Any]:
        """Shape returned by the product listing endpoint."""
        return {
            'key': self.key,
            'sale_id': self.sale_id,
            'item_id': self.item_id,
            'product_info': self.product_info.to_dict(),
            'sizes': {k: v.to_dict() for k, v in self.sizes.items()},
            'watched_sizes': sorted(self.watched_sizes),
            'current_stock': {k: v.to_dict() for k, v in self.previous_stock.items()},
            'notified': sorted(self.notified),
            'last_check': _format_datetime(self.last_check)
        }


@dataclass
class HistoryRecord:
    """An item that has been watched at some point."""
    sale_id: str
    item_id: str
    title: str
    brand: str
    sizes: Dict[str, SizeInfo] = field(default_factory=dict)
    added_at: datetime = None
    last_monitored: datetime = None

    def __post_init__(self):
        now = datetime.utcnow()
        if self.added_at is None:
            self.added_at = now
        if self.last_monitored is None:
            self.last_monitored = now

    @property
    def key(self) -> str:
        return MonitoredItem.make_key(self.sale_id, self.item_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for database storage."""
        return {
            'key': self.key,
            'sale_id': self.sale_id,
            'item_id': self.item_id,
            'title': self.title,
            'brand': self.brand,
            'sizes': json.dumps({k: v.to_dict() for k, v in self.sizes.items()}),
            'added_at': _format_datetime(self.added_at),
            'last_monitored': _format_datetime(self.last_monitored)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryRecord':
        """Create instance from a database row."""
        sizes = data.get('sizes') or {}
        if isinstance(sizes, str):
            sizes = json.loads(sizes)
        return cls(
            sale_id=str(data['sale_id']),
            item_id=str(data['item_id']),
            title=data.get('title') or f"Produit {data['item_id']}",
            brand=data.get('brand') or 'Veepee',
            sizes={k: SizeInfo.from_dict(v) for k, v in sizes.items()},
            added_at=_parse_datetime(data.get('added_at')),
            last_monitored=_parse_datetime(data.get('last_monitored'))
        )

    def to_api(self, currently_monitored: bool = False) -> Dict[str, Any]:
        return {
            'key': self.key,
            'sale_id': self.sale_id,
            'item_id': self.item_id,
            'title': self.title,
            'brand': self.brand,
            'sizes': {k: v.to_dict() for k, v in self.sizes.items()},
            'added_at': _format_datetime(self.added_at),
            'last_monitored': _format_datetime(self.last_monitored),
            'is_currently_monitored': currently_monitored
        }


@dataclass
class CartState:
    """
    The process-wide cart record.

    ``has_items``, ``items`` and ``expiration_date`` only change together,
    through the ``mark_*`` and ``record_reservation`` methods, so a reader
    never observes them half-updated.
    """
    has_items: bool = False
    items: List[Dict[str, Any]] = field(default_factory=list)
    expiration_date: Optional[str] = None
    last_check: Optional[datetime] = None
    last_recover: Optional[datetime] = None
    recovery_active: bool = False

    def mark_items(self, items: List[Dict[str, Any]], expiration_date: Optional[str]) -> None:
        self.has_items = True
        self.items = list(items)
        self.expiration_date = expiration_date

    def mark_empty(self) -> None:
        self.has_items = False
        self.items = []
        self.expiration_date = None

    def mark_recovered(self, items: List[Dict[str, Any]], expiration_date: str) -> None:
        self.mark_items(items, expiration_date)
        self.last_recover = datetime.utcnow()

    def record_reservation(self, expiration_date: Optional[str], item: Optional[Dict[str, Any]] = None) -> None:
        """Seed the state after a successful add-to-cart."""
        items = list(self.items)
        if item:
            items.append(item)
        self.has_items = True
        self.items = items
        self.expiration_date = expiration_date or self.expiration_date

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for database storage."""
        return {
            'has_items': self.has_items,
            'items': json.dumps(self.items),
            'expiration_date': self.expiration_date,
            'last_check': _format_datetime(self.last_check),
            'last_recover': _format_datetime(self.last_recover),
            'recovery_active': self.recovery_active
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CartState':
        items = data.get('items') or []
        if isinstance(items, str):
            items = json.loads(items)
        state = cls(
            has_items=bool(data.get('has_items')),
            items=items,
            expiration_date=data.get('expiration_date'),
            last_check=_parse_datetime(data.get('last_check')),
            last_recover=_parse_datetime(data.get('last_recover')),
            recovery_active=bool(data.get('recovery_active'))
        )
        if not state.has_items:
            state.mark_empty()
        return state

    def to_api(self) -> Dict[str, Any]:
        return {
            'has_items': self.has_items,
            'items': self.items,
            'item_count': len(self.items),
            'expiration_date': self.expiration_date,
            'last_check': _format_datetime(self.last_check),
            'last_recover': _format_datetime(self.last_recover),
            'recovery_active': self.recovery_active
        }


@dataclass
class CartSnapshot:
    """Classified response of the cart endpoint."""
    empty: bool = False
    items: List[Dict[str, Any]] = field(default_factory=list)
    expiration_date: Optional[str] = None
    unit_count: int = 0
    has_delivery_groups: bool = False
    recoverable_items: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_recoverable(self) -> bool:
        return len(self.recoverable_items) > 0

    @property
    def is_active(self) -> bool:
        return self.has_delivery_groups or self.unit_count > 0


@dataclass
class RecoveryResult:
    """Outcome of a recover/extend call."""
    expiration_date: Optional[str]
    items: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.expiration_date)


@dataclass
class ReservationResult:
    """Outcome of an add-to-cart attempt."""
    success: bool
    attempted: bool = True
    product_info: Optional[ProductInfo] = None
    expiration_date: Optional[str] = None
    subtotal: Optional[Any] = None
    error: Optional[str] = None

    @classmethod
    def not_attempted(cls) -> 'ReservationResult':
        return cls(success=False, attempted=False)

    @classmethod
    def failure(cls, error: str) -> 'ReservationResult':
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'attempted': self.attempted,
            'product_info': self.product_info.to_dict() if self.product_info else None,
            'expiration_date': self.expiration_date,
            'subtotal': self.subtotal,
            'error': self.error
        }
