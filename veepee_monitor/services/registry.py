"""
In-memory registry of watched items and watch history, backed by SQLite.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from ..database.repository import MonitoredItemRepository, HistoryRepository
from ..models.inventory_data import MonitoredItem, HistoryRecord, ProductInfo, SizeInfo


class Registry:
    """Owns every MonitoredItem and HistoryRecord, keyed ``sale_id-item_id``."""

    def __init__(self, item_repo: Optional[MonitoredItemRepository] = None,
                 history_repo: Optional[HistoryRepository] = None):
        self.logger = logging.getLogger(__name__)
        self.item_repo = item_repo or MonitoredItemRepository()
        self.history_repo = history_repo or HistoryRepository()
        self._items: Dict[str, MonitoredItem] = {}
        self._history: Dict[str, HistoryRecord] = {}

    def load(self) -> None:
        """Load items and history from the store. A failed load leaves the registry empty."""
        try:
            self._items = {item.key: item for item in self.item_repo.get_all_items()}
            self._history = {record.key: record for record in self.history_repo.get_all_records()}
        except Exception as e:
            self.logger.error(f"Failed to load registry, starting empty: {e}")
            self._items = {}
            self._history = {}
        self.logger.info(f"Loaded {len(self._items)} monitored items and {len(self._history)} history records")

    # Monitored items

    def get(self, key: str) -> Optional[MonitoredItem]:
        return self._items.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def keys(self) -> List[str]:
        return list(self._items.keys())

    def items(self) -> List[MonitoredItem]:
        return list(self._items.values())

    def add_item(self, item: MonitoredItem) -> None:
        """Register (or replace) an item and persist it."""
        item.notified &= item.watched_sizes
        self._items[item.key] = item
        self.save_item(item)

    def save_item(self, item: MonitoredItem) -> bool:
        if self._items.get(item.key) is not item:
            # unwatched or re-watched while a poll was in flight
            return False
        return self.item_repo.save_item(item)

    def remove_item(self, key: str) -> bool:
        """Forget an item. Returns False if it was not registered."""
        if self._items.pop(key, None) is None:
            return False
        self.item_repo.delete_item(key)
        return True

    # History

    def record_history(self, sale_id: str, item_id: str, product_info: ProductInfo,
                       sizes: Dict[str, SizeInfo]) -> HistoryRecord:
        """Create or refresh the history entry for an item, keeping its first-seen time."""
        key = MonitoredItem.make_key(sale_id, item_id)
        existing = self._history.get(key)
        now = datetime.utcnow()

        record = HistoryRecord(
            sale_id=sale_id,
            item_id=item_id,
            title=product_info.title or f"Produit {item_id}",
            brand=product_info.brand or 'Veepee',
            sizes=dict(sizes),
            added_at=existing.added_at if existing else now,
            last_monitored=now
        )
        self._history[key] = record
        self.history_repo.save_record(record)
        return record

    def touch_history(self, key: str) -> None:
        """Mark a history entry as polled just now."""
        record = self._history.get(key)
        if record is None:
            return
        record.last_monitored = datetime.utcnow()
        self.history_repo.save_record(record)

    def history(self) -> List[HistoryRecord]:
        """All history entries, most recently monitored first."""
        return sorted(self._history.values(), key=lambda r: r.last_monitored, reverse=True)

    def get_history(self, key: str) -> Optional[HistoryRecord]:
        return self._history.get(key)

    def remove_history(self, key: str) -> bool:
        if self._history.pop(key, None) is None:
            return False
        self.history_repo.delete_record(key)
        return True

    def clear_history(self) -> None:
        self._history.clear()
        self.history_repo.clear()
