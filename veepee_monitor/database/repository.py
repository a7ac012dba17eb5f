"""
Repository pattern implementation for database operations.
"""
import logging
from typing import List, Optional, Tuple

from .connection import db, DatabaseConnection
from ..models.inventory_data import MonitoredItem, HistoryRecord, CartState


class Repository:
    """Base repository with common database operations."""

    def __init__(self, database: Optional[DatabaseConnection] = None):
        """Initialize repository."""
        self.logger = logging.getLogger(__name__)
        self.db = database or db

    def _row_to_dict(self, row) -> dict:
        """Convert a SQLite Row to a dictionary."""
        if row is None:
            return None
        return {key: row[key] for key in row.keys()}

    def _execute_transaction(self, queries: List[Tuple[str, Tuple]]) -> bool:
        """Execute multiple queries as a transaction."""
        try:
            for query, params in queries:
                self.db.execute(query, params)
            self.db.commit()
            return True
        except Exception as e:
            self.logger.error(f"Transaction error: {e}")
            self.db.rollback()
            return False


class MonitoredItemRepository(Repository):
    """Repository for items under watch."""

    def save_item(self, item: MonitoredItem) -> bool:
        """Insert or replace a monitored item."""
        try:
            data = item.to_dict()
            self.db.execute(
                '''
                INSERT OR REPLACE INTO monitored_items (
                    key, sale_id, item_id, product_info, sizes,
                    previous_stock, watched_sizes, notified, added_at, last_check
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    data['key'], data['sale_id'], data['item_id'], data['product_info'],
                    data['sizes'], data['previous_stock'], data['watched_sizes'],
                    data['notified'], data['added_at'], data['last_check']
                )
            )
            self.db.commit()
            return True
        except Exception as e:
            self.logger.error(f"Error saving monitored item {item.key}: {e}")
            self.db.rollback()
            return False

    def delete_item(self, key: str) -> bool:
        """Delete a monitored item."""
        try:
            self.db.execute('DELETE FROM monitored_items WHERE key = ?', (key,))
            self.db.commit()
            return True
        except Exception as e:
            self.logger.error(f"Error deleting monitored item {key}: {e}")
            self.db.rollback()
            return False

    def get_item(self, key: str) -> Optional[MonitoredItem]:
        """Get a monitored item by key."""
        try:
            cursor = self.db.execute('SELECT * FROM monitored_items WHERE key = ?', (key,))
            row = cursor.fetchone()
            if not row:
                return None
            return MonitoredItem.from_dict(self._row_to_dict(row))
        except Exception as e:
            self.logger.error(f"Error getting monitored item {key}: {e}")
            return None

    def get_all_items(self) -> List[MonitoredItem]:
        """Load every monitored item."""
        try:
            cursor = self.db.execute('SELECT * FROM monitored_items ORDER BY added_at')
            items = []
            for row in cursor.fetchall():
                try:
                    items.append(MonitoredItem.from_dict(self._row_to_dict(row)))
                except (KeyError, ValueError, TypeError) as e:
                    self.logger.warning(f"Skipping unreadable monitored item {row['key']}: {e}")
            return items
        except Exception as e:
            self.logger.error(f"Error loading monitored items: {e}")
            return []


class HistoryRepository(Repository):
    """Repository for the watch history."""

    def save_record(self, record: HistoryRecord) -> bool:
        """Insert or replace a history record."""
        try:
            data = record.to_dict()
            self.db.execute(
                '''
                INSERT OR REPLACE INTO item_history (
                    key, sale_id, item_id, title, brand, sizes, added_at, last_monitored
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    data['key'], data['sale_id'], data['item_id'], data['title'],
                    data['brand'], data['sizes'], data['added_at'], data['last_monitored']
                )
            )
            self.db.commit()
            return True
        except Exception as e:
            self.logger.error(f"Error saving history record {record.key}: {e}")
            self.db.rollback()
            return False

    def delete_record(self, key: str) -> bool:
        """Delete a single history record."""
        try:
            self.db.execute('DELETE FROM item_history WHERE key = ?', (key,))
            self.db.commit()
            return True
        except Exception as e:
            self.logger.error(f"Error deleting history record {key}: {e}")
            self.db.rollback()
            return False

    def clear(self) -> bool:
        """Delete all history records."""
        try:
            self.db.execute('DELETE FROM item_history')
            self.db.commit()
            return True
        except Exception as e:
            self.logger.error(f"Error clearing history: {e}")
            self.db.rollback()
            return False

    def get_all_records(self) -> List[HistoryRecord]:
        """Load the full history, most recently monitored first."""
        try:
            cursor = self.db.execute('SELECT * FROM item_history ORDER BY last_monitored DESC')
            return [HistoryRecord.from_dict(self._row_to_dict(row)) for row in cursor.fetchall()]
        except Exception as e:
            self.logger.error(f"Error loading history: {e}")
            return []


class CartStateRepository(Repository):
    """Repository for the singleton cart record."""

    def save_state(self, state: CartState) -> bool:
        """Persist the cart state."""
        try:
            data = state.to_dict()
            self.db.execute(
                '''
                INSERT OR REPLACE INTO cart_state (
                    id, has_items, items, expiration_date, last_check,
                    last_recover, recovery_active, updated_at
                ) VALUES (1, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ''',
                (
                    data['has_items'], data['items'], data['expiration_date'],
                    data['last_check'], data['last_recover'], data['recovery_active']
                )
            )
            self.db.commit()
            return True
        except Exception as e:
            self.logger.error(f"Error saving cart state: {e}")
            self.db.rollback()
            return False

    def load_state(self) -> Optional[CartState]:
        """Load the cart state, or None when nothing was stored."""
        try:
            cursor = self.db.execute('SELECT * FROM cart_state WHERE id = 1')
            row = cursor.fetchone()
            if not row:
                return None
            return CartState.from_dict(self._row_to_dict(row))
        except Exception as e:
            self.logger.error(f"Error loading cart state: {e}")
            return None
