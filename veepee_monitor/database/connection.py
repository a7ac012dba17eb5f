"""
Database connection management for SQLite.
"""
import sqlite3
import logging
from pathlib import Path
from typing import Optional, Tuple, List, Dict, Any
from datetime import datetime

from ..config.environment import Environment


MEMORY_DATABASE = ':memory:'


class DatabaseConnection:
    """SQLite database connection manager."""

    def __init__(self, database_path: Optional[str] = None):
        """Initialize database connection manager."""
        self.logger = logging.getLogger(__name__)

        if database_path:
            self.database_path = database_path
        else:
            self.database_path = Environment.database_path_from_url(Environment.get_database_url())

        self.connection: Optional[sqlite3.Connection] = None

        # Register adapters for datetime
        sqlite3.register_adapter(datetime, lambda dt: dt.isoformat())

    @property
    def is_memory(self) -> bool:
        return self.database_path == MEMORY_DATABASE

    def _ensure_directory_exists(self) -> None:
        """Ensure database directory exists."""
        if self.is_memory:
            return
        db_path = Path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> sqlite3.Connection:
        """Connect to the SQLite database."""
        if self.connection is None:
            try:
                self._ensure_directory_exists()
                self.connection = sqlite3.connect(self.database_path, check_same_thread=False)
                self.connection.row_factory = sqlite3.Row
                self.logger.info(f"Connected to database: {self.database_path}")
            except (sqlite3.Error, OSError) as e:
                self.logger.error(f"Database connection error: {e}")
                raise

        return self.connection

    def close(self) -> None:
        """Close the database connection."""
        if self.connection:
            try:
                self.connection.close()
                self.connection = None
                self.logger.info("Database connection closed")
            except sqlite3.Error as e:
                self.logger.error(f"Error closing database connection: {e}")

    def execute(self, query: str, params: Tuple = ()) -> sqlite3.Cursor:
        """Execute a SQL query."""
        conn = self.connect()
        try:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor
        except sqlite3.Error as e:
            self.logger.error(f"Query execution error: {e}")
            self.logger.error(f"Query: {query}")
            self.logger.error(f"Params: {params}")
            raise

    def commit(self) -> None:
        """Commit the current transaction."""
        if self.connection:
            try:
                self.connection.commit()
            except sqlite3.Error as e:
                self.logger.error(f"Commit error: {e}")
                raise

    def rollback(self) -> None:
        """Rollback the current transaction."""
        if self.connection:
            try:
                self.connection.rollback()
            except sqlite3.Error as e:
                self.logger.error(f"Rollback error: {e}")
                raise

    def create_tables(self) -> None:
        """Create database tables if they don't exist."""
        try:
            # Items currently under watch
            self.execute('''
                CREATE TABLE IF NOT EXISTS monitored_items (
                    key TEXT PRIMARY KEY,
                    sale_id TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    product_info TEXT,
                    sizes TEXT,
                    previous_stock TEXT,
                    watched_sizes TEXT,
                    notified TEXT,
                    added_at TEXT,
                    last_check TEXT
                )
            ''')

            # Every item ever watched
            self.execute('''
                CREATE TABLE IF NOT EXISTS item_history (
                    key TEXT PRIMARY KEY,
                    sale_id TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    title TEXT,
                    brand TEXT,
                    sizes TEXT,
                    added_at TEXT,
                    last_monitored TEXT
                )
            ''')

            # Singleton cart record
            self.execute('''
                CREATE TABLE IF NOT EXISTS cart_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    has_items BOOLEAN DEFAULT FALSE,
                    items TEXT,
                    expiration_date TEXT,
                    last_check TEXT,
                    last_recover TEXT,
                    recovery_active BOOLEAN DEFAULT FALSE,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            self.execute('''
                CREATE INDEX IF NOT EXISTS idx_item_history_last_monitored
                ON item_history(last_monitored)
            ''')

            self.commit()
            self.logger.info("Database tables created successfully")
        except sqlite3.Error as e:
            self.rollback()
            self.logger.error(f"Error creating database tables: {e}")
            raise

    def run_migrations(self, version: int = None) -> int:
        """Run database migrations to update schema."""
        current_version = self._get_db_version()
        target_version = version or len(self._get_migrations())

        if current_version >= target_version:
            self.logger.info(f"Database already at version {current_version}, no migrations needed")
            return current_version

        self.logger.info(f"Running migrations from version {current_version} to {target_version}")

        migrations = self._get_migrations()
        for i in range(current_version, target_version):
            migration = migrations[i]
            self.logger.info(f"Running migration {i+1}: {migration['description']}")

            try:
                for query in migration['queries']:
                    self.execute(query)
                self.commit()
            except sqlite3.Error as e:
                self.rollback()
                self.logger.error(f"Migration {i+1} failed: {e}")
                raise

        self._set_db_version(target_version)
        self.logger.info(f"Database migrated to version {target_version}")
        return target_version

    def _get_db_version(self) -> int:
        """Get current database version."""
        try:
            self.execute('''
                CREATE TABLE IF NOT EXISTS db_version (
                    version INTEGER PRIMARY KEY
                )
            ''')
            self.commit()

            cursor = self.execute('SELECT version FROM db_version')
            row = cursor.fetchone()

            if row:
                return row[0]

            self.execute('INSERT INTO db_version (version) VALUES (0)')
            self.commit()
            return 0

        except sqlite3.Error as e:
            self.logger.error(f"Error getting database version: {e}")
            return 0

    def _set_db_version(self, version: int) -> None:
        """Set current database version."""
        try:
            self.execute('UPDATE db_version SET version = ?', (version,))
            self.commit()
        except sqlite3.Error as e:
            self.rollback()
            self.logger.error(f"Error setting database version: {e}")
            raise

    def _get_migrations(self) -> List[Dict[str, Any]]:
        """Get list of migrations to apply."""
        return [
            {
                'description': 'Seed the singleton cart_state row',
                'queries': [
                    '''
                    INSERT OR IGNORE INTO cart_state (id, has_items, items, recovery_active)
                    VALUES (1, 0, '[]', 0)
                    '''
                ]
            }
        ]

    def initialize(self) -> bool:
        """
        Create the schema and apply migrations.

        If the configured file cannot be opened, fall back to an in-memory
        database so the service still starts with empty state. Returns True
        when the configured database is in use.
        """
        try:
            self.create_tables()
            self.run_migrations()
            return True
        except (sqlite3.Error, OSError) as e:
            self.logger.error(f"Database initialization failed for {self.database_path}: {e}")
            if self.is_memory:
                raise

        self.logger.warning("Falling back to in-memory database, state will not survive a restart")
        self.close()
        self.database_path = MEMORY_DATABASE
        self.create_tables()
        self.run_migrations()
        return False


# Global database connection instance
db = DatabaseConnection()
