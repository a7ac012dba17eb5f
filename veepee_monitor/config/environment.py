"""
Environment-specific configuration handling.
"""
import os
import sys
import logging
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Environment:
    """Environment configuration handler."""

    @staticmethod
    def get_env() -> str:
        """Get current environment (development, production, testing)."""
        return os.getenv('ENVIRONMENT', 'development').lower()

    @staticmethod
    def is_development() -> bool:
        """Check if running in development environment."""
        return Environment.get_env() == 'development'

    @staticmethod
    def is_production() -> bool:
        """Check if running in production environment."""
        return Environment.get_env() == 'production'

    @staticmethod
    def get_data_dir() -> Path:
        """Get data directory path."""
        data_dir = os.getenv('DATA_DIR', 'data')
        path = Path(data_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @staticmethod
    def get_logs_dir() -> Path:
        """Get logs directory path."""
        logs_dir = os.getenv('LOGS_DIR', 'logs')
        path = Path(logs_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @staticmethod
    def get_config_dir() -> Path:
        """Get configuration directory path."""
        config_dir = os.getenv('CONFIG_DIR', 'config')
        path = Path(config_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @staticmethod
    def get_database_url() -> str:
        """Get database URL from environment."""
        default_url = f"sqlite:///{Environment.get_data_dir()}/veepee_monitor.db"
        return os.getenv('DATABASE_URL', default_url)

    @staticmethod
    def database_path_from_url(database_url: str) -> str:
        """Turn a sqlite:/// URL into a filesystem path."""
        if database_url.startswith('sqlite:///'):
            return database_url[len('sqlite:///'):]
        return database_url

    @staticmethod
    def get_log_level() -> str:
        """Get logging level from environment."""
        return os.getenv('LOG_LEVEL', 'INFO').upper()

    @staticmethod
    def setup_basic_logging():
        """Set up basic logging before config is loaded."""
        log_level = Environment.get_log_level()
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

        logging.basicConfig(
            level=getattr(logging, log_level, logging.INFO),
            format=log_format,
            handlers=[logging.StreamHandler(sys.stdout)]
        )

        logger = logging.getLogger(__name__)
        logger.info(f"Basic logging initialized at level {log_level}")
