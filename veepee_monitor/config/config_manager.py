"""
Configuration management for the Veepee restock monitor.
"""
import os
import yaml
import json
from typing import Any, Dict, Optional
from pathlib import Path

from ..models.interfaces import IConfigManager


class ConfigManager(IConfigManager):
    """Configuration manager implementation."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager."""
        self._config: Dict[str, Any] = {}
        self._config_path = config_path
        self._load_default_config()
        self._load_environment_variables()

        if config_path:
            self.load_config(config_path)

    def _load_default_config(self) -> None:
        """Load default configuration values."""
        self._config = {
            # Remote API settings
            'veepee': {
                'base_url': 'https://www.veepee.fr',
                'auth_header': '',
                'checkout_url': 'https://www.veepee.fr/cart',
                'app_version': '6.206.0',
                'request_timeout': 30
            },

            # Stock watcher settings
            'monitoring': {
                'stock_interval': 60,
                'auto_reserve': True,
                'reserve_on_watch': True
            },

            # Cart lifecycle settings
            'cart': {
                'recovery_interval': 13 * 60,  # shorter than the 15 minute hold
                'reservation_minutes': 15,
                'treat_unparseable_as_empty': False
            },

            # Database settings
            'database': {
                'url': 'sqlite:///data/veepee_monitor.db'
            },

            # Notification settings
            'notifications': {
                'discord_webhook': '',
                'mention_everyone': True,
                'username': 'Veepee Monitor',
                'colors': {
                    'restock': 0xe91e63,
                    'reserved': 0x22c55e,
                    'extended': 0x22c55e,
                    'emptied': 0xfbbf24,
                    'credentials': 0xf87171
                }
            },

            # HTTP server settings
            'server': {
                'host': '0.0.0.0',
                'port': 3000
            },

            # Logging settings
            'logging': {
                'level': 'INFO',
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                'file_path': 'veepee_monitor.log',
                'max_file_size': 10485760,  # 10MB
                'backup_count': 5
            }
        }

    def _load_environment_variables(self) -> None:
        """Load configuration from environment variables."""
        env_mappings = {
            'VEEPEE_AUTH': 'veepee.auth_header',
            'DISCORD_WEBHOOK': 'notifications.discord_webhook',
            'DATABASE_URL': 'database.url',
            'LOG_LEVEL': 'logging.level',
            'PORT': 'server.port',
            'STOCK_CHECK_INTERVAL': 'monitoring.stock_interval',
            'CART_RECOVERY_INTERVAL': 'cart.recovery_interval'
        }

        for env_var, config_key in env_mappings.items():
            value = os.getenv(env_var)
            if value:
                self._set_nested_value(config_key, value)

    def _set_nested_value(self, key: str, value: Any) -> None:
        """Set a nested configuration value using dot notation."""
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        # Convert string values to appropriate types
        if isinstance(value, str):
            if value.lower() in ('true', 'false'):
                value = value.lower() == 'true'
            elif value.isdigit():
                value = int(value)
            elif value.replace('.', '').isdigit() and value.count('.') == 1:
                # Only one decimal point, so IP addresses stay strings
                try:
                    value = float(value)
                except ValueError:
                    pass

        config[keys[-1]] = value

    def _get_nested_value(self, key: str, default: Any = None) -> Any:
        """Get a nested configuration value using dot notation."""
        keys = key.split('.')
        config = self._config

        try:
            for k in keys:
                config = config[k]
            return config
        except (KeyError, TypeError):
            return default

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self._get_nested_value(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value."""
        self._set_nested_value(key, value)

    def load_config(self, config_path: str) -> None:
        """Load configuration from file."""
        path = Path(config_path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                if path.suffix.lower() in ('.yml', '.yaml'):
                    file_config = yaml.safe_load(f) or {}
                elif path.suffix.lower() == '.json':
                    file_config = json.load(f)
                else:
                    raise ValueError(f"Unsupported configuration file format: {path.suffix}")

            self._merge_config(self._config, file_config)
            self._config_path = config_path

        except Exception as e:
            raise RuntimeError(f"Failed to load configuration from {config_path}: {e}")

    def save_config(self, config_path: str) -> None:
        """Save configuration to file."""
        path = Path(config_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(path, 'w', encoding='utf-8') as f:
                if path.suffix.lower() in ('.yml', '.yaml'):
                    yaml.dump(self._config, f, default_flow_style=False, indent=2)
                elif path.suffix.lower() == '.json':
                    json.dump(self._config, f, indent=2)
                else:
                    raise ValueError(f"Unsupported configuration file format: {path.suffix}")

        except Exception as e:
            raise RuntimeError(f"Failed to save configuration to {config_path}: {e}")

    def _merge_config(self, base: dict, override: dict) -> None:
        """Recursively merge configuration dictionaries."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def get_veepee_config(self) -> dict:
        """Get remote API configuration."""
        return self.get('veepee', {})

    def get_monitoring_config(self) -> dict:
        """Get stock watcher configuration."""
        return self.get('monitoring', {})

    def get_cart_config(self) -> dict:
        """Get cart lifecycle configuration."""
        return self.get('cart', {})

    def get_database_config(self) -> dict:
        """Get database-specific configuration."""
        return self.get('database', {})

    def get_notification_config(self) -> dict:
        """Get notification-specific configuration."""
        return self.get('notifications', {})

    def get_logging_config(self) -> dict:
        """Get logging-specific configuration."""
        return self.get('logging', {})

    def validate_config(self) -> bool:
        """Validate required configuration values."""
        if not self.get('database.url'):
            raise ValueError("Missing required configuration keys: ['database.url']")

        invalid_keys = []
        for key in ('monitoring.stock_interval', 'cart.recovery_interval'):
            value = self.get(key)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                invalid_keys.append(key)

        if invalid_keys:
            raise ValueError(f"Intervals must be positive numbers: {invalid_keys}")

        return True


# Global configuration instance
config = ConfigManager()
