"""
Logging configuration for the Veepee restock monitor.
"""
import logging
import logging.handlers
import sys

from .environment import Environment
from .config_manager import config


def configure_logging(config_manager=None) -> logging.Logger:
    """Configure logging based on environment and configuration."""
    config_manager = config_manager or config
    log_config = config_manager.get_logging_config()
    log_level_str = log_config.get('level', Environment.get_log_level())
    log_format = log_config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    try:
        log_level = getattr(logging, str(log_level_str).upper())
    except (AttributeError, TypeError):
        log_level = logging.INFO
        print(f"Invalid log level: {log_level_str}, using INFO")

    logs_dir = Environment.get_logs_dir()
    log_file = logs_dir / log_config.get('file_path', 'veepee_monitor.log')
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    max_bytes = log_config.get('max_file_size', 10485760)
    backup_count = log_config.get('backup_count', 5)
    file_handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
    )
    file_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(file_handler)

    console_level = log_level
    if Environment.is_production():
        # In production, only show warnings and above in console
        console_level = max(log_level, logging.WARNING)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(console_handler)

    # aiohttp access logs are noisy at INFO
    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)
    logging.getLogger('discord').setLevel(max(log_level, logging.WARNING))

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized at level {log_level_str}")
    logger.info(f"Environment: {Environment.get_env()}")
    logger.info(f"Logs directory: {logs_dir}")

    return logger
