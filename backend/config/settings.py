"""
Configuration Management for DockDrift
Centralizes all environment-based configuration and settings
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional


class RegistryNoiseFilter(logging.Filter):
    """Filter out per-page tag listing chatter from aiohttp-heavy debug runs"""
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        # Tag pages are requested once per 1000 tags; keep the summary line only
        if record.levelno <= logging.DEBUG and '/tags/list?' in message:
            return False
        return True


def _get_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    if isinstance(level, int):
        return level
    return logging.INFO


def setup_logging(log_dir: Optional[str] = None, level: Optional[str] = None):
    """Configure application logging with rotation"""
    log_dir = log_dir if log_dir is not None else AppConfig.LOG_DIR
    log_level = _get_level(level or AppConfig.LOG_LEVEL)

    root_logger = logging.getLogger()

    # Close and clear any existing handlers so repeated setup does not duplicate output
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    console_handler.addFilter(RegistryNoiseFilter())
    root_logger.addHandler(console_handler)

    if log_dir:
        os.makedirs(log_dir, mode=0o700, exist_ok=True)

        # Max 10MB per file, keep 14 backups
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'dockdrift.log'),
            maxBytes=10*1024*1024,  # 10MB
            backupCount=14,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(console_formatter)
        root_logger.addHandler(file_handler)

    # aiohttp access/client logs are noisy at INFO
    logging.getLogger("aiohttp").setLevel(max(log_level, logging.WARNING))


class AppConfig:
    """Main application configuration"""

    # Logging
    LOG_LEVEL = os.getenv('DOCKDRIFT_LOG_LEVEL', 'INFO')
    LOG_DIR = os.getenv('DOCKDRIFT_LOG_DIR', '')

    # Registry access
    REGISTRY_TIMEOUT = float(os.getenv('DOCKDRIFT_REGISTRY_TIMEOUT', 30))
    TAGS_PAGE_SIZE = int(os.getenv('DOCKDRIFT_TAGS_PAGE_SIZE', 1000))

    # Triggers
    TRIGGER_THRESHOLD = os.getenv('DOCKDRIFT_TRIGGER_THRESHOLD', 'all')

    @classmethod
    def validate(cls):
        """Validate configuration"""
        if cls.REGISTRY_TIMEOUT <= 0:
            raise ValueError(f"Registry timeout must be positive: {cls.REGISTRY_TIMEOUT}")

        if cls.TAGS_PAGE_SIZE < 1:
            raise ValueError(f"Tags page size must be at least 1: {cls.TAGS_PAGE_SIZE}")

        return True
