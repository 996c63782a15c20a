"""Общие утилиты: конфигурация и логирование."""
from petsound.utils.config import Settings, settings
from petsound.utils.logging import setup_logging, get_logger

__all__ = ["Settings", "settings", "setup_logging", "get_logger"]
