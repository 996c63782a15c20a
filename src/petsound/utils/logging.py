"""Настройка логирования с structlog."""
import structlog
from structlog.types import Processor

from .config import settings


def setup_logging(level: str | None = None) -> None:
    """Настраивает structlog для проекта.

    Args:
        level: Уровень логирования. По умолчанию settings.LOG_LEVEL.
    """
    level = (level or settings.LOG_LEVEL).upper()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    # Выбираем рендерер в зависимости от окружения
    if level == "DEBUG":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    log_level_map = {
        "DEBUG": 10,
        "INFO": 20,
        "WARNING": 30,
        "ERROR": 40,
        "CRITICAL": 50,
    }
    min_level = log_level_map.get(level, 20)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "petsound"):
    """Возвращает настроенный logger."""
    return structlog.get_logger(name)
