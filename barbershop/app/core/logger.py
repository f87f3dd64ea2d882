"""Logger facade and console logging setup for entrypoints."""

import logging

from rich.logging import RichHandler

from .constants import LOG_LEVEL_NAME

__all__ = ["get_logger", "configure_logging"]


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or __name__)


def configure_logging(level_name: str | None = None) -> None:
    """Install the Rich console handler on the root logger.

    Level comes from LOG_LEVEL (default INFO); driver and ORM loggers are kept
    at WARNING.
    """
    level = getattr(logging, (level_name or LOG_LEVEL_NAME).upper(), logging.INFO)
    console_handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=True,
        show_level=True,
        show_path=False,
        log_time_format="%H:%M:%S",
    )
    logging.basicConfig(level=level, format="%(message)s", handlers=[console_handler], force=True)

    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("alembic").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
