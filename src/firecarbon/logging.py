import logging
import os

from beartype import beartype
from rich.console import Console
from rich.logging import RichHandler

__all__ = ["configure_logging"]


@beartype
def configure_logging(logger_name: str = "firecarbon") -> logging.Logger:
    """
    Configure a rich-formatted logger for the package.

    The log level is read from the ``LOG_LEVEL`` environment variable and
    defaults to ``INFO``. Noisy third-party loggers are capped at ``WARNING``.

    Args:
        logger_name: Name of the logger, usually the calling module's
            ``__name__``.

    Returns:
        The configured logger.

    Examples:
        >>> logger = configure_logging("firecarbon.example")
        >>> logger.name
        'firecarbon.example'
    """
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    console = Console(stderr=True)
    rich_handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        show_path=False,
    )

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[rich_handler],
    )

    for noisy_logger in ("jax", "absl", "matplotlib", "numpyro"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    logger = logging.getLogger(logger_name)
    logger.setLevel(log_level)
    return logger
