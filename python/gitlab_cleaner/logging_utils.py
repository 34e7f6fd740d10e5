import logging
import traceback
from typing import Optional

DEFAULT_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'

# Chatty third-party loggers, only shown at DEBUG
_NOISY_LOGGERS = ("urllib3", "requests")


def setup_logging(level: int = logging.INFO, fmt: Optional[str] = None, force: bool = False) -> None:
    """Configure root logging once. Subsequent calls are no-ops unless force is set.
    If fmt is not provided, a sensible default is used.
    """
    root = logging.getLogger()
    if root.handlers and not force:
        # Already configured; do nothing
        return
    logging.basicConfig(level=level, format=fmt or DEFAULT_FORMAT, force=force)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)


def verbosity_to_level(verbose: int) -> int:
    """Map the number of -v flags to a logging level."""
    if verbose >= 1:
        return logging.DEBUG
    return logging.INFO


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module/logger by name, after ensuring logging is configured."""
    setup_logging()
    return logging.getLogger(name) if name else logging.getLogger(__name__)


def log_exception(logger: logging.Logger, message: str = "An error occurred", exc_info: Exception = None) -> None:
    """Centralized exception logging with full traceback.

    Args:
        logger: Logger instance to use
        message: Custom error message to log before the traceback
        exc_info: Exception instance (if None, uses current exception context)
    """
    logger.error(message)
    if exc_info is not None:
        logger.error(f"Exception type: {type(exc_info).__name__}")
        logger.error(f"Exception message: {str(exc_info)}")
    logger.error("Full traceback:")
    logger.error(traceback.format_exc())
