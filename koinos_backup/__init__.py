import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'


def configure_logging(debug: bool = False, log_file: str = None):
    """
    Configure logging for the backup tools.

    Args:
        debug: Log at DEBUG level instead of INFO
        log_file: Optional path of a rotating log file. Falls back to the
            KOINOS_BACKUP_LOG_FILE environment variable.
    """
    log_level = logging.DEBUG if debug else logging.INFO
    log_file = log_file or os.environ.get('KOINOS_BACKUP_LOG_FILE')

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Repeated calls replace the handlers
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logger = logging.getLogger(__name__)
    logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return logger
