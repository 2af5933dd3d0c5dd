import os
import sys
import logging
from logging.handlers import RotatingFileHandler


__version__ = '0.1.0'


class _BelowLevelFilter(logging.Filter):
    """Pass only records below a level (progress lines to stdout)."""

    def __init__(self, level):
        super().__init__()
        self.level = level

    def filter(self, record):
        return record.levelno < self.level


def configure_logging(verbose=False, log_dir=None):
    """
    Configure application logging.

    Progress (DEBUG/INFO) goes to stdout, warnings and errors to stderr.
    When log_dir is set, everything is also written to a rotating file.

    Args:
        verbose: Log at DEBUG instead of INFO
        log_dir: Directory for zborg.log, created if missing
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    # Console handlers
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(log_level)
    stdout_handler.addFilter(_BelowLevelFilter(logging.WARNING))
    stdout_handler.setFormatter(console_formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(console_formatter)

    handlers = [stdout_handler, stderr_handler]

    # File handler
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'zborg.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        ))
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # APScheduler is chatty at INFO
    logging.getLogger('apscheduler').setLevel(logging.WARNING if not verbose else logging.DEBUG)
    logging.getLogger('paramiko').setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
