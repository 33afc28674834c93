"""
Logging setup: colored console output for development, JSON lines for production.
"""

import logging
import sys

from pythonjsonlogger import jsonlogger


class WatcherJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with a fixed service field and a lower-case level."""

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record['service'] = 'jenkins_watch'
        log_record['level'] = record.levelname.lower()
        log_record.pop('levelname', None)


class ColorFormatter(logging.Formatter):
    """Colored console formatter."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, '')
        original = record.levelname
        record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def setup_logging(level: str = 'INFO', fmt: str = 'console') -> logging.Logger:
    """Configure the root logger once for the whole process."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    if fmt == 'json':
        handler.setFormatter(WatcherJsonFormatter(
            fmt='%(asctime)s %(name)s %(levelname)s %(message)s',
            timestamp=True,
        ))
    else:
        handler.setFormatter(ColorFormatter(
            fmt='%(asctime)s | %(name)-20s | %(levelname)-8s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
    root_logger.addHandler(handler)

    # Quiet noisy libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)

    return root_logger
