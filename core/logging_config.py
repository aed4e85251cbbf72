"""
Structured JSON logging configuration for the provisioning trace.

The trace is the developer-facing log; the operator-facing incident report
is written separately by core.provisioning.report.
"""

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from core.errors import redact

LOGGER_NAMES = ("core", "config", "scripts", "smg")


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': redact(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for attr in ('correlation_id', 'step', 'severity', 'source'):
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        return json.dumps(log_entry)


def configure_logging(settings=None):
    """Configure trace logging for the provisioning packages.

    Args:
        settings: Optional AppSettings; defaults to get_settings().

    Returns:
        Configured ``smg`` logger instance.
    """
    if settings is None:
        from config.settings import get_settings
        settings = get_settings()

    log_level = settings.logging.level.upper()
    log_format = settings.logging.format
    log_file = settings.logging.file

    handlers = []

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)

    if log_format == 'json':
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
    handlers.append(console_handler)

    # File handler (if configured)
    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    for name in LOGGER_NAMES:
        logger = logging.getLogger(name)
        logger.setLevel(getattr(logging, log_level, logging.INFO))
        logger.handlers = list(handlers)
        logger.propagate = False

    return logging.getLogger('smg')
