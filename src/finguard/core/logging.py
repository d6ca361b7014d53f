"""
FinGuard Logging Configuration
Structured security logging with Rich console output and rotating JSON files.
"""

import ipaddress
import json
import logging
import logging.handlers
import re
from datetime import datetime
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

from finguard.core.config import settings


_UNSAFE_LOG_CHARS = re.compile(r"[^\w @.:\-]")


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_entry["extra"] = record.extra_data

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class FinGuardLogger:
    """
    Root logging configuration for the security engine
    """

    def __init__(self):
        self.console = Console(stderr=True)
        self.log_dir = settings.LOG_DIR

    def setup_logging(self) -> None:
        """
        Setup logging configuration
        """
        level = getattr(logging, settings.LOG_LEVEL.upper())

        root_logger = logging.getLogger()
        root_logger.setLevel(level)

        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        console_handler = RichHandler(
            console=self.console,
            rich_tracebacks=True,
            show_path=True,
            show_time=True,
        )
        console_handler.setLevel(level)
        root_logger.addHandler(console_handler)

        if settings.LOG_TO_FILE:
            self.log_dir.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                self.log_dir / "finguard.log",
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
            )
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(JSONFormatter())

            # Lockouts, dropped audit writes and store outages land here
            security_handler = logging.handlers.RotatingFileHandler(
                self.log_dir / "security.log",
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=10,
            )
            security_handler.setLevel(logging.WARNING)
            security_handler.setFormatter(JSONFormatter())

            root_logger.addHandler(file_handler)
            root_logger.addHandler(security_handler)

        logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
        logging.getLogger("redis").setLevel(logging.WARNING)

        logging.getLogger("finguard").setLevel(level)


_logger_instance: Optional[FinGuardLogger] = None


def get_logger(name: str) -> logging.Logger:
    """
    Get logger instance with proper configuration
    """
    global _logger_instance

    if _logger_instance is None:
        _logger_instance = FinGuardLogger()
        _logger_instance.setup_logging()

    return logging.getLogger(name)


def sanitize_for_log(value: Optional[str]) -> str:
    """Replace characters that could forge log lines."""
    if not value:
        return "[empty]"
    return _UNSAFE_LOG_CHARS.sub("[X]", value)


def mask_identifier(identifier: Optional[str]) -> str:
    """Mask the last octet of IPv4 addresses and truncate long identifiers."""
    if not identifier:
        return "[empty]"
    try:
        address = ipaddress.ip_address(identifier)
    except ValueError:
        return identifier[:20] + "..." if len(identifier) > 20 else identifier

    if address.version == 4:
        parts = identifier.split(".")
        return f"{parts[0]}.{parts[1]}.{parts[2]}.[X]"
    return identifier


class LoggerMixin:
    """
    Mixin to add logging capabilities to classes
    """

    @property
    def logger(self) -> logging.Logger:
        return get_logger(self.__class__.__module__ + "." + self.__class__.__name__)

    def log_with_context(
        self,
        level: int,
        message: str,
        extra_data: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log with additional context data
        """
        record = self.logger.makeRecord(
            name=self.logger.name,
            level=level,
            fn="",
            lno=0,
            msg=message,
            args=(),
            exc_info=None,
        )

        if extra_data:
            record.extra_data = extra_data

        self.logger.handle(record)
