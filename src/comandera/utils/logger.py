"""
Logging utilities for the Comandera print service.
Provides structured logging with file rotation and console output.
"""

import logging
import logging.handlers
import sys
from typing import Optional

from ..config import config


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    # Color codes
    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        """Format log record with colors."""
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class PrinterLogger:
    """Print-service logger with key=value context formatting."""

    def __init__(self, name: str = "comandera"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))

        # Prevent duplicate handlers
        if not self.logger.handlers:
            self._setup_handlers()

    def _setup_handlers(self):
        """Setup file and console handlers."""

        # File handler with rotation (disabled by an empty LOG_FILE)
        if config.LOG_FILE:
            file_handler = logging.handlers.RotatingFileHandler(
                config.LOG_FILE,
                maxBytes=self._parse_size(config.LOG_MAX_SIZE),
                backupCount=config.LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            ))
            self.logger.addHandler(file_handler)

        # Console handler with colors
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ColoredFormatter(
            '%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        ))
        self.logger.addHandler(console_handler)

    def _parse_size(self, size_str: str) -> int:
        """Parse size string (e.g., '10MB') to bytes."""
        size_str = size_str.upper()

        if size_str.endswith('KB'):
            return int(size_str[:-2]) * 1024
        elif size_str.endswith('MB'):
            return int(size_str[:-2]) * 1024 * 1024
        elif size_str.endswith('GB'):
            return int(size_str[:-2]) * 1024 * 1024 * 1024
        else:
            return int(size_str)

    def debug(self, message: str, **kwargs):
        """Log debug message."""
        self.logger.debug(self._format_message(message, **kwargs))

    def info(self, message: str, **kwargs):
        """Log info message."""
        self.logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs):
        """Log warning message."""
        self.logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs):
        """Log error message."""
        self.logger.error(self._format_message(message, **kwargs))

    def critical(self, message: str, **kwargs):
        """Log critical message."""
        self.logger.critical(self._format_message(message, **kwargs))

    def exception(self, message: str, **kwargs):
        """Log error message with the current traceback."""
        self.logger.exception(self._format_message(message, **kwargs))

    def _format_message(self, message: str, **kwargs) -> str:
        """Format message with additional context."""
        if kwargs:
            context = " | ".join([f"{k}={v}" for k, v in kwargs.items()])
            return f"{message} | {context}"
        return message

    # Print-specific logging methods
    def print_start(self, printer: str, destination: str, size: int):
        """Log print job start."""
        self.info("🖨️ Print started",
                  printer=printer,
                  destination=destination,
                  bytes=size)

    def print_complete(self, printer: str, destination: str):
        """Log print job completion."""
        self.info("✅ Print completed",
                  printer=printer,
                  destination=destination)

    def print_error(self, printer: str, error: str):
        """Log print error."""
        self.error("❌ Print error",
                   printer=printer,
                   error=error)

    def bridge_request(self, kind: str, printer: str, connection: str):
        """Log a request received by the bridge."""
        self.info("📨 Bridge request",
                  type=kind,
                  printer=printer,
                  connection=connection)

    def scan_result(self, scanned: int, found: int):
        """Log the outcome of a discovery scan."""
        self.info("🔍 Scan finished",
                  scanned=scanned,
                  found=found)

    def order_event(self, order_id: str, action: str):
        """Log an order event received from the broker."""
        self.debug("📨 Order event",
                   order_id=order_id,
                   action=action)

    def printer_status(self, status: str, details: Optional[dict] = None):
        """Log printer status."""
        if details:
            self.debug(f"🖨️ Printer status: {status}", **details)
        else:
            self.debug(f"🖨️ Printer status: {status}")


# Global logger instance
logger = PrinterLogger()
