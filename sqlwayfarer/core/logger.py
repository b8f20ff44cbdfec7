"""
Logging configuration for SQL Wayfarer
"""

import sys
import logging
from pathlib import Path
from typing import Optional
from logging.handlers import TimedRotatingFileHandler
from datetime import datetime

from sqlwayfarer.core.constants import APP_NAME, LOG_FILE


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output"""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m',      # Reset
    }

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None,
                 use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and self._supports_color()

    @staticmethod
    def _supports_color() -> bool:
        """Check if terminal supports colors"""
        if sys.platform == 'win32':
            return True
        return hasattr(sys.stdout, 'isatty') and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        if self.use_colors:
            color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
            reset = self.COLORS['RESET']
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{color}{record.levelname}{reset}"
        return super().format(record)


class WayfarerLogger:
    """Application logger with file and console handlers"""

    _instance: Optional['WayfarerLogger'] = None
    _initialized: bool = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.logger = logging.getLogger(APP_NAME.replace(' ', ''))
        self.logger.setLevel(logging.DEBUG)
        self._handlers: dict[str, logging.Handler] = {}
        self._initialized = True

    def setup(
        self,
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        file_enabled: bool = True,
        retention_days: int = 7,
        console_colors: bool = True,
    ) -> logging.Logger:
        """
        Configure logging with file and console handlers

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files
            file_enabled: Enable file logging
            retention_days: Number of days to keep daily rotated logs
            console_colors: Use colored output in console

        Returns:
            Configured logger instance
        """
        for handler in self._handlers.values():
            self.logger.removeHandler(handler)
            handler.close()
        self._handlers.clear()

        log_level = getattr(logging, level.upper(), logging.INFO)
        self.logger.setLevel(log_level)

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_format = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        console_handler.setFormatter(ColoredFormatter(
            fmt=console_format,
            datefmt="%H:%M:%S",
            use_colors=console_colors,
        ))
        self.logger.addHandler(console_handler)
        self._handlers['console'] = console_handler

        if file_enabled and log_dir:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)

            file_handler = TimedRotatingFileHandler(
                log_dir / LOG_FILE,
                when='midnight',
                interval=1,
                backupCount=max(1, int(retention_days)),
                encoding='utf-8'
            )
            file_handler.suffix = "%Y-%m-%d"
            file_handler.setLevel(logging.DEBUG)  # File gets all levels
            file_handler.setFormatter(logging.Formatter(
                fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(filename)s:%(lineno)d | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S"
            ))
            self.logger.addHandler(file_handler)
            self._handlers['file'] = file_handler

        return self.logger

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        """Get a child logger with optional name"""
        if name:
            return self.logger.getChild(name)
        return self.logger

    def set_level(self, level: str) -> None:
        """Change logging level at runtime"""
        log_level = getattr(logging, level.upper(), logging.INFO)
        self.logger.setLevel(log_level)
        if 'console' in self._handlers:
            self._handlers['console'].setLevel(log_level)


_app_logger: Optional[WayfarerLogger] = None


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    file_enabled: bool = True,
    retention_days: int = 7,
) -> logging.Logger:
    """
    Setup application logging

    This should be called once by the host at startup.
    """
    global _app_logger
    _app_logger = WayfarerLogger()
    return _app_logger.setup(
        level=level,
        log_dir=log_dir,
        file_enabled=file_enabled,
        retention_days=retention_days,
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger instance

    Handlers are only attached by setup_logging(); until then records
    propagate to whatever the host has configured.

    Example:
        >>> logger = get_logger('services.credential_store')
        >>> logger.info('Loaded 3 connection profiles')
    """
    global _app_logger
    if _app_logger is None:
        _app_logger = WayfarerLogger()
    return _app_logger.get_logger(name)


class LogContext:
    """
    Context manager for logging operation timing

    Example:
        >>> with LogContext(logger, "Loading saved connections"):
        ...     load()
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time: Optional[datetime] = None

    def __enter__(self):
        self.start_time = datetime.now()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = (datetime.now() - self.start_time).total_seconds()

        if exc_type is not None:
            self.logger.error(f"{self.operation}... failed after {duration:.2f}s: {exc_val}")
        else:
            self.logger.log(self.level, f"{self.operation}... completed in {duration:.2f}s")

        return False  # Don't suppress exceptions
