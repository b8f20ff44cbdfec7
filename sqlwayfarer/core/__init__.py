"""
Core module - Configuration, constants, exceptions and logging

Provides:
- Settings/Config management
- Custom exceptions
- Logging
"""

from sqlwayfarer.core.config import Settings, get_settings, reset_settings
from sqlwayfarer.core.constants import *
from sqlwayfarer.core.exceptions import *
from sqlwayfarer.core.logger import get_logger, setup_logging, LogContext

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "reset_settings",
    # Logging
    "get_logger",
    "setup_logging",
    "LogContext",
]
