"""Foundation layer: settings, structured logging, errors and SQLite access."""

from lexspine.core.database import connect, transaction
from lexspine.core.errors import (
    ErrorCategory,
    JobConflictError,
    JobError,
    JobNotFoundError,
    JobTerminalError,
    LexSpineError,
    ValidationError,
    describe_error,
)
from lexspine.core.logging import LogContext, configure_logging, get_logger
from lexspine.core.settings import LexSpineSettings, clear_settings_cache, get_settings

__all__ = [
    "connect",
    "transaction",
    "ErrorCategory",
    "JobConflictError",
    "JobError",
    "JobNotFoundError",
    "JobTerminalError",
    "LexSpineError",
    "ValidationError",
    "describe_error",
    "LogContext",
    "configure_logging",
    "get_logger",
    "LexSpineSettings",
    "clear_settings_cache",
    "get_settings",
]
