"""Utility modules for the snapshot deadlock detection system."""

from .logger import DeadlockLogger, get_logger, set_log_level, log_system_info
from .validator import (
    InputValidator,
    FileValidator,
    ValidationError,
    SnapshotIntegrityError,
    validate_all_inputs
)

__all__ = [
    # Logging utilities
    'DeadlockLogger',
    'get_logger',
    'set_log_level',
    'log_system_info',

    # Validation utilities
    'InputValidator',
    'FileValidator',
    'ValidationError',
    'SnapshotIntegrityError',
    'validate_all_inputs'
]
