"""
Utility modules for app-runner.

This package contains:
    - logger: Structured logging with structlog
    - security: Credential masking for logs
    - files: Output path preparation and screenshot persistence
"""

from app_runner.utils.logger import LogContext, get_logger, setup_logging
from app_runner.utils.security import SecureString, mask_sensitive

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "SecureString",
    "mask_sensitive",
]
