"""Utility functions."""

from .loguru_config import LogContext, ModelLogContext, get_logger, setup_loguru

__all__ = [
    "LogContext",
    "ModelLogContext",
    "get_logger",
    "setup_loguru",
]
