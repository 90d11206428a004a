"""Centralized logging configuration with loguru."""

import logging
import sys
from typing import Any, Optional

from loguru import logger

from ..core.config import Settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


class InterceptHandler(logging.Handler):
    """Forward standard-library log records (nats, aiohttp, asyncio) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_loguru(settings: Settings) -> None:
    """Setup loguru sinks for the bridge process."""

    # Remove default handler
    logger.remove()

    logger.add(
        sys.stdout,
        format=CONSOLE_FORMAT,
        level=settings.console_level,
        colorize=True,
        backtrace=True,
        diagnose=settings.debug,
    )

    if settings.log_dir is not None:
        logs_dir = settings.log_dir
        logs_dir.mkdir(parents=True, exist_ok=True)

        # General bridge log
        logger.add(
            logs_dir / "bridge.log",
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="100 MB",
            retention="30 days",
            compression="gz",
            backtrace=True,
            diagnose=settings.debug,
        )

        # Error log
        logger.add(
            logs_dir / "errors.log",
            format=FILE_FORMAT,
            level="ERROR",
            rotation="50 MB",
            retention="60 days",
            compression="gz",
            backtrace=True,
            diagnose=settings.debug,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    logger.info("🚀 Loguru logging system initialized")
    logger.info(f"📁 Logs directory: {settings.log_dir or 'console only'}")
    logger.info(f"📊 Log level: {settings.console_level}")


def get_logger(name: str) -> Any:
    """Get logger instance with context."""
    return logger.bind(name=name)


class LogContext:
    """Context manager for detailed operation logging."""

    def __init__(self, operation: str, **context):
        self.operation = operation
        self.context = context
        self.logger = logger.bind(operation=operation, **context)

    def __enter__(self):
        self.logger.info(f"🚀 Starting {self.operation}")
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            self.logger.error(f"❌ {self.operation} failed: {exc_val}")
        else:
            self.logger.info(f"✅ {self.operation} finished")


class ModelLogContext(LogContext):
    """Specialized context for bus-triggered model operations."""

    def __init__(self, operation: str, subject: Optional[str] = None, model: Optional[str] = None, **context):
        super().__init__(
            operation=f"Model: {operation}",
            subject=subject,
            model=model,
            **context
        )
