"""Logger module for gobank-sim

Usage:
    from app.logger import Logger, session_logger

    # Use the shared logger
    session_logger.info("sim.start", event="sim.start", stages=3)

    # Or implement your own
    class MyCustomLogger(Logger):
        def info(self, message: str, **kwargs):
            # Your custom implementation
            pass
"""

import logging

from .interface import Logger
from .console_logger import ConsoleLogger
from .config import configure_logging

# Shared logger instance for modules that just need basic console logging
session_logger: ConsoleLogger = ConsoleLogger(level=logging.DEBUG)

__all__ = [
    "Logger",
    "ConsoleLogger",
    "configure_logging",
    "session_logger",
]
