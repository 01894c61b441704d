from __future__ import annotations

import logging
from typing import Any

import structlog

from .interface import Logger


class ConsoleLogger(Logger):
    """Logger backed by structlog.

    Output routing (console vs JSON lines) is decided by ``configure_logging``;
    before it is called structlog's default console renderer is used.
    """

    def __init__(self, name: str = "gobank_sim", level: int = logging.INFO) -> None:
        self._name = name
        self._level = level
        self._logger = structlog.get_logger(name)

    @property
    def level(self) -> int:
        return self._level

    def set_level(self, level: int) -> None:
        self._level = level

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, kwargs: dict[str, Any]) -> None:
        if level < self._level:
            return

        context = dict(kwargs)
        # structlog reserves "event" for the message itself.
        event = context.pop("event", None)
        if event is not None and event != message:
            context["event_name"] = event

        self._logger.log(level, message, **context)
