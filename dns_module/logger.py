"""
Centralized logger configuration for the diagnostics engine.

Provides:
- InterceptHandler: bridges stdlib logging (uvicorn, aiohttp, asyncio) to loguru
- LoguruCompat: formatting-friendly wrapper around a bound loguru logger
- configure_logging(app_name): sets up sinks and returns a bound app logger
- get_child_logger(name): per-module logger bound with ``module=<name>``
"""
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

from loguru import logger


class InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


class LoguruCompat:
    """
    Accepts both ``{}`` and ``%`` style arguments so modules can log the same
    way regardless of which convention a call site grew up with.
    """

    def __init__(self, lg: Any):
        self._lg = lg

    @staticmethod
    def _format_msg(*args: Any) -> str:
        if not args:
            return ""
        fmt, rest = args[0], args[1:]
        if not isinstance(fmt, str):
            return " ".join(map(str, args))
        if not rest:
            return fmt
        if "{" in fmt and "}" in fmt:
            try:
                return fmt.format(*rest)
            except (IndexError, KeyError, ValueError):
                pass
        if "%" in fmt:
            try:
                return fmt % rest
            except (TypeError, ValueError):
                pass
        return fmt + " " + " ".join(map(str, rest))

    def bind(self, **fields: Any) -> "LoguruCompat":
        return LoguruCompat(self._lg.bind(**fields))

    def debug(self, *args: Any) -> None:
        self._lg.debug(self._format_msg(*args))

    def info(self, *args: Any) -> None:
        self._lg.info(self._format_msg(*args))

    def warning(self, *args: Any) -> None:
        self._lg.warning(self._format_msg(*args))

    def error(self, *args: Any) -> None:
        self._lg.error(self._format_msg(*args))

    def exception(self, *args: Any) -> None:
        self._lg.exception(self._format_msg(*args))

    def getChild(self, name: str) -> "LoguruCompat":
        return LoguruCompat(self._lg.bind(module=name))


def configure_logging(app_name: str = "dns_diagnostics") -> LoguruCompat:
    """
    Route everything (loguru and stdlib) to stdout, plus a rotating file when
    DIAG_LOG_FILE is set. Level comes from DIAG_LOG_LEVEL.
    """
    logger.remove()
    log_level = os.getenv("DIAG_LOG_LEVEL", "INFO").upper()
    logger.add(
        sys.stdout,
        level=log_level,
        format="<green>{time}</green> <level>{level: <8}</level> {extra[module]} | <level>{message}</level>",
    )

    # Optional file sink, only when explicitly configured
    log_file = os.getenv("DIAG_LOG_FILE")
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        rotation = os.getenv("DIAG_LOG_ROTATION", "10 MB")
        retention = os.getenv("DIAG_LOG_RETENTION", "7 days")
        logger.add(
            log_file,
            level=log_level,
            enqueue=True,
            backtrace=True,
            diagnose=False,
            rotation=rotation,
            retention=retention,
            compression="zip",
            format="{time} | {level} | {extra[module]} | {message}",
        )
        logger.bind(module="logger").info(
            "File logging enabled: {} (rotation={} retention={})", log_file, rotation, retention
        )

    # Bridge stdlib logging through loguru
    logging.root.handlers = [InterceptHandler()]
    logging.root.setLevel(getattr(logging, log_level, logging.INFO))

    global _APP_LOGGER
    _APP_LOGGER = LoguruCompat(logger.bind(app=app_name, module=app_name))
    return _APP_LOGGER


# Records logged before configure_logging() still need the extra field
logger.configure(extra={"module": "-"})

_APP_LOGGER: LoguruCompat | None = None


def get_app_logger(app_name: str = "dns_diagnostics") -> LoguruCompat:
    if _APP_LOGGER is None:
        return LoguruCompat(logger.bind(app=app_name))
    return _APP_LOGGER


def get_child_logger(name: str, app_name: str = "dns_diagnostics") -> LoguruCompat:
    return get_app_logger(app_name).getChild(name)


__all__ = [
    "InterceptHandler",
    "LoguruCompat",
    "configure_logging",
    "get_app_logger",
    "get_child_logger",
]
