"""Logging setup for the flowimg CLI and embedding applications.

Installs console and optional file handlers on the ``flowimg`` logger
only, so a host application's own root configuration is left alone.
"""

from __future__ import annotations

import logging
import sys

from flowimg.config.settings import LoggingConfig

PACKAGE_LOGGER = "flowimg"

# Third-party loggers that are chatty while the browser bridge serves.
_QUIET_LOGGERS = ("uvicorn.access", "uvicorn.error", "websockets")


def _owned_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [h for h in logger.handlers if getattr(h, "_flowimg_owned", False)]


def _build_handlers(config: LoggingConfig) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file, encoding="utf-8"))

    formatter = logging.Formatter(config.format)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._flowimg_owned = True  # type: ignore[attr-defined]
    return handlers


def setup_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """Configure the ``flowimg`` logger from a LoggingConfig.

    Handlers installed by an earlier call are closed and replaced.
    Handlers added by anyone else are kept. Unless the level is DEBUG,
    the web server's loggers are capped at WARNING.

    Returns:
        The configured package logger.
    """
    config = config or LoggingConfig()
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in _owned_handlers(package_logger):
        package_logger.removeHandler(handler)
        handler.close()

    package_logger.setLevel(level)
    for handler in _build_handlers(config):
        package_logger.addHandler(handler)

    if level > logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    package_logger.debug("Logging configured: level=%s file=%s", config.level, config.file)
    return package_logger
