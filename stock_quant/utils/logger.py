"""Logging configuration for Stock Quant.

Every module logger lives under the ``stock_quant`` namespace so a host
application can silence or redirect the whole analysis core with a single
``logging.getLogger("stock_quant")`` call.
"""

from __future__ import annotations

import logging
import os
import sys

from stock_quant.config import SETTINGS

ROOT_LOGGER_NAME = "stock_quant"
LOG_LEVEL_ENV = "STOCK_QUANT_LOG_LEVEL"


def default_level() -> str:
    """Resolve the log level: environment first, then settings.yaml."""
    env_level = os.getenv(LOG_LEVEL_ENV)
    if env_level:
        return env_level
    return str(SETTINGS.get("app", {}).get("log_level", "INFO"))


def setup_logger(name: str = ROOT_LOGGER_NAME, level: str | None = None) -> logging.Logger:
    """Create and configure a logger under the package namespace.

    ``setup_logger("backtest_engine")`` yields ``stock_quant.backtest_engine``.
    The stderr handler is attached once, to the namespace root; child loggers
    propagate to it.
    """
    full_name = name if name.startswith(ROOT_LOGGER_NAME) else f"{ROOT_LOGGER_NAME}.{name}"
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        fmt = logging.Formatter(
            "%(asctime)s | %(name)-30s | %(levelname)-7s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(fmt)
        root.addHandler(handler)
        root.setLevel(getattr(logging, default_level().upper(), logging.INFO))

    logger = logging.getLogger(full_name)
    if level is not None:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger
