"""
Unified Logging Configuration

Every module logs through the "pricesync" logger hierarchy configured here;
no print() in library code.

Usage:
    from core.logging import logger, get_logger

    logger.info("Sync engine started")

    log = get_logger(__name__)
    log.warning("Binance ticker request failed, retrying")

Log Levels:
    DEBUG    - Outbound requests, skipped symbols, cache reloads
    INFO     - Pass start/finish, startup and shutdown
    WARNING  - Retries, per-symbol fetch failures
    ERROR    - Failed passes, backing-store errors

Configuration:
    LOG_LEVEL in .env. Driver loggers (aiosqlite, SQLAlchemy engine) stay at
    WARNING unless LOG_LEVEL is DEBUG.
"""

import logging
import sys
from typing import Any, Dict, Optional

from core.config import settings


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s %(message)s"

# Third-party loggers that flood DEBUG output with per-statement lines
NOISY_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "sqlalchemy.pool", "asyncio")


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Configure the root handler and return the application logger.

    Example:
        >>> logger = setup_logging("DEBUG")
        >>> logger.info("Application started")
        2024-01-01 12:00:00 [INFO] pricesync Application started
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level == logging.DEBUG else logging.WARNING)

    app_logger = logging.getLogger("pricesync")
    app_logger.setLevel(level)
    return app_logger


logger = setup_logging(settings.log_level)


def get_logger(name: str) -> logging.Logger:
    """
    Child logger of "pricesync" for one module.

    Example:
        logger = get_logger(__name__)  # "pricesync.services.sync_scheduler"
    """
    return logging.getLogger(f"pricesync.{name}")


# ============================================
# Outbound Request Logging
# ============================================

_http_logger = get_logger("http")


def log_api_request(exchange: str, endpoint: str, params: Optional[Dict[str, Any]] = None) -> None:
    """
    Example:
        >>> log_api_request("binance", "/api/v3/ticker/price", {"symbol": "BTCUSDT"})
        [DEBUG] pricesync.http -> binance /api/v3/ticker/price symbol=BTCUSDT
    """
    query = " ".join(f"{k}={v}" for k, v in (params or {}).items())
    _http_logger.debug(f"-> {exchange} {endpoint} {query}".rstrip())


def log_api_response(exchange: str, endpoint: str, status: int, elapsed: Optional[float] = None) -> None:
    """
    Example:
        >>> log_api_response("okx", "/api/v5/market/ticker", 200, 0.342)
        [DEBUG] pricesync.http <- okx /api/v5/market/ticker 200 (0.342s)
    """
    timing = f" ({elapsed:.3f}s)" if elapsed is not None else ""
    _http_logger.debug(f"<- {exchange} {endpoint} {status}{timing}")
