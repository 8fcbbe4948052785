"""
Configuration Management Module

This module handles loading, validating, and providing access to application configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from .env file
- Validates all required settings
- Provides type-safe access to configuration values
- Converts comma-separated strings to lists (exchanges, quote assets)
- Every sync interval, TTL and retry constant is a setting, not a hard-coded value

Usage:
    from core.config import settings

    # Access configuration values
    print(settings.price_sync_interval)
    print(settings.enabled_exchanges_list)  # Returns a list of strings
"""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


NOT_FOUND_POLICIES = ("negative_cache", "auto_disable")


class Settings(BaseSettings):
    """
    Application Settings

    This class defines all configuration parameters for the application.
    Values are automatically loaded from environment variables or .env file.

    Attributes:
        binance_spot_url / binance_futures_url: Binance REST base URLs
        okx_base_url: OKX REST base URL
        bybit_base_url: Bybit REST base URL
        enabled_exchanges: Exchanges to synchronize (comma-separated)
        quote_assets: Quote assets kept during symbol discovery (comma-separated)
        price_sync_interval: Seconds between price-refresh passes
        symbol_sync_interval: Seconds between symbol-discovery passes
        cleanup_interval: Seconds between stale-data cleanup passes
        price_retention_seconds: Age after which price records are purged
        invalid_symbol_ttl: Lifetime of a negative-cache entry in seconds
        read_cache_ttl: Lifetime of the store's in-memory read cache in seconds
        request_delay_ms: Delay between two dispatches of the same request queue
        max_retries: Total attempts for a transiently failing request
        backoff_base: Base of the exponential backoff (base ** attempt seconds)
        request_timeout: Timeout for a single outbound call in seconds
        discovery_timeout: Timeout for one whole symbol listing (may span several pages)
        rate_limit_max_requests / rate_limit_window: Rolling window limiter
        rate_limited_exchanges: Exchanges whose queue uses the rolling window
        not_found_policy: What a "symbol not found" answer does
        database_url: SQLAlchemy async database URL
    """

    # ============================================
    # Exchange API Configuration
    # ============================================

    binance_spot_url: str = Field(
        default="https://api.binance.com",
        description="Binance spot API base URL"
    )

    binance_futures_url: str = Field(
        default="https://fapi.binance.com",
        description="Binance USD-M futures API base URL"
    )

    okx_base_url: str = Field(
        default="https://www.okx.com",
        description="OKX API base URL"
    )

    bybit_base_url: str = Field(
        default="https://api.bybit.com",
        description="Bybit API base URL"
    )

    # ============================================
    # Supported Markets Configuration
    # ============================================

    enabled_exchanges: str = Field(
        default="binance,okx,bybit",
        description="Comma-separated list of exchanges to synchronize"
    )

    quote_assets: str = Field(
        default="USDT",
        description="Comma-separated quote assets kept during discovery (empty = all)"
    )

    # ============================================
    # Sync Scheduling
    # ============================================

    price_sync_interval: float = Field(
        default=10.0,
        description="Seconds between price-refresh passes"
    )

    symbol_sync_interval: float = Field(
        default=24 * 60 * 60,
        description="Seconds between symbol-discovery passes"
    )

    cleanup_interval: float = Field(
        default=60 * 60,
        description="Seconds between stale-data cleanup passes"
    )

    price_retention_seconds: float = Field(
        default=60 * 60,
        description="Price records older than this are purged by the cleanup pass"
    )

    # ============================================
    # Caching Configuration
    # ============================================

    invalid_symbol_ttl: float = Field(
        default=60 * 60,
        description="Seconds a 'symbol not found' answer suppresses new requests"
    )

    read_cache_ttl: float = Field(
        default=10.0,
        description="Seconds the store serves reads from memory before reloading"
    )

    not_found_policy: str = Field(
        default="negative_cache",
        description="'negative_cache' or 'auto_disable' (disable fetch once every listing exchange reports not found)"
    )

    # ============================================
    # Rate Limiting & Performance
    # ============================================

    request_delay_ms: int = Field(
        default=200,
        description="Delay between two requests on the same exchange queue (milliseconds)"
    )

    max_retries: int = Field(
        default=3,
        description="Total attempts for a request failing with a transient error"
    )

    backoff_base: float = Field(
        default=2.0,
        description="Exponential backoff base, the n-th retry waits base ** n seconds"
    )

    request_timeout: float = Field(
        default=10.0,
        description="HTTP request timeout in seconds"
    )

    discovery_timeout: float = Field(
        default=60.0,
        description="Per-attempt timeout of one paginated symbol listing in seconds"
    )

    rate_limit_max_requests: int = Field(
        default=20,
        description="Maximum requests per rate limit window"
    )

    rate_limit_window: float = Field(
        default=1.0,
        description="Rate limit window length in seconds"
    )

    rate_limited_exchanges: str = Field(
        default="okx",
        description="Comma-separated exchanges whose queue also enforces the rolling window"
    )

    # ============================================
    # Database Configuration
    # ============================================

    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/prices.db",
        description="SQLAlchemy async database URL"
    )

    database_echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="FastAPI server host address"
    )

    app_port: int = Field(
        default=8000,
        description="FastAPI server port"
    )

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        # Look for .env file in the project root
        env_file=".env",
        # Ignore extra fields in .env that aren't defined here
        extra="ignore",
        # Case-insensitive environment variable matching
        case_sensitive=False
    )

    # ============================================
    # Custom Properties
    # ============================================

    @property
    def enabled_exchanges_list(self) -> List[str]:
        """
        Convert comma-separated exchanges string to a list.

        Example:
            >>> settings.enabled_exchanges_list
            ['binance', 'okx', 'bybit']
        """
        return [e.strip().lower() for e in self.enabled_exchanges.split(",") if e.strip()]

    @property
    def quote_assets_list(self) -> List[str]:
        """
        Convert comma-separated quote assets string to a list.

        Example:
            >>> settings.quote_assets_list
            ['USDT']
        """
        return [q.strip().upper() for q in self.quote_assets.split(",") if q.strip()]

    @property
    def rate_limited_exchanges_list(self) -> List[str]:
        """Exchanges whose request queue enforces the rolling request window."""
        return [e.strip().lower() for e in self.rate_limited_exchanges.split(",") if e.strip()]

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Convert comma-separated CORS origins string to a list.

        Example:
            >>> settings.cors_origins_list
            ['http://localhost:3000', 'http://localhost:5173']
        """
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def request_delay(self) -> float:
        """Inter-request delay in seconds."""
        return self.request_delay_ms / 1000.0


# ============================================
# Global Settings Instance
# ============================================

# Loaded once and passed explicitly to the components that need it
settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration(config: Settings = settings) -> None:
    """
    Validate critical configuration settings on application startup.

    Args:
        config: Settings instance to validate (defaults to the global settings)

    Raises:
        ValueError: If required configuration is missing or invalid
    """
    # Import here to avoid circular import (logging.py imports config.py)
    from core.logging import logger
    from core.exchange_registry import EXCHANGE_REGISTRY

    if not config.enabled_exchanges_list:
        raise ValueError("ENABLED_EXCHANGES must contain at least one exchange")

    for name in config.enabled_exchanges_list + config.rate_limited_exchanges_list:
        if name not in EXCHANGE_REGISTRY:
            raise ValueError(
                f"Unknown exchange '{name}'. "
                f"Must be one of: {', '.join(EXCHANGE_REGISTRY)}"
            )

    positive = {
        "PRICE_SYNC_INTERVAL": config.price_sync_interval,
        "SYMBOL_SYNC_INTERVAL": config.symbol_sync_interval,
        "CLEANUP_INTERVAL": config.cleanup_interval,
        "PRICE_RETENTION_SECONDS": config.price_retention_seconds,
        "INVALID_SYMBOL_TTL": config.invalid_symbol_ttl,
        "REQUEST_TIMEOUT": config.request_timeout,
        "DISCOVERY_TIMEOUT": config.discovery_timeout,
        "RATE_LIMIT_WINDOW": config.rate_limit_window,
    }
    for key, value in positive.items():
        if value <= 0:
            raise ValueError(f"{key} must be positive, got {value}")

    if config.read_cache_ttl < 0:
        raise ValueError(f"READ_CACHE_TTL cannot be negative, got {config.read_cache_ttl}")

    if config.request_delay_ms < 0:
        raise ValueError(f"REQUEST_DELAY_MS cannot be negative, got {config.request_delay_ms}")

    if config.max_retries < 1:
        raise ValueError(f"MAX_RETRIES must be at least 1, got {config.max_retries}")

    if config.rate_limit_max_requests < 1:
        raise ValueError(f"RATE_LIMIT_MAX_REQUESTS must be at least 1, got {config.rate_limit_max_requests}")

    if config.not_found_policy not in NOT_FOUND_POLICIES:
        raise ValueError(
            f"Invalid NOT_FOUND_POLICY: '{config.not_found_policy}'. "
            f"Must be one of: {', '.join(NOT_FOUND_POLICIES)}"
        )

    # Validate port number
    if not (1 <= config.app_port <= 65535):
        raise ValueError(f"Invalid port number: {config.app_port}. Must be between 1 and 65535")

    # Validate log level
    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    # Log successful validation
    logger.info("Configuration validated successfully")
    logger.info(f"Exchanges: {', '.join(config.enabled_exchanges_list)}")
    logger.info(f"Quote assets: {', '.join(config.quote_assets_list) or 'all'}")
    logger.info(
        f"Intervals: prices={config.price_sync_interval}s, "
        f"symbols={config.symbol_sync_interval}s, cleanup={config.cleanup_interval}s"
    )
    logger.info(f"Database: {config.database_url}")
    logger.info(f"Server: {config.app_host}:{config.app_port}")
    logger.info(f"Environment: {config.environment}")
    logger.info(f"Log level: {config.log_level.upper()}")
