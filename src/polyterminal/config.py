"""
Terminal client configuration.

Loads settings from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class TerminalConfig:
    """Terminal client configuration."""

    # Backend (serverless functions)
    functions_url: str = "http://localhost:54321/functions/v1"
    backend_api_key: str = ""
    events_function: str = "polymarket-data"
    snapshot_function: str = "market-dashboard"
    ws_url_function: str = "dome-ws-url"
    request_timeout_seconds: float = 10.0

    # Trade stream (resolved through ws_url_function when empty)
    stream_url: str = ""
    stream_platform: str = "polymarket"
    stream_version: int = 1

    # Catalog
    catalog_batch_size: int = 50
    catalog_order: str = "volume"
    catalog_ascending: bool = False
    prefetch_count: int = 10

    # Polling
    poll_interval_ms: int = 2000

    # Ledger
    ledger_capacity: int = 100
    whale_ledger_capacity: int = 500
    whale_only: bool = False
    whale_threshold_usd: float = 1000.0

    # Reconnection
    reconnect_base_delay_ms: int = 1000
    reconnect_max_delay_ms: int = 16000
    max_reconnect_attempts: int = 5

    # Cache
    markets_cache_ttl_ms: int = 10 * 60 * 1000
    data_cache_ttl_ms: int = 30 * 1000

    # Health
    stale_after_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"

    @property
    def effective_ledger_capacity(self) -> int:
        """Ledger capacity for the current mode."""
        return self.whale_ledger_capacity if self.whale_only else self.ledger_capacity

    @classmethod
    def from_env(cls) -> "TerminalConfig":
        """Load config from environment variables."""
        return cls(
            # Backend
            functions_url=os.getenv("FUNCTIONS_URL", "http://localhost:54321/functions/v1"),
            backend_api_key=os.getenv("BACKEND_API_KEY", ""),
            events_function=os.getenv("EVENTS_FUNCTION", "polymarket-data"),
            snapshot_function=os.getenv("SNAPSHOT_FUNCTION", "market-dashboard"),
            ws_url_function=os.getenv("WS_URL_FUNCTION", "dome-ws-url"),
            request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10")),

            # Stream
            stream_url=os.getenv("STREAM_URL", ""),
            stream_platform=os.getenv("STREAM_PLATFORM", "polymarket"),
            stream_version=int(os.getenv("STREAM_VERSION", "1")),

            # Catalog
            catalog_batch_size=int(os.getenv("CATALOG_BATCH_SIZE", "50")),
            catalog_order=os.getenv("CATALOG_ORDER", "volume"),
            catalog_ascending=_env_bool("CATALOG_ASCENDING"),
            prefetch_count=int(os.getenv("PREFETCH_COUNT", "10")),

            # Polling
            poll_interval_ms=int(os.getenv("POLL_INTERVAL_MS", "2000")),

            # Ledger
            ledger_capacity=int(os.getenv("LEDGER_CAPACITY", "100")),
            whale_ledger_capacity=int(os.getenv("WHALE_LEDGER_CAPACITY", "500")),
            whale_only=_env_bool("WHALE_ONLY"),
            whale_threshold_usd=float(os.getenv("WHALE_THRESHOLD_USD", "1000")),

            # Reconnection
            reconnect_base_delay_ms=int(os.getenv("RECONNECT_BASE_DELAY_MS", "1000")),
            reconnect_max_delay_ms=int(os.getenv("RECONNECT_MAX_DELAY_MS", "16000")),
            max_reconnect_attempts=int(os.getenv("MAX_RECONNECT_ATTEMPTS", "5")),

            # Cache
            markets_cache_ttl_ms=int(os.getenv("MARKETS_CACHE_TTL_MS", str(10 * 60 * 1000))),
            data_cache_ttl_ms=int(os.getenv("DATA_CACHE_TTL_MS", str(30 * 1000))),

            # Health
            stale_after_seconds=float(os.getenv("STALE_AFTER_SECONDS", "10")),

            # Logging
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    @classmethod
    def from_env_file(cls, path: str) -> "TerminalConfig":
        """
        Load config from .env file, then environment variables.

        Environment variables override file values.
        """
        if os.path.exists(path):
            load_dotenv(path, override=False)
        return cls.from_env()

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not self.functions_url and not self.stream_url:
            errors.append("FUNCTIONS_URL or STREAM_URL is required")

        if self.catalog_batch_size < 1:
            errors.append("CATALOG_BATCH_SIZE must be at least 1")

        if self.poll_interval_ms < 100:
            errors.append("POLL_INTERVAL_MS must be at least 100")

        if self.ledger_capacity < 1 or self.whale_ledger_capacity < 1:
            errors.append("LEDGER_CAPACITY and WHALE_LEDGER_CAPACITY must be positive")

        if self.reconnect_base_delay_ms <= 0:
            errors.append("RECONNECT_BASE_DELAY_MS must be positive")

        if self.reconnect_max_delay_ms < self.reconnect_base_delay_ms:
            errors.append("RECONNECT_MAX_DELAY_MS must be >= RECONNECT_BASE_DELAY_MS")

        if self.max_reconnect_attempts < 0:
            errors.append("MAX_RECONNECT_ATTEMPTS must be non-negative")

        if self.whale_threshold_usd < 0:
            errors.append("WHALE_THRESHOLD_USD must be non-negative")

        return errors
