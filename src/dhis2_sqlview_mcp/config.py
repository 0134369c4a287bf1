# DHIS2 SQL View MCP Server
# File: config.py
# Version: v1

"""Configuration loading for the DHIS2 SQL View MCP Server."""

from __future__ import annotations

from dataclasses import dataclass
import os


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean-like environment variable.

    Accepts 1/0, true/false, yes/no, on/off (case-insensitive).
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _parse_int_env(
    name: str,
    default: int,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """Parse an int environment variable with clamping and safe fallback."""
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        value = int(default)
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            value = int(default)

    if min_value is not None and value < min_value:
        value = min_value
    if max_value is not None and value > max_value:
        value = max_value

    return value


def _parse_float_env(
    name: str,
    default: float,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    """Float counterpart of _parse_int_env."""
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        value = float(default)
    else:
        try:
            value = float(str(raw).strip())
        except ValueError:
            value = float(default)

    if min_value is not None and value < min_value:
        value = min_value
    if max_value is not None and value > max_value:
        value = max_value

    return value


@dataclass
class Dhis2Config:
    """Configuration values required to talk to a DHIS2 instance.

    Credentials are either username/password (HTTP Basic) or a personal
    access token. Paging, pacing, retry and cache settings feed the SQL view
    execution engine.
    """

    base_url: str | None
    username: str | None
    password: str | None
    api_token: str | None
    mock_mode: bool

    verify_tls: bool = True

    # Batch execution
    page_size: int = 1000
    max_rows: int = 10000
    max_pages: int = 20
    pacing_every: int = 5
    pacing_seconds: float = 1.0

    # Remote calls
    request_timeout_seconds: float = 60.0
    max_retries: int = 2
    retry_backoff_seconds: float = 0.5

    # Result cache
    cache_ttl_minutes: int = 60
    cache_max_entries: int = 256
    cache_path: str | None = None

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Dhis2Config":
        """Create configuration from environment variables."""
        base_url = os.getenv("DHIS2_BASE_URL")
        username = os.getenv("DHIS2_USERNAME")
        password = os.getenv("DHIS2_PASSWORD")
        api_token = os.getenv("DHIS2_API_TOKEN")

        mock_mode = _parse_bool_env("DHIS2_MOCK_MODE", default=False)
        verify_tls = _parse_bool_env("DHIS2_VERIFY_TLS", default=True)

        page_size = _parse_int_env("DHIS2_PAGE_SIZE", default=1000, min_value=1, max_value=50000)
        max_rows = _parse_int_env("DHIS2_MAX_ROWS", default=10000, min_value=1, max_value=1000000)
        max_pages = _parse_int_env("DHIS2_MAX_PAGES", default=20, min_value=1, max_value=1000)
        pacing_every = _parse_int_env("DHIS2_PACING_EVERY", default=5, min_value=0, max_value=1000)
        pacing_seconds = _parse_float_env("DHIS2_PACING_SECONDS", default=1.0, min_value=0.0, max_value=60.0)

        request_timeout_seconds = _parse_float_env(
            "DHIS2_REQUEST_TIMEOUT_SECONDS", default=60.0, min_value=1.0, max_value=600.0
        )
        max_retries = _parse_int_env("DHIS2_MAX_RETRIES", default=2, min_value=0, max_value=10)
        retry_backoff_seconds = _parse_float_env(
            "DHIS2_RETRY_BACKOFF_SECONDS", default=0.5, min_value=0.0, max_value=30.0
        )

        cache_ttl_minutes = _parse_int_env(
            "DHIS2_CACHE_TTL_MINUTES", default=60, min_value=0, max_value=60 * 24 * 14
        )
        cache_max_entries = _parse_int_env(
            "DHIS2_CACHE_MAX_ENTRIES", default=256, min_value=0, max_value=100000
        )
        cache_path = os.getenv("DHIS2_CACHE_PATH") or None

        log_level = (os.getenv("DHIS2_LOG_LEVEL") or "INFO").strip().upper()

        return cls(
            base_url=base_url,
            username=username,
            password=password,
            api_token=api_token,
            mock_mode=mock_mode,
            verify_tls=verify_tls,
            page_size=page_size,
            max_rows=max_rows,
            max_pages=max_pages,
            pacing_every=pacing_every,
            pacing_seconds=pacing_seconds,
            request_timeout_seconds=request_timeout_seconds,
            max_retries=max_retries,
            retry_backoff_seconds=retry_backoff_seconds,
            cache_ttl_minutes=cache_ttl_minutes,
            cache_max_entries=cache_max_entries,
            cache_path=cache_path,
            log_level=log_level,
        )
