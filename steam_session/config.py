"""
Configuration module for the Steam session client.

This module uses Pydantic Settings to load and validate environment variables
for the Steam Web API endpoints, device identity, polling and retry policy,
the push socket and cookie materialization.

Environment variables are loaded from .env file or system environment and are
prefixed with ``STEAM_SESSION_`` (e.g. ``STEAM_SESSION_LOG_LEVEL=DEBUG``).
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import PlatformType


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """
    Client settings loaded from environment variables.

    Endpoints, device metadata, timing policy for polling/retries and the
    cookie domains used when materializing a session are defined here.
    """

    # =========================================================================
    # Steam Endpoints
    # =========================================================================

    WEB_API_BASE_URL: HttpUrl = Field(
        default="https://api.steampowered.com",
        description="Base URL of the Steam Web API (IAuthenticationService lives here)",
    )

    DIRECTORY_URL: HttpUrl = Field(
        default="https://api.steampowered.com/ISteamDirectory/GetCMListForConnect/v1/",
        description="CM directory used to discover a websocket endpoint for push updates",
    )

    # =========================================================================
    # Device Identity
    # =========================================================================

    USER_AGENT: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User-Agent sent with every request (also the web browser device name)",
        min_length=1,
    )

    PLATFORM_TYPE: PlatformType = Field(
        default=PlatformType.WEB_BROWSER,
        description="Token platform type requested from Steam",
    )

    WEBSITE_ID: str = Field(
        default="Community",
        description="Website id reported for web browser logins",
    )

    DEVICE_FRIENDLY_NAME: Optional[str] = Field(
        default=None,
        description="Device name shown in the Steam Guard approval prompt (defaults per platform)",
    )

    REMEMBER_LOGIN: bool = Field(
        default=True,
        description="Request a persistent session from Steam",
    )

    # =========================================================================
    # HTTP Transport Policy
    # =========================================================================

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for a single Web API request",
        gt=0,
    )

    WEB_API_MAX_ATTEMPTS: int = Field(
        default=3,
        description="Attempts for a Web API call before a network failure is surfaced",
        ge=1,
        le=10,
    )

    WEB_API_BACKOFF_SECONDS: float = Field(
        default=0.5,
        description="Initial backoff between Web API retries (doubles each attempt)",
        ge=0,
    )

    # =========================================================================
    # Polling Policy
    # =========================================================================

    MIN_POLL_INTERVAL_SECONDS: float = Field(
        default=1.0,
        description="Floor applied to the server supplied poll interval",
        ge=0,
    )

    DEFAULT_POLL_INTERVAL_SECONDS: float = Field(
        default=5.0,
        description="Poll interval used when the server does not supply one",
        gt=0,
    )

    MAX_POLL_ATTEMPTS: int = Field(
        default=60,
        description="Poll intervals after which the client-side deadline expires the session",
        ge=1,
    )

    LOGIN_TIMEOUT_SECONDS: Optional[float] = Field(
        default=None,
        description="Explicit client-side deadline (overrides interval * MAX_POLL_ATTEMPTS)",
        gt=0,
    )

    POLL_MAX_CONSECUTIVE_FAILURES: int = Field(
        default=5,
        description="Consecutive transport/codec poll failures tolerated before failing the session",
        ge=1,
    )

    POLL_BACKOFF_BASE_SECONDS: float = Field(
        default=1.0,
        description="Backoff after the first failed poll (doubles per consecutive failure)",
        ge=0,
    )

    POLL_BACKOFF_MAX_SECONDS: float = Field(
        default=30.0,
        description="Upper bound for the poll failure backoff",
        ge=0,
    )

    # =========================================================================
    # Credential Encryption
    # =========================================================================

    STALE_KEY_RETRIES: int = Field(
        default=1,
        description="Automatic re-fetch/re-encrypt retries after a stale RSA key rejection",
        ge=0,
        le=5,
    )

    RSA_KEY_CACHE_SECONDS: int = Field(
        default=0,
        description="How long fetched RSA keys are reused (0 disables caching)",
        ge=0,
        le=3600,
    )

    # =========================================================================
    # Push Socket (QR logins)
    # =========================================================================

    PUSH_ENABLED: bool = Field(
        default=True,
        description="Listen for QR status updates over a websocket instead of polling",
    )

    PUSH_SOCKET_URL: Optional[str] = Field(
        default=None,
        description="Fixed websocket URL (skips CM directory discovery)",
    )

    PUSH_RECONNECT_ATTEMPTS: int = Field(
        default=1,
        description="Reconnects tried after the push socket drops before degrading to polling",
        ge=0,
        le=5,
    )

    PUSH_CONNECT_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for opening the push socket",
        gt=0,
    )

    # =========================================================================
    # Cookie Materialization
    # =========================================================================

    COOKIE_DOMAINS: str = Field(
        default="steamcommunity.com,store.steampowered.com,help.steampowered.com,checkout.steampowered.com",
        description="Comma-separated list of domains that receive the login cookie",
        min_length=1,
    )

    # =========================================================================
    # Logging
    # =========================================================================

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Log level used by setup_logging()",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_prefix="STEAM_SESSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def cookie_domains_list(self) -> List[str]:
        """
        Parse and return COOKIE_DOMAINS as a clean list.

        Returns:
            List of lowercase domain strings without whitespace, in order,
            without duplicates.
        """
        domains: List[str] = []
        for domain in self.COOKIE_DOMAINS.split(","):
            domain = domain.strip().lower()
            if domain and domain not in domains:
                domains.append(domain)
        return domains

    @property
    def web_api_base_url_str(self) -> str:
        """Web API base URL without trailing slash."""
        return str(self.WEB_API_BASE_URL).rstrip("/")

    @property
    def device_friendly_name(self) -> str:
        """
        Device name reported to Steam.

        Falls back to the user agent for web browser logins and to a fixed
        label for the other platforms.

        Returns:
            Friendly device name
        """
        if self.DEVICE_FRIENDLY_NAME:
            return self.DEVICE_FRIENDLY_NAME
        if self.PLATFORM_TYPE == PlatformType.WEB_BROWSER:
            return self.USER_AGENT
        if self.PLATFORM_TYPE == PlatformType.MOBILE_APP:
            return "Galaxy S22"
        return "steam-session"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("COOKIE_DOMAINS")
    @classmethod
    def validate_cookie_domains(cls, v: str) -> str:
        """
        Validate that COOKIE_DOMAINS contains at least one valid domain.

        Args:
            v: Raw comma-separated domains string

        Returns:
            Validated domains string

        Raises:
            ValueError: If no valid domains are provided
        """
        domains = [d.strip() for d in v.split(",") if d.strip()]

        if not domains:
            raise ValueError("COOKIE_DOMAINS must contain at least one domain")

        for domain in domains:
            if "." not in domain:
                raise ValueError(
                    f"Invalid domain format: '{domain}'. "
                    "Expected format: 'steamcommunity.com'"
                )

            if " " in domain or "/" in domain or ":" in domain:
                raise ValueError(
                    f"Invalid domain format: '{domain}'. "
                    "Domain should not contain spaces, paths or ports"
                )

        return v

    @field_validator("PUSH_SOCKET_URL")
    @classmethod
    def validate_push_socket_url(cls, v: Optional[str]) -> Optional[str]:
        """
        Validate that a fixed push socket URL uses a websocket scheme.

        Raises:
            ValueError: If the URL is not ws:// or wss://
        """
        if v is None:
            return v

        v = v.strip()
        if not v:
            return None

        if not (v.startswith("wss://") or v.startswith("ws://")):
            raise ValueError(
                f"PUSH_SOCKET_URL must start with ws:// or wss://, got: {v}"
            )

        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate log level is one of the standard logging levels.

        Raises:
            ValueError: If level is not supported
        """
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        if v.upper() not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return v.upper()


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once.
    Components accept an explicit ``settings`` argument; this is only the
    default when none is given.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If environment variables are invalid.

    Example:
        >>> from steam_session.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.PLATFORM_TYPE)
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Optional[Settings] = None) -> dict:
    """
    Validate timing settings and return a status report.

    Catches combinations that individually pass field validation but make
    no sense together.

    Returns:
        Dictionary with validation status and any warnings.

    Example:
        >>> status = validate_configuration()
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    settings = settings or get_settings()
    errors = []
    warnings = []

    if settings.POLL_BACKOFF_MAX_SECONDS < settings.POLL_BACKOFF_BASE_SECONDS:
        errors.append("POLL_BACKOFF_MAX_SECONDS is lower than POLL_BACKOFF_BASE_SECONDS")

    if settings.MIN_POLL_INTERVAL_SECONDS < 1.0:
        warnings.append("MIN_POLL_INTERVAL_SECONDS below 1 second may trigger rate limiting")

    if settings.LOGIN_TIMEOUT_SECONDS is not None and (
        settings.LOGIN_TIMEOUT_SECONDS < settings.MIN_POLL_INTERVAL_SECONDS
    ):
        errors.append("LOGIN_TIMEOUT_SECONDS is shorter than one poll interval")

    if settings.PUSH_SOCKET_URL and settings.PUSH_SOCKET_URL.startswith("ws://"):
        warnings.append("PUSH_SOCKET_URL is not using TLS (wss://)")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "cookie_domains": settings.cookie_domains_list,
        "platform_type": settings.PLATFORM_TYPE.name,
    }
