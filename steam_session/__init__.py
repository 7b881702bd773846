"""
steam_session
=============

Log in to Steam and obtain access/refresh tokens and web cookies.

Supports username/password logins (with Steam Guard device approval, email
codes and authenticator codes) and QR-code logins approved from the Steam
mobile app.

Example:
    >>> import httpx
    >>> from steam_session import PasswordCredentials, create_login_session
    >>>
    >>> async with httpx.AsyncClient() as client:
    ...     session = create_login_session(
    ...         PasswordCredentials(account_name="gaben", password="hunter2"),
    ...         client,
    ...     )
    ...     start = await session.start()
    ...     materialized = await session.wait_for_result()
    ...     jar = materialized.to_cookiejar()
"""

from .auth import (
    CredentialEncryptor,
    LoginSession,
    RsaKeyCache,
    SessionStatus,
    TokenMaterializer,
    create_login_session,
)
from .config import Settings, get_settings
from .errors import (
    BeginSessionError,
    CodecError,
    EResultError,
    InvalidCredentialsError,
    InvalidTransitionError,
    KeyFetchError,
    LoginCancelledError,
    LoginFailedError,
    MalformedMessageError,
    NoSuchMethodOutstandingError,
    PollError,
    PollTransportError,
    PushSocketError,
    RateLimitedError,
    RefreshError,
    RefreshRevokedError,
    RefreshTransportError,
    SessionExpiredError,
    SessionRevokedError,
    StaleKeyError,
    SteamSessionError,
    SubmitError,
    SubmitTransportError,
    TransportError,
    WrongCodeError,
)
from .log import setup_logging
from .models import (
    ConfirmationMethod,
    FailureReason,
    FlowKind,
    MaterializedSession,
    PasswordCredentials,
    PlatformType,
    QrCredentials,
    SessionCookie,
    StartResult,
    TokenPair,
)
from .transports import PushSocket, Transport, WebApiTransport

__version__ = "0.1.0"

__all__ = [
    # Session
    "LoginSession",
    "create_login_session",
    "SessionStatus",
    "CredentialEncryptor",
    "RsaKeyCache",
    "TokenMaterializer",
    # Transports
    "Transport",
    "WebApiTransport",
    "PushSocket",
    # Models
    "ConfirmationMethod",
    "FailureReason",
    "FlowKind",
    "MaterializedSession",
    "PasswordCredentials",
    "PlatformType",
    "QrCredentials",
    "SessionCookie",
    "StartResult",
    "TokenPair",
    # Configuration
    "Settings",
    "get_settings",
    "setup_logging",
    # Errors
    "SteamSessionError",
    "TransportError",
    "EResultError",
    "PushSocketError",
    "CodecError",
    "MalformedMessageError",
    "KeyFetchError",
    "BeginSessionError",
    "StaleKeyError",
    "RateLimitedError",
    "InvalidCredentialsError",
    "PollError",
    "PollTransportError",
    "SessionExpiredError",
    "SessionRevokedError",
    "SubmitError",
    "WrongCodeError",
    "NoSuchMethodOutstandingError",
    "SubmitTransportError",
    "RefreshError",
    "RefreshRevokedError",
    "RefreshTransportError",
    "InvalidTransitionError",
    "LoginFailedError",
    "LoginCancelledError",
]
