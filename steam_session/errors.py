"""
Typed exceptions for Steam login failures.

The hierarchy lets callers tell apart:
- failures that resolve by waiting or retrying (transport errors),
- failures that need new user input (SubmitError subclasses),
- failures that require a fresh login (LoginFailedError, SessionExpiredError,
  SessionRevokedError, RefreshRevokedError).
"""

from typing import Optional

from .models import FailureReason, describe_eresult


class SteamSessionError(Exception):
    """Base class for every error raised by this package."""


# =============================================================================
# Transport / Codec
# =============================================================================

class TransportError(SteamSessionError):
    """Network failure, timeout or 5xx after the transport exhausted its retries."""


class EResultError(SteamSessionError):
    """The server answered with an EResult other than OK. Never retried automatically."""

    def __init__(self, eresult: int, message: Optional[str] = None):
        self.eresult = eresult
        self.error_message = message
        detail = f": {message}" if message else ""
        super().__init__(f"Steam returned {describe_eresult(eresult)}{detail}")


class PushSocketError(TransportError):
    """The push socket could not be opened or was closed by the server."""


class CodecError(SteamSessionError):
    """Base class for encode/decode failures."""


class MalformedMessageError(CodecError):
    """
    A payload could not be decoded into the expected message.

    Covers truncated bodies, invalid protobuf, unknown frame types and
    field-set mismatches.
    """


# =============================================================================
# Credential Encryption
# =============================================================================

class KeyFetchError(SteamSessionError):
    """The RSA public key could not be fetched or parsed."""


# =============================================================================
# Begin Session
# =============================================================================

class BeginSessionError(SteamSessionError):
    """Begin-session call rejected or failed."""

    def __init__(self, message: str, eresult: Optional[int] = None):
        self.eresult = eresult
        super().__init__(message)


class StaleKeyError(BeginSessionError):
    """The encryption timestamp was rejected; the RSA key rotated."""


class RateLimitedError(BeginSessionError):
    """Too many login attempts. Wait before trying again."""


class InvalidCredentialsError(BeginSessionError):
    """Wrong account name or password."""


class BeginSessionTransportError(BeginSessionError):
    """Begin-session could not reach the server or got an unreadable answer."""


# =============================================================================
# Polling
# =============================================================================

class PollError(SteamSessionError):
    """Base class for poll failures."""


class PollTransportError(PollError):
    """Polls kept failing with transport or codec errors."""


class SessionExpiredError(PollError):
    """The session timed out server-side or hit the client-side deadline."""


class SessionRevokedError(PollError):
    """The server no longer recognises the session (revoked QR challenge, unknown id)."""


# =============================================================================
# Code Submission
# =============================================================================

class SubmitError(SteamSessionError):
    """A Steam Guard / email code could not be applied."""


class WrongCodeError(SubmitError):
    """The code was rejected. Ask the user for a new one."""


class NoSuchMethodOutstandingError(SubmitError):
    """No outstanding confirmation accepts this kind of code right now."""


class SubmitTransportError(SubmitError):
    """The code could not be delivered. Retrying the submission is safe."""


# =============================================================================
# Token Refresh
# =============================================================================

class RefreshError(SteamSessionError):
    """Base class for refresh failures."""


class RefreshRevokedError(RefreshError):
    """The refresh token is expired or revoked. Log in again from scratch."""


class RefreshTransportError(RefreshError):
    """Transient failure while refreshing. Retrying later may succeed."""


# =============================================================================
# Session Outcome
# =============================================================================

class InvalidTransitionError(SteamSessionError):
    """A state change not allowed by the session state graph was attempted."""


class LoginFailedError(SteamSessionError):
    """The login attempt reached the FAILED state."""

    def __init__(
        self,
        reason: FailureReason,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        self.reason = reason
        self.cause = cause
        super().__init__(message)


class LoginCancelledError(SteamSessionError):
    """The login attempt was cancelled by the caller."""
