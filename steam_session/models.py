"""
Data Models Module

This module defines the enums and Pydantic models shared by every layer of
the client: credential inputs, RSA key material, token pairs, cookies and the
status updates that transports hand to the session state machine.

Models are organized by functional area:
- Protocol enums (platform types, guard types, EResult codes)
- Credential models (password / QR inputs, encrypted credentials)
- Session models (status updates, start results)
- Token models (token pairs, claims, cookies, materialized sessions)

Wire-level request/response models live in ``steam_session.codec.messages``.
"""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from http.cookiejar import Cookie, CookieJar
from typing import Dict, FrozenSet, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr


# ============================================================================
# Protocol Enums
# ============================================================================

class PlatformType(IntEnum):
    """EAuthTokenPlatformType: the kind of client a token is issued to."""
    UNKNOWN = 0
    STEAM_CLIENT = 1
    WEB_BROWSER = 2
    MOBILE_APP = 3


class SessionPersistence(IntEnum):
    """ESessionPersistence."""
    INVALID = -1
    EPHEMERAL = 0
    PERSISTENT = 1


class GuardType(IntEnum):
    """EAuthSessionGuardType as reported in allowed confirmations."""
    UNKNOWN = 0
    NONE = 1
    EMAIL_CODE = 2
    DEVICE_CODE = 3
    DEVICE_CONFIRMATION = 4
    EMAIL_CONFIRMATION = 5
    MACHINE_TOKEN = 6
    LEGACY_MACHINE_AUTH = 7


class TokenRenewalType(IntEnum):
    """ETokenRenewalType: whether GenerateAccessTokenForApp may rotate the refresh token."""
    NONE = 0
    ALLOW = 1


class EResult(IntEnum):
    """Subset of Steam's EResult codes that the auth service returns."""
    INVALID = 0
    OK = 1
    FAIL = 2
    NO_CONNECTION = 3
    INVALID_PASSWORD = 5
    LOGGED_IN_ELSEWHERE = 6
    INVALID_PARAM = 8
    FILE_NOT_FOUND = 9
    BUSY = 10
    INVALID_STATE = 11
    ACCESS_DENIED = 15
    TIMEOUT = 16
    BANNED = 17
    ACCOUNT_NOT_FOUND = 18
    SERVICE_UNAVAILABLE = 20
    REVOKED = 26
    EXPIRED = 27
    DUPLICATE_REQUEST = 29
    TRY_ANOTHER_CM = 48
    ACCOUNT_LOGON_DENIED = 63
    INVALID_LOGIN_AUTH_CODE = 65
    EXPIRED_LOGIN_AUTH_CODE = 71
    RATE_LIMIT_EXCEEDED = 84
    ACCOUNT_LOGIN_DENIED_NEED_TWO_FACTOR = 85
    TWO_FACTOR_CODE_MISMATCH = 88


def describe_eresult(value: int) -> str:
    """
    Return a readable name for a raw EResult value.

    Args:
        value: Raw integer from the ``x-eresult`` header or a CM frame header

    Returns:
        Enum member name, or ``EResult(<value>)`` for codes outside the subset
    """
    try:
        return EResult(value).name
    except ValueError:
        return f"EResult({value})"


# ============================================================================
# Session Enums
# ============================================================================

class FlowKind(str, Enum):
    """Which begin-session call started the attempt."""
    CREDENTIALS = "credentials"
    QR_CODE = "qr_code"


class ConfirmationMethod(str, Enum):
    """A secondary proof gating session completion."""
    DEVICE_CONFIRMATION = "device_confirmation"
    EMAIL_CODE = "email_code"
    GUARD_CODE = "guard_code"
    QR_SCAN_APPROVAL = "qr_scan_approval"
    EMAIL_CONFIRMATION = "email_confirmation"


# Methods the caller can satisfy with submit_code(), and the guard type sent for each
CODE_METHODS: Dict[ConfirmationMethod, GuardType] = {
    ConfirmationMethod.GUARD_CODE: GuardType.DEVICE_CODE,
    ConfirmationMethod.EMAIL_CODE: GuardType.EMAIL_CODE,
}

GUARD_TYPE_METHODS: Dict[GuardType, ConfirmationMethod] = {
    GuardType.EMAIL_CODE: ConfirmationMethod.EMAIL_CODE,
    GuardType.DEVICE_CODE: ConfirmationMethod.GUARD_CODE,
    GuardType.DEVICE_CONFIRMATION: ConfirmationMethod.DEVICE_CONFIRMATION,
    GuardType.EMAIL_CONFIRMATION: ConfirmationMethod.EMAIL_CONFIRMATION,
}


class FailureReason(str, Enum):
    """Why a session ended in the FAILED state."""
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    STALE_KEY = "stale_key"
    REVOKED = "revoked"
    REJECTED = "rejected"
    TRANSPORT = "transport"
    FINALIZE = "finalize"


class TerminalSignal(str, Enum):
    """Terminal status reported by the server through a poll or push response."""
    EXPIRED = "expired"
    REVOKED = "revoked"


# Poll results that end the session instead of being retried
POLL_TERMINAL_SIGNALS: Dict[int, TerminalSignal] = {
    EResult.EXPIRED: TerminalSignal.EXPIRED,
    EResult.TIMEOUT: TerminalSignal.EXPIRED,
    EResult.FILE_NOT_FOUND: TerminalSignal.REVOKED,
    EResult.REVOKED: TerminalSignal.REVOKED,
    EResult.ACCESS_DENIED: TerminalSignal.REVOKED,
    EResult.INVALID_PARAM: TerminalSignal.REVOKED,
}


# ============================================================================
# Credential Models
# ============================================================================

class PasswordCredentials(BaseModel):
    """Account name and password login, optionally with a Steam Guard code."""
    model_config = ConfigDict(frozen=True)

    account_name: str = Field(..., description="Steam account name", min_length=1)
    password: SecretStr = Field(..., description="Account password")
    steam_guard_code: Optional[str] = Field(
        None, description="Code submitted automatically if Steam asks for one"
    )
    steam_guard_machine_token: Optional[SecretStr] = Field(
        None, description="Guard data from a previous login (skips email codes)"
    )


class QrCredentials(BaseModel):
    """QR login: no secret, the server issues a challenge URL instead."""
    model_config = ConfigDict(frozen=True)


CredentialInput = Union[PasswordCredentials, QrCredentials]


class RsaKey(BaseModel):
    """Password encryption key as returned by GetPasswordRSAPublicKey."""
    modulus: str = Field(..., description="Hex encoded RSA modulus")
    exponent: str = Field(..., description="Hex encoded RSA public exponent")
    timestamp: int = Field(..., description="Server nonce binding ciphertext to this key")


class EncryptedCredential(BaseModel):
    """Ciphertext plus the key timestamp it must be submitted with."""
    model_config = ConfigDict(frozen=True)

    encrypted_password: str = Field(..., description="Base64 RSA ciphertext", repr=False)
    timestamp: int = Field(..., description="Timestamp of the key used for encryption")


# ============================================================================
# Session Models
# ============================================================================

class StatusUpdate(BaseModel):
    """
    One observation of the remote session, from either transport.

    Poll responses and push frames are both normalised into this shape so the
    state machine has a single mutation point.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    source: str = Field(..., description="'poll' or 'push'")
    satisfied: FrozenSet[ConfirmationMethod] = Field(default_factory=frozenset)
    refresh_token: Optional[str] = Field(None, repr=False)
    access_token: Optional[str] = Field(None, repr=False)
    new_client_id: Optional[int] = None
    new_challenge_url: Optional[str] = None
    had_remote_interaction: bool = False
    account_name: Optional[str] = None
    new_guard_data: Optional[str] = Field(None, repr=False)
    terminal: Optional[TerminalSignal] = None
    failure: Optional[Exception] = Field(
        None, description="Unrecoverable producer error (exhausted retries)"
    )

    @property
    def is_terminal(self) -> bool:
        return self.terminal is not None or self.failure is not None


class StartResult(BaseModel):
    """What the caller needs to act on right after begin-session."""
    flow_kind: FlowKind
    client_id: int
    steam_id: Optional[int] = None
    confirmation_methods: List[ConfirmationMethod] = Field(default_factory=list)
    confirmation_messages: Dict[ConfirmationMethod, str] = Field(default_factory=dict)
    challenge_url: Optional[str] = None
    poll_interval: float

    @property
    def action_required(self) -> bool:
        """True when the user must do something before the session can complete."""
        return bool(self.confirmation_methods)


# ============================================================================
# Token Models
# ============================================================================

class TokenPair(BaseModel):
    """Access and refresh bearer tokens (JWTs with embedded expiry claims)."""
    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., repr=False)
    refresh_token: str = Field(..., repr=False)


class TokenClaims(BaseModel):
    """Claims read locally from a Steam JWT."""
    steam_id: int = Field(..., description="64-bit SteamID from the 'sub' claim")
    issued_at: Optional[datetime] = None
    expires_at: datetime
    audience: List[str] = Field(default_factory=list)
    issuer: Optional[str] = None

    @property
    def is_refresh_token(self) -> bool:
        return "renew" in self.audience or "derive" in self.audience


class SessionCookie(BaseModel):
    """A browser cookie derived from a token pair."""
    model_config = ConfigDict(frozen=True)

    domain: str
    name: str
    value: str = Field(..., repr=False)
    expires: datetime
    path: str = "/"
    secure: bool = True
    http_only: bool = True

    def to_cookie(self) -> Cookie:
        """Convert to an ``http.cookiejar.Cookie``."""
        return Cookie(
            version=0,
            name=self.name,
            value=self.value,
            port=None,
            port_specified=False,
            domain=self.domain,
            domain_specified=True,
            domain_initial_dot=False,
            path=self.path,
            path_specified=True,
            secure=self.secure,
            expires=int(self.expires.timestamp()),
            discard=False,
            comment=None,
            comment_url=None,
            rest={"HttpOnly": None} if self.http_only else {},
        )


class MaterializedSession(BaseModel):
    """Everything handed back to the caller once a login is established."""
    tokens: TokenPair
    steam_id: int
    account_name: Optional[str] = None
    guard_data: Optional[str] = Field(None, repr=False)
    access_token_expires_at: datetime
    refresh_token_expires_at: Optional[datetime] = None
    cookies: List[SessionCookie] = Field(default_factory=list)

    def cookies_for(self, domain: str) -> List[SessionCookie]:
        """Cookies set for ``domain`` (exact match, case-insensitive)."""
        domain = domain.lower()
        return [cookie for cookie in self.cookies if cookie.domain == domain]

    def to_cookiejar(self, jar: Optional[CookieJar] = None) -> CookieJar:
        """
        Add the session cookies to a standard cookie jar.

        Args:
            jar: Existing jar to populate (a new one is created otherwise)

        Returns:
            The populated jar
        """
        jar = jar if jar is not None else CookieJar()
        for cookie in self.cookies:
            jar.set_cookie(cookie.to_cookie())
        return jar

    @property
    def is_access_token_expired(self) -> bool:
        return datetime.now(timezone.utc) >= self.access_token_expires_at
