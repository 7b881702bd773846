"""
Token materialization and refresh.

This module handles:
- Reading Steam JWT claims locally (no signature check, no network call)
- Deriving the ``steamLoginSecure`` cookies for every configured domain
- Building the MaterializedSession handed to the caller
- Renewing an access token from a refresh token
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import jwt

from ..codec.messages import GENERATE_ACCESS_TOKEN_FOR_APP, GenerateAccessTokenRequest
from ..config import Settings, get_settings
from ..errors import (
    CodecError,
    EResultError,
    MalformedMessageError,
    RefreshRevokedError,
    RefreshTransportError,
    TransportError,
)
from ..log import mask_secret
from ..models import (
    EResult,
    MaterializedSession,
    SessionCookie,
    TokenClaims,
    TokenPair,
    TokenRenewalType,
)
from ..transports.base import Transport

logger = logging.getLogger(__name__)


LOGIN_COOKIE_NAME = "steamLoginSecure"

# EResults meaning the refresh token itself is no longer usable
REFRESH_REVOKED_ERESULTS = {EResult.ACCESS_DENIED, EResult.REVOKED, EResult.EXPIRED}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Claim Helpers
# =============================================================================

def decode_unverified(token: str) -> Dict[str, Any]:
    """
    Decode a JWT payload without verifying its signature or expiry.

    Raises:
        MalformedMessageError: If the token is not a decodable JWT
    """
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        raise MalformedMessageError(f"Token is not a valid JWT: {e}") from e


def get_token_expiry(claims: Dict[str, Any]) -> Optional[datetime]:
    """
    Extract expiry datetime from token claims.

    Returns:
        Expiry datetime in UTC, or None if not present
    """
    exp = claims.get("exp")
    if exp:
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    return None


def decode_claims(token: str) -> TokenClaims:
    """
    Read the claims Steam puts in its access and refresh tokens.

    Args:
        token: JWT string

    Returns:
        TokenClaims with steam id (``sub``), issue/expiry times and audience

    Raises:
        MalformedMessageError: If the token cannot be decoded or lacks
            ``sub``/``exp``
    """
    claims = decode_unverified(token)

    expires_at = get_token_expiry(claims)
    if expires_at is None:
        raise MalformedMessageError("Token has no 'exp' claim")

    try:
        steam_id = int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise MalformedMessageError("Token has no numeric 'sub' claim") from None

    audience = claims.get("aud") or []
    if isinstance(audience, str):
        audience = [audience]

    issued_at = claims.get("iat")
    return TokenClaims(
        steam_id=steam_id,
        issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc) if issued_at else None,
        expires_at=expires_at,
        audience=list(audience),
        issuer=claims.get("iss"),
    )


# =============================================================================
# Materializer
# =============================================================================

class TokenMaterializer:
    """
    Turns token pairs into sessions and cookies, and refreshes them.

    Args:
        transport: Transport used for ``GenerateAccessTokenForApp``
        settings: Settings (defaults to :func:`get_settings`)
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        transport: Transport,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.transport = transport
        self.settings = settings or get_settings()
        self._clock = clock

    def decode_claims(self, token: str) -> TokenClaims:
        return decode_claims(token)

    def build_cookies(self, pair: TokenPair) -> List[SessionCookie]:
        """
        Derive one login cookie per configured domain.

        The cookie expires together with the access token.

        Raises:
            MalformedMessageError: If the access token cannot be decoded
        """
        claims = decode_claims(pair.access_token)
        value = f"{claims.steam_id}%7C%7C{pair.access_token}"
        return [
            SessionCookie(
                domain=domain,
                name=LOGIN_COOKIE_NAME,
                value=value,
                expires=claims.expires_at,
            )
            for domain in self.settings.cookie_domains_list
        ]

    def materialize(
        self,
        pair: TokenPair,
        account_name: Optional[str] = None,
        guard_data: Optional[str] = None,
    ) -> MaterializedSession:
        """
        Build the session object handed to the caller.

        Args:
            pair: Access and refresh token
            account_name: Account name reported by the server
            guard_data: New Steam Guard machine token reported by the server

        Returns:
            MaterializedSession with expiries and cookies

        Raises:
            MalformedMessageError: If a token cannot be decoded or the two
                tokens belong to different accounts
        """
        access_claims = decode_claims(pair.access_token)
        refresh_claims = decode_claims(pair.refresh_token)

        if access_claims.steam_id != refresh_claims.steam_id:
            raise MalformedMessageError("Access and refresh token belong to different accounts")

        session = MaterializedSession(
            tokens=pair,
            steam_id=access_claims.steam_id,
            account_name=account_name,
            guard_data=guard_data,
            access_token_expires_at=access_claims.expires_at,
            refresh_token_expires_at=refresh_claims.expires_at,
            cookies=self.build_cookies(pair),
        )

        logger.info(
            "Session materialized",
            extra={
                "steam_id": session.steam_id,
                "access_token": mask_secret(pair.access_token),
                "cookie_count": len(session.cookies),
            },
        )
        return session

    async def refresh(self, refresh_token: str, allow_renewal: bool = False) -> TokenPair:
        """
        Get a new access token for an established session.

        Args:
            refresh_token: Refresh token from a previous login
            allow_renewal: Let Steam rotate the refresh token as well

        Returns:
            New TokenPair; keeps ``refresh_token`` unless Steam rotated it

        Raises:
            RefreshRevokedError: The refresh token is expired, revoked or unusable
            RefreshTransportError: Transient failure, retrying later may succeed
        """
        try:
            claims = decode_claims(refresh_token)
        except MalformedMessageError as e:
            raise RefreshRevokedError(f"Refresh token cannot be decoded: {e}") from e

        if claims.expires_at <= self._clock():
            raise RefreshRevokedError(f"Refresh token expired at {claims.expires_at.isoformat()}")

        request = GenerateAccessTokenRequest(
            refresh_token=refresh_token,
            steamid=claims.steam_id,
            renewal_type=TokenRenewalType.ALLOW if allow_renewal else TokenRenewalType.NONE,
        )

        try:
            response = await self.transport.send_request(GENERATE_ACCESS_TOKEN_FOR_APP, request)
        except EResultError as e:
            if e.eresult in REFRESH_REVOKED_ERESULTS:
                logger.warning(f"Refresh token rejected: {e}", extra={"steam_id": claims.steam_id})
                raise RefreshRevokedError(str(e)) from e
            raise RefreshTransportError(str(e)) from e
        except (TransportError, CodecError) as e:
            raise RefreshTransportError(f"Token refresh failed: {e}") from e

        if not response.access_token:
            raise RefreshTransportError("Token refresh returned no access token")

        try:
            access_claims = decode_claims(response.access_token)
        except MalformedMessageError as e:
            raise RefreshTransportError(f"Refreshed access token cannot be decoded: {e}") from e

        if access_claims.expires_at <= self._clock():
            raise RefreshTransportError("Refreshed access token is already expired")

        logger.info(
            "Access token refreshed",
            extra={
                "steam_id": claims.steam_id,
                "rotated": bool(response.refresh_token),
                "access_token": mask_secret(response.access_token),
            },
        )
        return TokenPair(
            access_token=response.access_token,
            refresh_token=response.refresh_token or refresh_token,
        )
