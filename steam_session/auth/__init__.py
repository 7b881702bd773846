"""
Authentication Package

This package runs the Steam login flow from credentials to tokens.

Modules:
- encryptor: RSA key fetching/caching and password encryption
- state: Session statuses, the transition graph and the AuthSession record
- session: LoginSession state machine, status producers and finalization
- tokens: JWT claim decoding, cookie derivation and token refresh

The login flow:
1. Caller creates a LoginSession with password or QR credentials
2. start() begins the remote session (encrypting the password first)
3. A poll task or push socket reports status while the user confirms
4. wait_for_result() finalizes the confirmed session into tokens and cookies
"""

from .encryptor import CredentialEncryptor, RsaKeyCache
from .session import LoginSession, create_login_session
from .state import AuthSession, SessionStatus
from .tokens import TokenMaterializer, decode_claims

__all__ = [
    "CredentialEncryptor",
    "RsaKeyCache",
    "LoginSession",
    "create_login_session",
    "AuthSession",
    "SessionStatus",
    "TokenMaterializer",
    "decode_claims",
]
