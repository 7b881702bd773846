"""
Credential encryption.

Steam never receives the plain password: the client fetches a per-account
RSA public key, encrypts the password with PKCS#1 v1.5 and sends the
ciphertext together with the key's timestamp. A begin-session call with an
old timestamp is rejected, so cached keys are dropped on that rejection.
"""

import base64
import logging
import time
from typing import Callable, Dict, Optional, Tuple

from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..codec.messages import GET_PASSWORD_RSA_PUBLIC_KEY, RsaPublicKeyRequest
from ..config import Settings, get_settings
from ..errors import CodecError, EResultError, KeyFetchError, TransportError
from ..models import EncryptedCredential, RsaKey
from ..transports.base import Transport

logger = logging.getLogger(__name__)


# =============================================================================
# Key Cache
# =============================================================================

class RsaKeyCache:
    """
    Per-account cache of fetched RSA keys.

    A TTL of 0 disables caching. Instances are injected so that nothing is
    shared between sessions unless the caller wants it to be.
    """

    def __init__(self, ttl_seconds: float = 0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[RsaKey, float]] = {}

    def get(self, account_name: str) -> Optional[RsaKey]:
        if self.ttl_seconds <= 0:
            return None

        entry = self._entries.get(account_name)
        if entry is None:
            return None

        key, fetched_at = entry
        if self._clock() - fetched_at >= self.ttl_seconds:
            del self._entries[account_name]
            return None
        return key

    def put(self, account_name: str, key: RsaKey) -> None:
        if self.ttl_seconds > 0:
            self._entries[account_name] = (key, self._clock())

    def invalidate(self, account_name: str) -> None:
        self._entries.pop(account_name, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# Encryptor
# =============================================================================

class CredentialEncryptor:
    """
    Fetches RSA keys and encrypts passwords with them.

    Args:
        transport: Transport used for ``GetPasswordRSAPublicKey``
        cache: Optional key cache (a non-caching one is created otherwise)
        settings: Settings (defaults to :func:`get_settings`)
    """

    def __init__(
        self,
        transport: Transport,
        cache: Optional[RsaKeyCache] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.transport = transport
        self.cache = cache if cache is not None else RsaKeyCache(settings.RSA_KEY_CACHE_SECONDS)

    async def fetch_key(self, account_name: str) -> RsaKey:
        """
        Get the password encryption key for an account.

        Args:
            account_name: Steam account name

        Returns:
            RSA key with the server timestamp it is bound to

        Raises:
            KeyFetchError: On network, decode or protocol failure, an unknown
                account, or key material that is empty or not hex
        """
        cached = self.cache.get(account_name)
        if cached is not None:
            logger.debug("Using cached RSA key", extra={"key_timestamp": cached.timestamp})
            return cached

        try:
            response = await self.transport.send_request(
                GET_PASSWORD_RSA_PUBLIC_KEY,
                RsaPublicKeyRequest(account_name=account_name),
            )
        except EResultError as e:
            logger.warning(f"RSA key fetch rejected: {e}", extra={"eresult": e.eresult})
            raise KeyFetchError(f"Key fetch rejected: {e}") from e
        except (TransportError, CodecError) as e:
            logger.warning(f"RSA key fetch failed: {e}")
            raise KeyFetchError(f"Key fetch failed: {e}") from e

        key = RsaKey(
            modulus=response.publickey_mod,
            exponent=response.publickey_exp,
            timestamp=response.timestamp,
        )
        self._validate_key(key)
        self.cache.put(account_name, key)

        logger.info("Fetched RSA key", extra={"key_timestamp": key.timestamp})
        return key

    def invalidate(self, account_name: str) -> None:
        """Forget any cached key for ``account_name`` (after a stale-key rejection)."""
        self.cache.invalidate(account_name)

    @staticmethod
    def _validate_key(key: RsaKey) -> None:
        for label, value in (("modulus", key.modulus), ("exponent", key.exponent)):
            if not value:
                raise KeyFetchError(f"RSA key has an empty {label}")
            try:
                int(value, 16)
            except ValueError:
                raise KeyFetchError(f"RSA key {label} is not hex") from None

        try:
            CredentialEncryptor._public_key(key)
        except ValueError as e:
            raise KeyFetchError(f"RSA key is not a usable public key: {e}") from e

    @staticmethod
    def _public_key(key: RsaKey) -> rsa.RSAPublicKey:
        return rsa.RSAPublicNumbers(int(key.exponent, 16), int(key.modulus, 16)).public_key()

    @staticmethod
    def encrypt(secret: str, key: RsaKey) -> str:
        """
        RSA-encrypt a secret with PKCS#1 v1.5 padding.

        Args:
            secret: Plain text secret (encoded as UTF-8)
            key: Key from :meth:`fetch_key`

        Returns:
            Base64 encoded ciphertext

        Raises:
            ValueError: If the secret is too long for the key size
        """
        public_key = CredentialEncryptor._public_key(key)
        ciphertext = public_key.encrypt(secret.encode("utf-8"), padding.PKCS1v15())
        return base64.b64encode(ciphertext).decode("ascii")

    async def encrypt_password(self, account_name: str, secret: str) -> EncryptedCredential:
        """
        Fetch the account's key and encrypt ``secret`` with it.

        Returns:
            Ciphertext plus the key timestamp to submit with it

        Raises:
            KeyFetchError: If the key cannot be fetched or parsed
            ValueError: If the secret is too long for the key size
        """
        key = await self.fetch_key(account_name)
        return EncryptedCredential(
            encrypted_password=self.encrypt(secret, key),
            timestamp=key.timestamp,
        )
