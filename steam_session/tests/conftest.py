"""
Shared fixtures for the steam_session test suite.

Provides:
- Settings tuned for fast tests (tiny poll intervals, no backoff sleeps)
- An RSA key pair and the matching RsaKey model
- A JWT factory producing Steam-shaped access/refresh tokens
- A scripted in-memory Transport
- Fake websocket connections for the push socket
"""

import asyncio
import inspect
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import BaseModel
from websockets.exceptions import ConnectionClosedError

from steam_session.codec.frames import EMsg, FrameHeader, build_frame, parse_frame
from steam_session.codec.messages import POLL_AUTH_SESSION_STATUS, ServiceMethod, to_protobuf
from steam_session.config import Settings
from steam_session.models import EResult, RsaKey
from steam_session.transports.base import Transport


STEAM_ID = 76561197960287930
TOKEN_SECRET = "test-token-signing-secret-0123456789abcdef"


# ============================================================================
# Settings
# ============================================================================

@pytest.fixture
def settings():
    """Settings with timings small enough for tests to finish quickly."""
    return Settings(
        _env_file=None,
        MIN_POLL_INTERVAL_SECONDS=0,
        DEFAULT_POLL_INTERVAL_SECONDS=0.01,
        LOGIN_TIMEOUT_SECONDS=5,
        POLL_BACKOFF_BASE_SECONDS=0,
        POLL_BACKOFF_MAX_SECONDS=0,
        WEB_API_BACKOFF_SECONDS=0,
        PUSH_CONNECT_TIMEOUT_SECONDS=1,
        COOKIE_DOMAINS="steamcommunity.com,store.steampowered.com",
    )


# ============================================================================
# RSA Keys
# ============================================================================

@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def rsa_key(rsa_private_key):
    """The public half of ``rsa_private_key`` as Steam sends it (hex strings)."""
    numbers = rsa_private_key.public_key().public_numbers()
    return RsaKey(
        modulus=format(numbers.n, "X"),
        exponent=format(numbers.e, "06x"),
        timestamp=1700000000000000,
    )


# ============================================================================
# Tokens
# ============================================================================

@pytest.fixture
def make_token():
    """
    Factory for Steam-style JWTs.

    Args (of the returned callable):
        audience: 'aud' claim (refresh tokens carry 'renew'/'derive')
        expires_in: Seconds until expiry (negative for expired tokens)
        steam_id: 'sub' claim
    """
    def _make(
        audience: Optional[List[str]] = None,
        expires_in: int = 3600,
        steam_id: int = STEAM_ID,
    ) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "iss": "steam",
            "sub": str(steam_id),
            "aud": audience or ["web", "mobile"],
            "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
            "iat": int(now.timestamp()),
        }
        return jwt.encode(payload, TOKEN_SECRET, algorithm="HS256")

    return _make


@pytest.fixture
def access_token(make_token):
    return make_token(audience=["web"], expires_in=3600)


@pytest.fixture
def refresh_token(make_token):
    return make_token(audience=["web", "renew", "derive"], expires_in=86400)


# ============================================================================
# Scripted Transport
# ============================================================================

class FakeTransport(Transport):
    """
    In-memory Transport returning scripted results per service method.

    Each method has a list of results consumed in order; the last one is
    repeated once the others are used up. A result may be a response model,
    an exception instance (raised) or a callable taking the request; an
    async callable is awaited, which lets a test hold a call in flight.
    """

    def __init__(self):
        self.results: Dict[str, List[Any]] = {}
        self.calls: List[tuple] = []

    def on(self, method: ServiceMethod, *results: Any) -> "FakeTransport":
        self.results[method.name] = list(results)
        return self

    def requests_for(self, method: ServiceMethod) -> List[BaseModel]:
        return [request for name, request in self.calls if name == method.name]

    async def send_request(self, method, request, access_token=None):
        self.calls.append((method.name, request))
        results = self.results.get(method.name)
        if not results:
            raise AssertionError(f"Unexpected call to {method.name}")

        result = results.pop(0) if len(results) > 1 else results[0]
        if isinstance(result, BaseException):
            raise result
        if callable(result) and not isinstance(result, BaseModel):
            result = result(request)
            if inspect.isawaitable(result):
                result = await result
            if isinstance(result, BaseException):
                raise result
        return result


@pytest.fixture
def transport():
    return FakeTransport()


# ============================================================================
# Fake Websocket
# ============================================================================

def service_response(job_id: int, response: Optional[BaseModel], eresult: int = EResult.OK) -> bytes:
    """Build a ServiceMethodResponse frame answering ``job_id``."""
    body = b""
    if response is not None:
        body = to_protobuf(response, POLL_AUTH_SESSION_STATUS.response_message).SerializeToString()
    header = FrameHeader(jobid_target=job_id, eresult=eresult)
    return build_frame(EMsg.SERVICE_METHOD_RESPONSE, header, body)


class FakeConnection:
    """
    Stand-in for a websockets client connection.

    ``responder`` is called with every parsed frame the client sends and may
    return bytes to deliver back (or an exception to raise from recv()).
    """

    def __init__(self, responder: Optional[Callable[[Any], Any]] = None):
        self.responder = responder
        self.sent: List[bytes] = []
        self.incoming: "asyncio.Queue[Any]" = asyncio.Queue()
        self.closed = False

    async def send(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(data)
        if self.responder is not None:
            reply = self.responder(parse_frame(data))
            if reply is not None:
                self.incoming.put_nowait(reply)

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


class FakeConnector:
    """Hands out FakeConnections in order and records the URLs used."""

    def __init__(self, *connections: Any):
        self.connections = list(connections)
        self.urls: List[str] = []
        self.kwargs: List[Dict[str, Any]] = []

    async def __call__(self, url: str, **kwargs):
        self.urls.append(url)
        self.kwargs.append(kwargs)
        if not self.connections:
            raise OSError("connection refused")
        connection = self.connections.pop(0)
        if isinstance(connection, BaseException):
            raise connection
        return connection


@pytest.fixture
def make_service_response():
    return service_response


@pytest.fixture
def connection_factory():
    return FakeConnection


@pytest.fixture
def connector_factory():
    return FakeConnector
