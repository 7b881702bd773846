"""
Unit Tests for the Web API Transport
====================================

Tests for steam_session/transports/web_api.py

Test Coverage:
--------------
1. Request building (GET query vs POST form, headers, access token)
2. EResult handling (x-eresult, x-error_message, HTTP 429)
3. Retry on 5xx, timeouts and network errors
4. Malformed body retry
"""

import base64
from typing import List
from urllib.parse import parse_qs

import httpx
import pytest

from steam_session.codec.messages import (
    GET_PASSWORD_RSA_PUBLIC_KEY,
    POLL_AUTH_SESSION_STATUS,
    PollStatusRequest,
    PollStatusResponse,
    RsaPublicKeyRequest,
    RsaPublicKeyResponse,
    parse_message,
    to_protobuf,
)
from steam_session.errors import EResultError, MalformedMessageError, TransportError
from steam_session.models import EResult, PlatformType
from steam_session.transports import WebApiTransport


KEY_RESPONSE = RsaPublicKeyResponse(publickey_mod="C0FFEE", publickey_exp="010001", timestamp=12345)
POLL_REQUEST = PollStatusRequest(client_id=42, request_id=b"\x01\x02\x03")


def protobuf_body(method, response) -> bytes:
    return to_protobuf(response, method.response_message).SerializeToString()


def ok(method, response) -> httpx.Response:
    return httpx.Response(200, headers={"x-eresult": "1"}, content=protobuf_body(method, response))


class Recorder:
    """MockTransport handler replaying scripted responses and recording requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        result = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def make_transport(settings):
    def _make(handler, **overrides):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return WebApiTransport(client, settings.model_copy(update=overrides))

    return _make


# ============================================================================
# Request Building
# ============================================================================

@pytest.mark.asyncio
async def test_get_sends_encoded_request_as_query(make_transport):
    recorder = Recorder(ok(GET_PASSWORD_RSA_PUBLIC_KEY, KEY_RESPONSE))
    transport = make_transport(recorder)

    response = await transport.send_request(GET_PASSWORD_RSA_PUBLIC_KEY, RsaPublicKeyRequest(account_name="gaben"))

    assert response == KEY_RESPONSE
    (request,) = recorder.requests
    assert request.method == "GET"
    assert request.url.path == "/IAuthenticationService/GetPasswordRSAPublicKey/v1"

    encoded = request.url.params["input_protobuf_encoded"]
    message = parse_message(GET_PASSWORD_RSA_PUBLIC_KEY.request_message, base64.b64decode(encoded))
    assert message.account_name == "gaben"


@pytest.mark.asyncio
async def test_post_sends_encoded_request_as_form(make_transport):
    recorder = Recorder(ok(POLL_AUTH_SESSION_STATUS, PollStatusResponse(had_remote_interaction=True)))
    transport = make_transport(recorder)

    response = await transport.send_request(POLL_AUTH_SESSION_STATUS, POLL_REQUEST, access_token="bearer-token")

    assert response.had_remote_interaction is True
    (request,) = recorder.requests
    assert request.method == "POST"
    form = parse_qs(request.content.decode())
    assert form["access_token"] == ["bearer-token"]

    message = parse_message(
        POLL_AUTH_SESSION_STATUS.request_message,
        base64.b64decode(form["input_protobuf_encoded"][0]),
    )
    assert message.client_id == 42
    assert message.request_id == b"\x01\x02\x03"


@pytest.mark.asyncio
async def test_browser_logins_send_community_origin(make_transport):
    recorder = Recorder(ok(POLL_AUTH_SESSION_STATUS, PollStatusResponse()))
    transport = make_transport(recorder, USER_AGENT="test-agent/1.0")

    await transport.send_request(POLL_AUTH_SESSION_STATUS, POLL_REQUEST)

    headers = recorder.requests[0].headers
    assert headers["user-agent"] == "test-agent/1.0"
    assert headers["origin"] == "https://steamcommunity.com"
    assert headers["referer"] == "https://steamcommunity.com/"


@pytest.mark.asyncio
async def test_client_logins_send_no_origin(make_transport):
    recorder = Recorder(ok(POLL_AUTH_SESSION_STATUS, PollStatusResponse()))
    transport = make_transport(recorder, PLATFORM_TYPE=PlatformType.STEAM_CLIENT)

    await transport.send_request(POLL_AUTH_SESSION_STATUS, POLL_REQUEST)

    assert "origin" not in recorder.requests[0].headers


# ============================================================================
# EResult Handling
# ============================================================================

@pytest.mark.asyncio
async def test_eresult_header_raises_without_retry(make_transport):
    recorder = Recorder(
        httpx.Response(200, headers={"x-eresult": "5", "x-error_message": "Invalid password"})
    )
    transport = make_transport(recorder)

    with pytest.raises(EResultError) as exc_info:
        await transport.send_request(POLL_AUTH_SESSION_STATUS, POLL_REQUEST)

    assert exc_info.value.eresult == EResult.INVALID_PASSWORD
    assert exc_info.value.error_message == "Invalid password"
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_http_429_is_rate_limit(make_transport):
    recorder = Recorder(httpx.Response(429))
    transport = make_transport(recorder)

    with pytest.raises(EResultError) as exc_info:
        await transport.send_request(POLL_AUTH_SESSION_STATUS, POLL_REQUEST)

    assert exc_info.value.eresult == EResult.RATE_LIMIT_EXCEEDED
    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_other_4xx_is_transport_error(make_transport):
    transport = make_transport(Recorder(httpx.Response(404)))

    with pytest.raises(TransportError):
        await transport.send_request(POLL_AUTH_SESSION_STATUS, POLL_REQUEST)


# ============================================================================
# Retries
# ============================================================================

@pytest.mark.asyncio
async def test_retries_server_errors(make_transport):
    recorder = Recorder(
        httpx.Response(503),
        httpx.ConnectError("connection refused"),
        ok(POLL_AUTH_SESSION_STATUS, PollStatusResponse(new_client_id=7)),
    )
    transport = make_transport(recorder)

    response = await transport.send_request(POLL_AUTH_SESSION_STATUS, POLL_REQUEST)

    assert response.new_client_id == 7
    assert len(recorder.requests) == 3


@pytest.mark.asyncio
async def test_raises_transport_error_when_attempts_exhausted(make_transport):
    recorder = Recorder(httpx.ReadTimeout("timed out"))
    transport = make_transport(recorder, WEB_API_MAX_ATTEMPTS=2)

    with pytest.raises(TransportError) as exc_info:
        await transport.send_request(POLL_AUTH_SESSION_STATUS, POLL_REQUEST)

    assert "after 2 attempts" in str(exc_info.value)
    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_malformed_body_is_retried_once(make_transport):
    recorder = Recorder(
        httpx.Response(200, headers={"x-eresult": "1"}, content=b"\x0a\xff"),
        ok(GET_PASSWORD_RSA_PUBLIC_KEY, KEY_RESPONSE),
    )
    transport = make_transport(recorder)

    response = await transport.send_request(GET_PASSWORD_RSA_PUBLIC_KEY, RsaPublicKeyRequest(account_name="gaben"))

    assert response == KEY_RESPONSE
    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_malformed_body_twice_raises(make_transport):
    recorder = Recorder(httpx.Response(200, headers={"x-eresult": "1"}, content=b""))
    transport = make_transport(recorder)

    with pytest.raises(MalformedMessageError):
        await transport.send_request(GET_PASSWORD_RSA_PUBLIC_KEY, RsaPublicKeyRequest(account_name="gaben"))

    assert len(recorder.requests) == 2
