"""
Web API Transport
=================

Sends protocol requests to ``https://api.steampowered.com`` over HTTPS.

Request format:
---------------
- ``GetPasswordRSAPublicKey`` is a GET, every other call is a POST
- The protobuf request is base64 encoded into the ``input_protobuf_encoded``
  query parameter (GET) or form field (POST)
- The response body is the raw protobuf response

Result handling:
----------------
- ``x-eresult`` header other than 1 -> ``EResultError`` (never retried)
- Network errors, timeouts and 5xx -> retried with exponential backoff,
  ``TransportError`` once ``WEB_API_MAX_ATTEMPTS`` is exhausted
- Undecodable body -> retried once, then ``MalformedMessageError``
"""

import asyncio
import base64
import logging
from typing import Dict, Optional

import httpx
from pydantic import BaseModel

from ..codec.messages import ServiceMethod, decode, encode
from ..config import Settings, get_settings
from ..errors import EResultError, MalformedMessageError, TransportError
from ..models import EResult, PlatformType
from .base import Transport

logger = logging.getLogger(__name__)


COMMUNITY_ORIGIN = "https://steamcommunity.com"


class WebApiTransport(Transport):
    """
    HTTPS transport backed by an injected ``httpx.AsyncClient``.

    The client (and its connection pool) belongs to the caller and is
    never closed here.
    """

    def __init__(self, client: httpx.AsyncClient, settings: Optional[Settings] = None):
        self._client = client
        self._settings = settings or get_settings()

    # ========================================================================
    # Request Building
    # ========================================================================

    def build_url(self, method: ServiceMethod) -> str:
        return f"{self._settings.web_api_base_url_str}/{method.path}"

    def build_headers(self) -> Dict[str, str]:
        """
        Headers sent with every call.

        Web browser logins also present the community site as origin,
        matching what the Steam login page sends.
        """
        headers = {
            "User-Agent": self._settings.USER_AGENT,
            "Accept": "application/x-protobuf, */*",
        }
        if self._settings.PLATFORM_TYPE == PlatformType.WEB_BROWSER:
            headers["Origin"] = COMMUNITY_ORIGIN
            headers["Referer"] = f"{COMMUNITY_ORIGIN}/"
        return headers

    # ========================================================================
    # Sending
    # ========================================================================

    async def send_request(
        self,
        method: ServiceMethod,
        request: BaseModel,
        access_token: Optional[str] = None,
    ) -> BaseModel:
        """
        Perform ``method`` and decode its response.

        Raises:
            EResultError: Server answered with a non-OK EResult
            TransportError: Network failure after all attempts
            MalformedMessageError: Body undecodable twice in a row
        """
        fields = {"input_protobuf_encoded": base64.b64encode(encode(method, request)).decode("ascii")}
        if access_token:
            fields["access_token"] = access_token

        malformed_retry_used = False
        while True:
            response = await self._send_with_retries(method, fields)
            self._check_eresult(method, response)

            try:
                return decode(method, response.content)
            except MalformedMessageError:
                if malformed_retry_used:
                    logger.error(
                        f"{method.name} returned an undecodable body twice",
                        extra={"method": method.name, "body_length": len(response.content)},
                    )
                    raise
                malformed_retry_used = True
                logger.warning(
                    f"{method.name} returned an undecodable body, retrying once",
                    extra={"method": method.name, "body_length": len(response.content)},
                )

    async def _send_with_retries(self, method: ServiceMethod, fields: Dict[str, str]) -> httpx.Response:
        """
        Send one HTTP request, retrying network errors, timeouts and 5xx.

        Raises:
            TransportError: When every attempt failed
        """
        url = self.build_url(method)
        headers = self.build_headers()
        timeout = httpx.Timeout(self._settings.HTTP_TIMEOUT_SECONDS)
        max_attempts = self._settings.WEB_API_MAX_ATTEMPTS
        last_error: Optional[str] = None

        for attempt in range(max_attempts):
            try:
                if method.http_method == "GET":
                    response = await self._client.get(url, params=fields, headers=headers, timeout=timeout)
                else:
                    response = await self._client.post(url, data=fields, headers=headers, timeout=timeout)

                if response.status_code < 500:
                    return response

                last_error = f"HTTP {response.status_code}"

            except httpx.TimeoutException as e:
                last_error = f"timeout: {e}"
            except httpx.TransportError as e:
                last_error = f"network error: {e}"

            if attempt < max_attempts - 1:
                delay = self._settings.WEB_API_BACKOFF_SECONDS * (2 ** attempt)
                logger.warning(
                    f"{method.name} failed (attempt {attempt + 1}/{max_attempts}), retrying after {delay}s",
                    extra={"method": method.name, "error": last_error},
                )
                await asyncio.sleep(delay)

        logger.error(
            f"{method.name} failed after {max_attempts} attempts: {last_error}",
            extra={"method": method.name},
        )
        raise TransportError(f"{method.name} failed after {max_attempts} attempts: {last_error}")

    def _check_eresult(self, method: ServiceMethod, response: httpx.Response) -> None:
        """
        Raise for a protocol-level rejection.

        Raises:
            EResultError: ``x-eresult`` other than OK, or HTTP 429
            TransportError: Any other non-success HTTP status
        """
        raw_eresult = response.headers.get("x-eresult")
        error_message = response.headers.get("x-error_message")

        if raw_eresult is not None:
            try:
                eresult = int(raw_eresult)
            except ValueError:
                raise TransportError(f"{method.name} returned invalid x-eresult '{raw_eresult}'") from None

            if eresult != EResult.OK:
                logger.info(
                    f"{method.name} rejected with EResult {eresult}",
                    extra={"method": method.name, "eresult": eresult, "error_message": error_message},
                )
                raise EResultError(eresult, error_message)

        if response.status_code == 429:
            raise EResultError(EResult.RATE_LIMIT_EXCEEDED, error_message)

        if not response.is_success:
            raise TransportError(f"{method.name} returned HTTP {response.status_code}")
