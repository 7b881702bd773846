"""
Push Socket
===========

Status updates for QR logins over a Steam CM websocket.

The socket sends ``Authentication.PollAuthSessionStatus#1`` as an
unauthenticated service call and turns every matching
``ServiceMethodResponse`` into a :class:`StatusUpdate`. The CM answers each
call once, so the subscription is renewed whenever the socket has been quiet
for ``renew_interval`` seconds.

Disconnects (closed socket, a ``ClientLogOnResponse`` telling us to try
another CM) surface as ``PushSocketError``; the session decides whether to
reconnect or fall back to HTTP polling.
"""

import asyncio
import itertools
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..codec.frames import EMsg, Frame, build_service_call, iter_frames
from ..codec.messages import POLL_AUTH_SESSION_STATUS, PollStatusRequest, decode
from ..config import Settings, get_settings
from ..errors import EResultError, MalformedMessageError, PushSocketError
from ..models import EResult, StatusUpdate
from .base import status_update_from_eresult, status_update_from_poll

logger = logging.getLogger(__name__)


Connector = Callable[..., Awaitable[Any]]

SOURCE = "push"


# ============================================================================
# Endpoint Discovery
# ============================================================================

async def discover_push_url(client: httpx.AsyncClient, settings: Optional[Settings] = None) -> str:
    """
    Resolve the websocket URL for the push socket.

    Uses ``PUSH_SOCKET_URL`` when configured, otherwise asks the CM directory
    for its websocket servers and picks the first one.

    Args:
        client: HTTP client used for the directory request
        settings: Settings (defaults to :func:`get_settings`)

    Returns:
        ``wss://<endpoint>/cmsocket/`` URL

    Raises:
        PushSocketError: If the directory is unreachable or lists no websocket server
    """
    settings = settings or get_settings()
    if settings.PUSH_SOCKET_URL:
        return settings.PUSH_SOCKET_URL

    try:
        response = await client.get(
            str(settings.DIRECTORY_URL),
            params={"cellid": 0, "format": "json"},
            headers={"User-Agent": settings.USER_AGENT},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPError as e:
        raise PushSocketError(f"CM directory request failed: {e}") from e
    except ValueError as e:
        raise PushSocketError(f"CM directory returned invalid JSON: {e}") from e

    servers: List[Dict[str, Any]] = (data.get("response") or {}).get("serverlist") or []
    endpoints = [
        server["endpoint"]
        for server in servers
        if server.get("type") == "websockets" and server.get("endpoint")
    ]
    if not endpoints:
        raise PushSocketError("CM directory listed no websocket servers")

    logger.debug(f"Discovered {len(endpoints)} CM websocket endpoint(s)")
    return f"wss://{endpoints[0]}/cmsocket/"


# ============================================================================
# Push Socket
# ============================================================================

class PushSocket:
    """
    One websocket connection listening for a single auth session.

    Args:
        url: Websocket URL (see :func:`discover_push_url`)
        client_id: Session client id; replaced when the server re-keys
        request_id: Session request id
        renew_interval: Seconds of silence after which the subscription is re-sent
        settings: Settings (defaults to :func:`get_settings`)
        connector: ``websockets.connect`` compatible callable
    """

    def __init__(
        self,
        url: str,
        client_id: int,
        request_id: bytes,
        renew_interval: float,
        settings: Optional[Settings] = None,
        connector: Optional[Connector] = None,
    ):
        self.url = url
        self.client_id = client_id
        self.request_id = request_id
        self.renew_interval = renew_interval
        self._settings = settings or get_settings()
        self._connector = connector or websockets.connect
        self._connection: Any = None
        self._closed = False
        self._job_ids = itertools.count(1)
        self._pending_jobs: Set[int] = set()
        self.client_sessionid = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connected(self) -> bool:
        return self._connection is not None

    # ------------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Open the websocket.

        Raises:
            PushSocketError: On timeout, handshake or network failure, or if closed
        """
        if self._closed:
            raise PushSocketError("Push socket is closed")

        try:
            self._connection = await asyncio.wait_for(
                self._connector(
                    self.url,
                    ping_interval=30,
                    ping_timeout=10,
                    close_timeout=5,
                ),
                timeout=self._settings.PUSH_CONNECT_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            raise PushSocketError(f"Timeout connecting to {self.url}") from None
        except (OSError, WebSocketException) as e:
            raise PushSocketError(f"Failed to connect to {self.url}: {e}") from e

        self._pending_jobs.clear()
        logger.info("Push socket connected", extra={"url": self.url, "client_id": self.client_id})

    async def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._drop_connection()
        logger.debug("Push socket closed", extra={"client_id": self.client_id})

    async def _drop_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.close()
        except (OSError, WebSocketException) as e:
            logger.debug(f"Error closing push socket: {e}")

    # ------------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------------

    async def subscribe(self) -> int:
        """
        Send a status subscription for the current session ids.

        Returns:
            Job id the response will be addressed to
        """
        job_id = next(self._job_ids)
        request = PollStatusRequest(client_id=self.client_id, request_id=self.request_id)
        await self._send(build_service_call(POLL_AUTH_SESSION_STATUS, request, job_id))
        self._pending_jobs.add(job_id)
        return job_id

    async def _send(self, data: bytes) -> None:
        if self._connection is None:
            raise PushSocketError("Push socket is not connected")
        try:
            await self._connection.send(data)
        except ConnectionClosed as e:
            await self._drop_connection()
            raise PushSocketError(f"Push socket closed while sending: {e}") from e

    # ------------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------------

    async def updates(self) -> AsyncIterator[StatusUpdate]:
        """
        Yield status updates as they arrive.

        Connects (or reconnects with the same session ids) when needed and
        stops after a terminal update or when the socket is closed.

        Raises:
            PushSocketError: When the connection drops
        """
        if self._connection is None:
            await self.connect()
        await self.subscribe()

        while not self._closed:
            try:
                data = await asyncio.wait_for(self._receive(), timeout=self.renew_interval)
            except asyncio.TimeoutError:
                await self.subscribe()
                continue

            if data is None:
                continue

            try:
                updates = self._handle_message(data)
            except PushSocketError:
                await self._drop_connection()
                raise

            for update in updates:
                if update.new_client_id:
                    self.client_id = update.new_client_id
                yield update
                if update.is_terminal:
                    return

    async def _receive(self) -> Optional[bytes]:
        if self._connection is None:
            raise PushSocketError("Push socket is not connected")
        try:
            data = await self._connection.recv()
        except ConnectionClosed as e:
            await self._drop_connection()
            raise PushSocketError(f"Push socket closed by server: {e}") from e

        if isinstance(data, str):
            logger.debug("Ignoring non-binary push socket message")
            return None
        return data

    def _handle_message(self, data: bytes) -> List[StatusUpdate]:
        try:
            frames = list(iter_frames(data))
        except MalformedMessageError as e:
            logger.warning(f"Skipping undecodable push frame: {e}", extra={"length": len(data)})
            return []

        updates: List[StatusUpdate] = []
        for frame in frames:
            update = self._handle_frame(frame)
            if update is not None:
                updates.append(update)
        return updates

    def _handle_frame(self, frame: Frame) -> Optional[StatusUpdate]:
        """
        Convert one frame into a StatusUpdate.

        Raises:
            PushSocketError: When the CM tells us to try another server
        """
        header = frame.header
        if header.client_sessionid and header.client_sessionid != self.client_sessionid:
            self.client_sessionid = header.client_sessionid

        if frame.emsg in (EMsg.CLIENT_LOG_ON_RESPONSE, EMsg.CLIENT_LOGGED_OFF):
            raise PushSocketError(f"CM ended the connection ({frame.emsg.name}), try another server")

        if frame.emsg != EMsg.SERVICE_METHOD_RESPONSE:
            logger.debug(f"Ignoring unexpected push frame {frame.emsg.name}")
            return None

        if header.jobid_target not in self._pending_jobs:
            logger.debug(f"Ignoring response for unknown job {header.jobid_target}")
            return None
        self._pending_jobs.discard(header.jobid_target)

        if header.eresult != EResult.OK:
            return status_update_from_eresult(EResultError(header.eresult, header.error_message), SOURCE)

        try:
            response = decode(POLL_AUTH_SESSION_STATUS, frame.body)
        except MalformedMessageError as e:
            logger.warning(f"Skipping undecodable status response: {e}")
            return None

        return status_update_from_poll(response, SOURCE)
