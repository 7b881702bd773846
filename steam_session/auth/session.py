"""
Login Session
=============

Drives one Steam login attempt from credentials to a materialized session.

Flow:
-----
1. ``start()`` encrypts the password (credentials flow) and begins the auth
   session, or begins a QR session and exposes its challenge URL
2. A producer task reports the remote status: HTTP polling for credential
   logins, the push socket for QR logins (falling back to polling when the
   socket cannot be kept open)
3. The caller answers outstanding code confirmations with ``submit_code()``
4. ``wait_for_result()`` applies every status update in arrival order and,
   once the session is confirmed, finalizes it into a MaterializedSession

The driving task (the one awaiting ``wait_for_result()``) is the only
writer of the session state; producers only put StatusUpdates on a queue.
"""

import asyncio
import logging
from typing import FrozenSet, List, Optional, Set

import httpx

from ..codec.messages import (
    BEGIN_AUTH_SESSION_VIA_CREDENTIALS,
    BEGIN_AUTH_SESSION_VIA_QR,
    POLL_AUTH_SESSION_STATUS,
    UPDATE_AUTH_SESSION_WITH_STEAM_GUARD_CODE,
    AllowedConfirmation,
    BeginCredentialsRequest,
    BeginQrRequest,
    DeviceDetails,
    PollStatusRequest,
    SubmitCodeRequest,
)
from ..config import Settings, get_settings
from ..errors import (
    BeginSessionError,
    BeginSessionTransportError,
    CodecError,
    EResultError,
    InvalidCredentialsError,
    InvalidTransitionError,
    KeyFetchError,
    LoginCancelledError,
    LoginFailedError,
    NoSuchMethodOutstandingError,
    PollTransportError,
    PushSocketError,
    RateLimitedError,
    RefreshError,
    SessionExpiredError,
    SessionRevokedError,
    StaleKeyError,
    SteamSessionError,
    SubmitError,
    SubmitTransportError,
    TransportError,
    WrongCodeError,
)
from ..log import mask_secret
from ..models import (
    CODE_METHODS,
    GUARD_TYPE_METHODS,
    ConfirmationMethod,
    CredentialInput,
    EResult,
    FailureReason,
    FlowKind,
    GuardType,
    MaterializedSession,
    PasswordCredentials,
    PlatformType,
    SessionPersistence,
    StartResult,
    StatusUpdate,
    TerminalSignal,
    TokenPair,
)
from ..transports.base import Transport, status_update_from_eresult, status_update_from_poll
from ..transports.web_api import WebApiTransport
from ..transports.websocket import Connector, PushSocket, discover_push_url
from .encryptor import CredentialEncryptor, RsaKeyCache
from .state import AuthSession, SessionStatus
from .tokens import TokenMaterializer

logger = logging.getLogger(__name__)


# ============================================================================
# EResult Mapping
# ============================================================================

INVALID_CREDENTIAL_ERESULTS = {
    EResult.INVALID_PASSWORD,
    EResult.ACCOUNT_NOT_FOUND,
    EResult.ACCOUNT_LOGON_DENIED,
}

WRONG_CODE_ERESULTS = {
    EResult.INVALID_LOGIN_AUTH_CODE,
    EResult.TWO_FACTOR_CODE_MISMATCH,
    EResult.EXPIRED_LOGIN_AUTH_CODE,
}

BEGIN_FAILURE_REASONS = (
    (InvalidCredentialsError, FailureReason.INVALID_CREDENTIALS),
    (RateLimitedError, FailureReason.RATE_LIMITED),
    (StaleKeyError, FailureReason.STALE_KEY),
    (BeginSessionTransportError, FailureReason.TRANSPORT),
    (KeyFetchError, FailureReason.TRANSPORT),
)

# Device metadata reported per platform: (os_type, gaming_device_type, website_id)
PLATFORM_DEVICE_DETAILS = {
    PlatformType.WEB_BROWSER: (None, None, None),
    PlatformType.STEAM_CLIENT: (20, 1, "Client"),
    PlatformType.MOBILE_APP: (-500, 528, "Mobile"),
}


def begin_error_from_eresult(error: EResultError) -> BeginSessionError:
    """Map a rejected begin-session call onto the BeginSessionError taxonomy."""
    if error.eresult in INVALID_CREDENTIAL_ERESULTS:
        return InvalidCredentialsError(str(error), error.eresult)
    if error.eresult == EResult.RATE_LIMIT_EXCEEDED:
        return RateLimitedError(str(error), error.eresult)
    if error.eresult == EResult.EXPIRED:
        return StaleKeyError(str(error), error.eresult)
    return BeginSessionError(str(error), error.eresult)


def methods_from_confirmations(
    confirmations: List[AllowedConfirmation],
) -> FrozenSet[ConfirmationMethod]:
    """
    Map Steam's allowed confirmations onto ConfirmationMethods.

    ``None`` and machine-token confirmations need no user action and map to
    nothing; unknown guard types are logged and ignored.
    """
    methods: Set[ConfirmationMethod] = set()
    for confirmation in confirmations:
        try:
            guard_type = GuardType(confirmation.confirmation_type)
        except ValueError:
            logger.warning(f"Ignoring unknown confirmation type {confirmation.confirmation_type}")
            continue
        method = GUARD_TYPE_METHODS.get(guard_type)
        if method is not None:
            methods.add(method)
    return frozenset(methods)


# ============================================================================
# Login Session
# ============================================================================

class LoginSession:
    """
    State machine for one login attempt.

    Args:
        credentials: PasswordCredentials or QrCredentials
        transport: Transport for every request/response call
        client: HTTP client used to discover the push socket (QR logins)
        settings: Settings (defaults to :func:`get_settings`)
        key_cache: RSA key cache shared with other sessions if desired
        machine_id: Machine identifier sent with device details
        push_connector: ``websockets.connect`` compatible callable
        encryptor: Credential encryptor (built from ``transport`` otherwise)
        materializer: Token materializer (built from ``transport`` otherwise)

    Example:
        >>> async with httpx.AsyncClient() as client:
        ...     session = create_login_session(PasswordCredentials(...), client)
        ...     result = await session.start()
        ...     if ConfirmationMethod.GUARD_CODE in result.confirmation_methods:
        ...         await session.submit_code(ConfirmationMethod.GUARD_CODE, code)
        ...     materialized = await session.wait_for_result()
    """

    def __init__(
        self,
        credentials: CredentialInput,
        transport: Transport,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
        key_cache: Optional[RsaKeyCache] = None,
        machine_id: Optional[bytes] = None,
        push_connector: Optional[Connector] = None,
        encryptor: Optional[CredentialEncryptor] = None,
        materializer: Optional[TokenMaterializer] = None,
    ):
        self.settings = settings or get_settings()
        self.transport = transport
        self.client = client
        self.machine_id = machine_id
        self.push_connector = push_connector
        self.encryptor = encryptor or CredentialEncryptor(transport, key_cache, self.settings)
        self.materializer = materializer or TokenMaterializer(transport, self.settings)

        self._credentials: Optional[CredentialInput] = credentials
        flow_kind = FlowKind.CREDENTIALS if isinstance(credentials, PasswordCredentials) else FlowKind.QR_CODE
        self.auth = AuthSession(flow_kind)
        if flow_kind == FlowKind.CREDENTIALS:
            self.auth.transition(SessionStatus.AWAITING_CREDENTIAL_SUBMISSION, "credentials supplied")

        self._queue: "asyncio.Queue[StatusUpdate]" = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []
        self._socket: Optional[PushSocket] = None
        self._pending_satisfied: Set[ConfirmationMethod] = set()
        self._deadline: Optional[float] = None

        self._refresh_token: Optional[str] = None
        self._account_name: Optional[str] = getattr(credentials, "account_name", None)
        self._guard_data: Optional[str] = None
        self._result: Optional[MaterializedSession] = None
        self._error: Optional[SteamSessionError] = None

    # ------------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self.auth.status

    @property
    def flow_kind(self) -> FlowKind:
        return self.auth.flow_kind

    @property
    def client_id(self) -> Optional[int]:
        return self.auth.client_id

    @property
    def steam_id(self) -> Optional[int]:
        return self.auth.steam_id

    @property
    def challenge_url(self) -> Optional[str]:
        """QR challenge URL; available once begin-session returns, updated on rotation."""
        return self.auth.challenge_url

    @property
    def outstanding(self) -> FrozenSet[ConfirmationMethod]:
        return self.auth.outstanding

    @property
    def failure_reason(self) -> Optional[FailureReason]:
        return self.auth.failure_reason

    @property
    def history(self):
        return list(self.auth.history)

    # ------------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------------

    async def __aenter__(self) -> "LoginSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cancel()

    # ========================================================================
    # Start
    # ========================================================================

    async def start(self) -> StartResult:
        """
        Begin the remote auth session and start listening for status updates.

        Returns:
            StartResult with the confirmations the user must complete and,
            for QR logins, the challenge URL to render

        Raises:
            InvalidTransitionError: If the session was already started
            KeyFetchError: If the RSA key could not be fetched
            BeginSessionError: If the server rejected the begin call
            LoginCancelledError: If ``cancel()`` was called while the begin
                call was in flight
        """
        if self.auth.status not in (SessionStatus.CREATED, SessionStatus.AWAITING_CREDENTIAL_SUBMISSION):
            raise InvalidTransitionError(f"Session already started (status {self.auth.status.value})")

        guard_code = None
        if isinstance(self._credentials, PasswordCredentials):
            guard_code = self._credentials.steam_guard_code

        try:
            if self.auth.flow_kind == FlowKind.CREDENTIALS:
                result = await self._begin_credentials()
            else:
                result = await self._begin_qr()
        except (BeginSessionError, KeyFetchError) as e:
            if self.auth.is_terminal:
                raise self._error from e
            reason = self._begin_failure_reason(e)
            self.auth.fail(reason, str(e))
            self._error = LoginFailedError(reason, f"Login could not begin: {e}", cause=e)
            logger.warning(
                f"Begin session failed: {e}",
                extra={"flow_kind": self.auth.flow_kind.value, "reason": reason.value},
            )
            raise
        finally:
            self._credentials = None

        self.auth.transition(SessionStatus.POLLING, "listening for status")
        self._deadline = asyncio.get_running_loop().time() + self._timeout_seconds()
        self._start_producers()

        logger.info(
            "Login session started",
            extra={
                "flow_kind": self.auth.flow_kind.value,
                "client_id": self.auth.client_id,
                "methods": sorted(m.value for m in result.confirmation_methods),
                "poll_interval": result.poll_interval,
            },
        )

        if guard_code:
            await self._auto_submit(guard_code)

        return result

    def _raise_if_ended(self, step: str) -> None:
        """Drop the result of ``step`` when the session ended while it was in flight."""
        if self.auth.is_terminal:
            logger.info(
                f"Discarding {step} result, session is {self.auth.status.value}",
                extra={"client_id": self.auth.client_id},
            )
            raise self._error or LoginCancelledError(f"Login ended during {step}")

    @staticmethod
    def _begin_failure_reason(error: Exception) -> FailureReason:
        for error_type, reason in BEGIN_FAILURE_REASONS:
            if isinstance(error, error_type):
                return reason
        return FailureReason.REJECTED

    def _poll_interval(self, server_interval: Optional[float]) -> float:
        interval = server_interval or self.settings.DEFAULT_POLL_INTERVAL_SECONDS
        return max(interval, self.settings.MIN_POLL_INTERVAL_SECONDS)

    def _timeout_seconds(self) -> float:
        if self.settings.LOGIN_TIMEOUT_SECONDS is not None:
            return self.settings.LOGIN_TIMEOUT_SECONDS
        return self.auth.poll_interval * self.settings.MAX_POLL_ATTEMPTS

    def _device_details(self) -> DeviceDetails:
        os_type, gaming_device_type, _ = PLATFORM_DEVICE_DETAILS.get(
            self.settings.PLATFORM_TYPE, (None, None, None)
        )
        return DeviceDetails(
            device_friendly_name=self.settings.device_friendly_name,
            platform_type=self.settings.PLATFORM_TYPE,
            os_type=os_type,
            gaming_device_type=gaming_device_type,
            machine_id=self.machine_id,
        )

    def _website_id(self) -> Optional[str]:
        if self.settings.PLATFORM_TYPE == PlatformType.WEB_BROWSER:
            return self.settings.WEBSITE_ID
        return PLATFORM_DEVICE_DETAILS.get(self.settings.PLATFORM_TYPE, (None, None, None))[2]

    async def _begin_credentials(self) -> StartResult:
        """
        Encrypt the password and call BeginAuthSessionViaCredentials.

        A stale key rejection drops the cached key and retries up to
        ``STALE_KEY_RETRIES`` times with a freshly fetched key.
        """
        credentials = self._credentials
        attempts = self.settings.STALE_KEY_RETRIES + 1
        machine_token = credentials.steam_guard_machine_token

        for attempt in range(attempts):
            try:
                encrypted = await self.encryptor.encrypt_password(
                    credentials.account_name,
                    credentials.password.get_secret_value(),
                )
            except ValueError as e:
                raise BeginSessionError(f"Password could not be encrypted with the account key: {e}") from e
            self._raise_if_ended("key fetch")

            request = BeginCredentialsRequest(
                device_friendly_name=self.settings.device_friendly_name,
                account_name=credentials.account_name,
                encrypted_password=encrypted.encrypted_password,
                encryption_timestamp=encrypted.timestamp,
                remember_login=self.settings.REMEMBER_LOGIN,
                platform_type=self.settings.PLATFORM_TYPE,
                persistence=(
                    SessionPersistence.PERSISTENT if self.settings.REMEMBER_LOGIN
                    else SessionPersistence.EPHEMERAL
                ),
                website_id=self._website_id(),
                device_details=self._device_details(),
                guard_data=machine_token.get_secret_value() if machine_token else None,
            )

            try:
                response = await self.transport.send_request(BEGIN_AUTH_SESSION_VIA_CREDENTIALS, request)
                break
            except EResultError as e:
                error = begin_error_from_eresult(e)
                if isinstance(error, StaleKeyError) and attempt < attempts - 1:
                    logger.warning(
                        f"Stale RSA key rejected (attempt {attempt + 1}/{attempts}), retrying with a fresh key",
                        extra={"key_timestamp": encrypted.timestamp},
                    )
                    self.encryptor.invalidate(credentials.account_name)
                    continue
                raise error from e
            except (TransportError, CodecError) as e:
                raise BeginSessionTransportError(f"Begin session failed: {e}") from e

        self._raise_if_ended("begin session")
        methods = methods_from_confirmations(response.allowed_confirmations)
        self.auth.begin(
            client_id=response.client_id,
            request_id=response.request_id,
            poll_interval=self._poll_interval(response.interval),
            methods=methods,
            steam_id=response.steamid,
        )

        return StartResult(
            flow_kind=FlowKind.CREDENTIALS,
            client_id=response.client_id,
            steam_id=response.steamid,
            confirmation_methods=sorted(methods, key=lambda m: m.value),
            confirmation_messages=self._confirmation_messages(response.allowed_confirmations),
            poll_interval=self.auth.poll_interval,
        )

    async def _begin_qr(self) -> StartResult:
        """Call BeginAuthSessionViaQR and expose the challenge URL."""
        request = BeginQrRequest(
            device_friendly_name=self.settings.device_friendly_name,
            platform_type=self.settings.PLATFORM_TYPE,
            device_details=self._device_details(),
            website_id=self._website_id(),
        )

        try:
            response = await self.transport.send_request(BEGIN_AUTH_SESSION_VIA_QR, request)
        except EResultError as e:
            raise begin_error_from_eresult(e) from e
        except (TransportError, CodecError) as e:
            raise BeginSessionTransportError(f"Begin QR session failed: {e}") from e

        self._raise_if_ended("begin QR session")
        methods = frozenset({ConfirmationMethod.QR_SCAN_APPROVAL})
        self.auth.begin(
            client_id=response.client_id,
            request_id=response.request_id,
            poll_interval=self._poll_interval(response.interval),
            methods=methods,
            challenge_url=response.challenge_url,
        )

        return StartResult(
            flow_kind=FlowKind.QR_CODE,
            client_id=response.client_id,
            confirmation_methods=list(methods),
            confirmation_messages=self._confirmation_messages(response.allowed_confirmations),
            challenge_url=response.challenge_url,
            poll_interval=self.auth.poll_interval,
        )

    @staticmethod
    def _confirmation_messages(confirmations: List[AllowedConfirmation]):
        messages = {}
        for confirmation in confirmations:
            method = GUARD_TYPE_METHODS.get(confirmation.confirmation_type)
            if method is not None and confirmation.associated_message:
                messages[method] = confirmation.associated_message
        return messages

    async def _auto_submit(self, code: str) -> None:
        """Submit the code supplied with the credentials, if Steam asked for one."""
        for method in (ConfirmationMethod.GUARD_CODE, ConfirmationMethod.EMAIL_CODE):
            if method in self.auth.outstanding:
                try:
                    await self.submit_code(method, code)
                except SubmitError as e:
                    logger.warning(
                        f"Supplied Steam Guard code was not accepted: {e}",
                        extra={"method": method.value},
                    )
                return

    # ========================================================================
    # Producers
    # ========================================================================

    def _start_producers(self) -> None:
        use_push = (
            self.auth.flow_kind == FlowKind.QR_CODE
            and self.settings.PUSH_ENABLED
            and (self.client is not None or self.settings.PUSH_SOCKET_URL)
        )
        producer = self._push_loop() if use_push else self._poll_loop()
        task = asyncio.create_task(producer, name=f"steam-login-{'push' if use_push else 'poll'}")
        task.add_done_callback(self._on_producer_done)
        self._tasks.append(task)

    def _on_producer_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Status producer crashed: {error}", exc_info=error)
            self._queue.put_nowait(StatusUpdate(source="producer", failure=error))

    async def _poll_loop(self) -> None:
        """
        Poll the session status until tokens arrive or the session ends.

        Transport and decode failures back off exponentially and fail the
        session after ``POLL_MAX_CONSECUTIVE_FAILURES`` in a row; a rejection
        by the server ends polling immediately.
        """
        failures = 0
        max_failures = self.settings.POLL_MAX_CONSECUTIVE_FAILURES
        delay = self.auth.poll_interval if self.auth.outstanding else 0.0

        while True:
            await asyncio.sleep(delay)
            request = PollStatusRequest(client_id=self.auth.client_id, request_id=self.auth.request_id)

            try:
                response = await self.transport.send_request(POLL_AUTH_SESSION_STATUS, request)
            except EResultError as e:
                logger.info(f"Poll rejected: {e}", extra={"client_id": self.auth.client_id})
                self._queue.put_nowait(status_update_from_eresult(e, "poll"))
                return
            except (TransportError, CodecError) as e:
                failures += 1
                if failures >= max_failures:
                    logger.error(
                        f"Polling failed {failures} times in a row: {e}",
                        extra={"client_id": self.auth.client_id},
                    )
                    error = PollTransportError(f"Polling failed {failures} times in a row: {e}")
                    self._queue.put_nowait(StatusUpdate(source="poll", failure=error))
                    return

                backoff = min(
                    self.settings.POLL_BACKOFF_BASE_SECONDS * (2 ** (failures - 1)),
                    self.settings.POLL_BACKOFF_MAX_SECONDS,
                )
                delay = max(self.auth.poll_interval, backoff)
                logger.warning(
                    f"Poll failed ({failures}/{max_failures}), retrying after {delay}s: {e}",
                    extra={"client_id": self.auth.client_id},
                )
                continue

            failures = 0
            delay = self.auth.poll_interval
            update = status_update_from_poll(response, "poll")
            self._queue.put_nowait(update)
            if update.refresh_token:
                return

    async def _push_loop(self) -> None:
        """
        Listen on the push socket, reconnecting ``PUSH_RECONNECT_ATTEMPTS``
        times before falling back to HTTP polling.
        """
        reconnects = 0

        while True:
            try:
                if self._socket is None:
                    url = await discover_push_url(self.client, self.settings)
                    self._socket = PushSocket(
                        url,
                        client_id=self.auth.client_id,
                        request_id=self.auth.request_id,
                        renew_interval=self.auth.poll_interval,
                        settings=self.settings,
                        connector=self.push_connector,
                    )

                async for update in self._socket.updates():
                    self._queue.put_nowait(update)
                    if update.is_terminal or update.refresh_token:
                        return
                return

            except PushSocketError as e:
                if reconnects >= self.settings.PUSH_RECONNECT_ATTEMPTS:
                    logger.warning(
                        f"Push socket unavailable, falling back to polling: {e}",
                        extra={"client_id": self.auth.client_id, "reconnects": reconnects},
                    )
                    if self._socket is not None:
                        await self._socket.close()
                    await self._poll_loop()
                    return

                reconnects += 1
                logger.warning(
                    f"Push socket dropped, reconnecting ({reconnects}/{self.settings.PUSH_RECONNECT_ATTEMPTS}): {e}",
                    extra={"client_id": self.auth.client_id},
                )

    async def _stop_producers(self) -> None:
        """Cancel producer tasks and close the push socket."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            # Producer errors are reported by _on_producer_done
            await asyncio.wait(tasks)

        if self._socket is not None:
            await self._socket.close()

    # ========================================================================
    # Status Updates
    # ========================================================================

    def apply_update(self, update: StatusUpdate) -> bool:
        """
        Apply one status observation to the session.

        This is the only place the remote status changes the state machine.

        Args:
            update: Update from a poll or the push socket

        Returns:
            False if the update was ignored (terminal state, or the session
            is no longer listening), True otherwise
        """
        if self.auth.is_terminal:
            logger.debug(f"Ignoring {update.source} update after terminal state {self.auth.status.value}")
            return False
        if self.auth.status != SessionStatus.POLLING:
            logger.debug(f"Ignoring {update.source} update in state {self.auth.status.value}")
            return False

        if update.new_client_id and update.new_client_id != self.auth.client_id:
            logger.info(
                "Session re-keyed by server",
                extra={"old_client_id": self.auth.client_id, "new_client_id": update.new_client_id},
            )
            self.auth.client_id = update.new_client_id
        if update.new_challenge_url:
            self.auth.challenge_url = update.new_challenge_url
        if update.account_name:
            self._account_name = update.account_name
        if update.new_guard_data:
            self._guard_data = update.new_guard_data

        if update.terminal == TerminalSignal.EXPIRED:
            self._expire(f"Server reported the session expired: {update.failure}")
            return True
        if update.terminal == TerminalSignal.REVOKED:
            self.auth.fail(FailureReason.REVOKED, str(update.failure or "revoked"))
            self._error = SessionRevokedError(f"Server no longer recognises the session: {update.failure}")
            return True
        if update.failure is not None:
            reason = FailureReason.REJECTED
            if isinstance(update.failure, (TransportError, CodecError, PollTransportError)):
                reason = FailureReason.TRANSPORT
            self.auth.fail(reason, str(update.failure))
            self._error = LoginFailedError(reason, f"Login failed: {update.failure}", cause=update.failure)
            return True

        satisfied = update.satisfied | frozenset(self._pending_satisfied)
        if update.refresh_token:
            satisfied = satisfied | self.auth.outstanding
        newly_satisfied = self.auth.satisfy(satisfied)
        self._pending_satisfied -= newly_satisfied

        if update.refresh_token:
            self._refresh_token = update.refresh_token
            self.auth.transition(SessionStatus.CONFIRMED, f"{update.source} returned tokens")
            return True

        if newly_satisfied:
            # More confirmation needed before tokens are issued
            self.auth.transition(SessionStatus.PENDING, "awaiting remaining confirmations")
            self.auth.transition(SessionStatus.POLLING, "listening for status")

        return True

    def _expire(self, detail: str) -> None:
        if self.auth.is_terminal:
            return
        self.auth.transition(SessionStatus.EXPIRED, detail)
        self._error = SessionExpiredError(detail)
        logger.info("Login session expired", extra={"client_id": self.auth.client_id, "detail": detail})

    # ========================================================================
    # Code Submission
    # ========================================================================

    async def submit_code(self, method: ConfirmationMethod, code: str) -> None:
        """
        Submit a Steam Guard or email code.

        Success does not change the status; the method is reported as
        satisfied by the next status update.

        Args:
            method: ``GUARD_CODE`` or ``EMAIL_CODE``
            code: Code entered by the user

        Raises:
            NoSuchMethodOutstandingError: Not polling, or ``method`` is not an
                outstanding code confirmation
            WrongCodeError: The code was rejected
            SubmitTransportError: The code could not be delivered
        """
        if self.auth.status != SessionStatus.POLLING:
            raise NoSuchMethodOutstandingError(
                f"Cannot submit a code while the session is {self.auth.status.value}"
            )
        if method not in CODE_METHODS or method not in self.auth.outstanding:
            raise NoSuchMethodOutstandingError(f"{method.value} is not an outstanding code confirmation")
        if self.auth.steam_id is None:
            raise NoSuchMethodOutstandingError("Session has no steam id to submit a code for")

        request = SubmitCodeRequest(
            client_id=self.auth.client_id,
            steamid=self.auth.steam_id,
            code=code,
            code_type=CODE_METHODS[method],
        )

        try:
            await self.transport.send_request(UPDATE_AUTH_SESSION_WITH_STEAM_GUARD_CODE, request)
        except EResultError as e:
            if e.eresult == EResult.DUPLICATE_REQUEST:
                logger.info("Code was already accepted", extra={"method": method.value})
            elif e.eresult in WRONG_CODE_ERESULTS:
                logger.info("Code rejected", extra={"method": method.value, "eresult": e.eresult})
                raise WrongCodeError(f"{method.value} code rejected: {e}") from e
            else:
                raise SubmitError(f"{method.value} code not accepted: {e}") from e
        except (TransportError, CodecError) as e:
            raise SubmitTransportError(f"Could not submit {method.value} code: {e}") from e

        self._pending_satisfied.add(method)
        logger.info("Code accepted", extra={"method": method.value, "client_id": self.auth.client_id})

    # ========================================================================
    # Driving
    # ========================================================================

    async def wait_for_result(self) -> MaterializedSession:
        """
        Apply status updates until the session ends.

        Returns:
            MaterializedSession once established

        Raises:
            InvalidTransitionError: If ``start()`` was not called
            SessionExpiredError: Server timeout or client-side deadline
            SessionRevokedError: Session id rejected (e.g. revoked QR challenge)
            LoginFailedError: Rejection, exhausted retries or finalize failure
            LoginCancelledError: ``cancel()`` was called
        """
        if self.auth.status in (SessionStatus.CREATED, SessionStatus.AWAITING_CREDENTIAL_SUBMISSION):
            raise InvalidTransitionError("start() must be called before wait_for_result()")

        loop = asyncio.get_running_loop()
        try:
            while not self.auth.is_terminal:
                if self.auth.status == SessionStatus.CONFIRMED:
                    await self._finalize()
                    break

                remaining = self._deadline - loop.time()
                if remaining <= 0:
                    self._expire("Login deadline reached")
                    break

                try:
                    update = await asyncio.wait_for(self._queue.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    self._expire("Login deadline reached")
                    break

                self.apply_update(update)
        except asyncio.CancelledError:
            await self._cancel("driver cancelled")
            raise

        await self._stop_producers()
        return self._outcome()

    def _outcome(self) -> MaterializedSession:
        if self.auth.status == SessionStatus.ESTABLISHED:
            return self._result
        if self._error is not None:
            raise self._error
        raise LoginFailedError(
            self.auth.failure_reason or FailureReason.REJECTED,
            f"Login ended in state {self.auth.status.value}",
        )

    async def _finalize(self) -> None:
        """Exchange the refresh token for an access token and materialize the session."""
        self.auth.transition(SessionStatus.FINALIZING, "generating access token")
        await self._stop_producers()
        if self.auth.is_terminal:
            return

        try:
            pair: TokenPair = await self.materializer.refresh(self._refresh_token)
        except (RefreshError, CodecError) as e:
            if self.auth.is_terminal:
                return
            self._fail_finalize(e)
            return

        if self.auth.is_terminal:
            logger.info(
                f"Discarding issued tokens, session is {self.auth.status.value}",
                extra={"client_id": self.auth.client_id},
            )
            return

        try:
            result = self.materializer.materialize(
                pair,
                account_name=self._account_name,
                guard_data=self._guard_data,
            )
        except CodecError as e:
            self._fail_finalize(e)
            return

        self._result = result
        self.auth.transition(SessionStatus.ESTABLISHED, "tokens issued")
        logger.info(
            "Login established",
            extra={
                "steam_id": self._result.steam_id,
                "refresh_token": mask_secret(pair.refresh_token),
            },
        )

    def _fail_finalize(self, e: SteamSessionError) -> None:
        logger.error(f"Finalize failed: {e}", extra={"client_id": self.auth.client_id})
        self.auth.fail(FailureReason.FINALIZE, str(e))
        self._error = LoginFailedError(FailureReason.FINALIZE, f"Could not finalize login: {e}", cause=e)

    # ========================================================================
    # Cancellation
    # ========================================================================

    async def cancel(self) -> None:
        """Cancel the attempt. Idempotent; stops producers and closes the push socket."""
        await self._cancel("cancelled by caller")

    async def _cancel(self, detail: str) -> None:
        if not self.auth.is_terminal:
            self.auth.transition(SessionStatus.CANCELLED, detail)
            self._error = LoginCancelledError(f"Login {detail}")
            logger.info("Login session cancelled", extra={"client_id": self.auth.client_id})
            # Wake a driver blocked on the queue
            self._queue.put_nowait(StatusUpdate(source="cancel"))
        await self._stop_producers()


# ============================================================================
# Factory
# ============================================================================

def create_login_session(
    credentials: CredentialInput,
    client: httpx.AsyncClient,
    platform_type: Optional[PlatformType] = None,
    user_agent: Optional[str] = None,
    machine_id: Optional[bytes] = None,
    transport: Optional[Transport] = None,
    settings: Optional[Settings] = None,
    key_cache: Optional[RsaKeyCache] = None,
) -> LoginSession:
    """
    Build a LoginSession wired to the Web API transport.

    Args:
        credentials: PasswordCredentials or QrCredentials
        client: Shared HTTP client (not closed by the session)
        platform_type: Overrides ``PLATFORM_TYPE``
        user_agent: Overrides ``USER_AGENT``
        machine_id: Machine identifier for device details
        transport: Custom transport (defaults to WebApiTransport over ``client``)
        settings: Base settings (defaults to :func:`get_settings`)
        key_cache: Shared RSA key cache

    Returns:
        A LoginSession ready for ``start()``
    """
    settings = settings or get_settings()

    overrides = {}
    if platform_type is not None:
        overrides["PLATFORM_TYPE"] = platform_type
    if user_agent:
        overrides["USER_AGENT"] = user_agent
    if overrides:
        settings = settings.model_copy(update=overrides)

    return LoginSession(
        credentials,
        transport=transport or WebApiTransport(client, settings),
        client=client,
        settings=settings,
        key_cache=key_cache,
        machine_id=machine_id,
    )
