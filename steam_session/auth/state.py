"""
Auth session state.

``AuthSession`` is the mutable record of one login attempt. Every status
change goes through :meth:`AuthSession.transition`, which enforces the state
graph below and keeps a history of applied transitions::

    CREATED -> AWAITING_CREDENTIAL_SUBMISSION -> PENDING -> POLLING
    POLLING -> PENDING -> POLLING            (more confirmation needed)
    POLLING -> CONFIRMED -> FINALIZING -> ESTABLISHED

    PENDING / POLLING / FINALIZING -> FAILED | EXPIRED
    CREATED / AWAITING_CREDENTIAL_SUBMISSION -> FAILED   (begin failed)
    any non-terminal -> CANCELLED
"""

import logging
import time
from enum import Enum
from typing import Dict, FrozenSet, List, NamedTuple, Optional

from ..errors import InvalidTransitionError
from ..models import ConfirmationMethod, FailureReason, FlowKind

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    CREATED = "created"
    AWAITING_CREDENTIAL_SUBMISSION = "awaiting_credential_submission"
    PENDING = "pending"
    POLLING = "polling"
    CONFIRMED = "confirmed"
    FINALIZING = "finalizing"
    ESTABLISHED = "established"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: FrozenSet[SessionStatus] = frozenset({
    SessionStatus.ESTABLISHED,
    SessionStatus.FAILED,
    SessionStatus.EXPIRED,
    SessionStatus.CANCELLED,
})

TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.CREATED: frozenset({
        SessionStatus.AWAITING_CREDENTIAL_SUBMISSION,
        SessionStatus.PENDING,
        SessionStatus.FAILED,
        SessionStatus.CANCELLED,
    }),
    SessionStatus.AWAITING_CREDENTIAL_SUBMISSION: frozenset({
        SessionStatus.PENDING,
        SessionStatus.FAILED,
        SessionStatus.CANCELLED,
    }),
    SessionStatus.PENDING: frozenset({
        SessionStatus.POLLING,
        SessionStatus.FAILED,
        SessionStatus.EXPIRED,
        SessionStatus.CANCELLED,
    }),
    SessionStatus.POLLING: frozenset({
        SessionStatus.PENDING,
        SessionStatus.CONFIRMED,
        SessionStatus.FAILED,
        SessionStatus.EXPIRED,
        SessionStatus.CANCELLED,
    }),
    SessionStatus.CONFIRMED: frozenset({
        SessionStatus.FINALIZING,
        SessionStatus.CANCELLED,
    }),
    SessionStatus.FINALIZING: frozenset({
        SessionStatus.ESTABLISHED,
        SessionStatus.FAILED,
        SessionStatus.EXPIRED,
        SessionStatus.CANCELLED,
    }),
}


class Transition(NamedTuple):
    from_status: SessionStatus
    to_status: SessionStatus
    at: float
    reason: Optional[str] = None


class AuthSession:
    """
    Mutable state of one login attempt.

    Owned by exactly one LoginSession; only that session's driving task
    mutates it.
    """

    def __init__(self, flow_kind: FlowKind):
        self.flow_kind = flow_kind
        self.status = SessionStatus.CREATED
        self.client_id: Optional[int] = None
        self.request_id: Optional[bytes] = None
        self.steam_id: Optional[int] = None
        self.challenge_url: Optional[str] = None
        self.poll_interval: float = 0.0
        self.confirmation_methods: FrozenSet[ConfirmationMethod] = frozenset()
        self.outstanding: FrozenSet[ConfirmationMethod] = frozenset()
        self.failure_reason: Optional[FailureReason] = None
        self.history: List[Transition] = []

    def __repr__(self) -> str:
        return (
            f"AuthSession(flow_kind={self.flow_kind.value}, status={self.status.value}, "
            f"client_id={self.client_id}, outstanding={sorted(m.value for m in self.outstanding)})"
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition(self, to_status: SessionStatus) -> bool:
        return to_status in TRANSITIONS.get(self.status, frozenset())

    def transition(self, to_status: SessionStatus, reason: Optional[str] = None) -> None:
        """
        Move to ``to_status``.

        Raises:
            InvalidTransitionError: If the edge is not in the state graph
        """
        if not self.can_transition(to_status):
            raise InvalidTransitionError(
                f"Cannot move from {self.status.value} to {to_status.value}"
            )

        self.history.append(Transition(self.status, to_status, time.monotonic(), reason))
        logger.debug(
            f"Session {self.status.value} -> {to_status.value}",
            extra={"client_id": self.client_id, "reason": reason},
        )
        self.status = to_status

    def fail(self, reason: FailureReason, detail: Optional[str] = None) -> None:
        self.failure_reason = reason
        self.transition(SessionStatus.FAILED, detail or reason.value)

    def begin(
        self,
        client_id: int,
        request_id: bytes,
        poll_interval: float,
        methods: FrozenSet[ConfirmationMethod],
        steam_id: Optional[int] = None,
        challenge_url: Optional[str] = None,
    ) -> None:
        """
        Record the begin-session result and move to PENDING.

        Raises:
            InvalidTransitionError: If the session can no longer move to
                PENDING; nothing is recorded in that case
        """
        if not self.can_transition(SessionStatus.PENDING):
            raise InvalidTransitionError(
                f"Cannot begin a session that is {self.status.value}"
            )

        self.client_id = client_id
        self.request_id = request_id
        self.poll_interval = poll_interval
        self.steam_id = steam_id
        self.challenge_url = challenge_url
        self.confirmation_methods = methods
        self.outstanding = methods
        self.transition(SessionStatus.PENDING, "session begun")

    def satisfy(self, methods: FrozenSet[ConfirmationMethod]) -> FrozenSet[ConfirmationMethod]:
        """
        Remove satisfied methods from the outstanding set.

        The outstanding set only ever shrinks.

        Returns:
            Methods that were outstanding and are now satisfied
        """
        newly_satisfied = self.outstanding & methods
        self.outstanding = self.outstanding - newly_satisfied
        return newly_satisfied
