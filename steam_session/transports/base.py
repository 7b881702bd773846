"""
Transport interface shared by the Web API and websocket transports.
"""

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel

from ..codec.messages import PollStatusResponse, ServiceMethod
from ..errors import EResultError
from ..models import POLL_TERMINAL_SIGNALS, StatusUpdate


class Transport(ABC):
    """
    Sends one protocol request and returns its decoded response.

    Implementations retry transient failures themselves and raise:

    - ``EResultError`` when the server rejects the call (never retried),
    - ``TransportError`` when the network keeps failing,
    - ``MalformedMessageError`` when the response cannot be decoded.
    """

    @abstractmethod
    async def send_request(
        self,
        method: ServiceMethod,
        request: BaseModel,
        access_token: Optional[str] = None,
    ) -> BaseModel:
        """
        Send ``request`` as a ``method`` call.

        Args:
            method: Protocol call to perform
            request: Instance of ``method.request_model``
            access_token: Bearer token for authenticated calls

        Returns:
            Instance of ``method.response_model``
        """

    async def close(self) -> None:
        """Release resources owned by the transport (injected clients are not closed)."""
        return None


# ============================================================================
# Status Update Helpers
# ============================================================================

def status_update_from_poll(response: PollStatusResponse, source: str) -> StatusUpdate:
    """
    Normalise a poll response (from HTTP or the push socket) into a StatusUpdate.

    Which confirmation methods are satisfied is decided by the session; a
    response carrying a refresh token means every outstanding method was.
    """
    return StatusUpdate(
        source=source,
        refresh_token=response.refresh_token or None,
        access_token=response.access_token or None,
        new_client_id=response.new_client_id or None,
        new_challenge_url=response.new_challenge_url or None,
        had_remote_interaction=response.had_remote_interaction,
        account_name=response.account_name or None,
        new_guard_data=response.new_guard_data or None,
    )


def status_update_from_eresult(error: EResultError, source: str) -> StatusUpdate:
    """
    Turn a rejected poll into a terminal StatusUpdate.

    Expiry and unknown/revoked session ids map to a terminal signal; any
    other EResult fails the session with the error attached.
    """
    signal = POLL_TERMINAL_SIGNALS.get(error.eresult)
    return StatusUpdate(source=source, terminal=signal, failure=error)
