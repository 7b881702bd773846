"""
Wire Message Models

Typed request/response pairs for every call of the Steam authentication
protocol, and the codec that turns them into protobuf bytes and back.

Each protocol call is one :class:`ServiceMethod` entry: a fixed pairing of
request model and response model, resolved when the module is imported.
The rest of the package only sees these Pydantic models; the protobuf
classes never leave this package.
"""

import logging
from typing import Any, Dict, List, NamedTuple, Optional, Type

from google.protobuf.descriptor import FieldDescriptor
from google.protobuf.message import DecodeError, Message
from pydantic import BaseModel, Field, ValidationError

from ..errors import CodecError, MalformedMessageError
from ..models import PlatformType, SessionPersistence, TokenRenewalType
from .schema import message_class

logger = logging.getLogger(__name__)


# ============================================================================
# Shared Structures
# ============================================================================

class DeviceDetails(BaseModel):
    """Device metadata shown to the user when approving a login."""
    device_friendly_name: str
    platform_type: PlatformType
    os_type: Optional[int] = None
    gaming_device_type: Optional[int] = None
    client_count: Optional[int] = None
    machine_id: Optional[bytes] = Field(None, repr=False)


class AllowedConfirmation(BaseModel):
    """One confirmation kind the server will accept for the session."""
    confirmation_type: int
    associated_message: Optional[str] = None


# ============================================================================
# Request / Response Pairs
# ============================================================================

class RsaPublicKeyRequest(BaseModel):
    account_name: str


class RsaPublicKeyResponse(BaseModel):
    publickey_mod: str
    publickey_exp: str
    timestamp: int


class BeginCredentialsRequest(BaseModel):
    device_friendly_name: str
    account_name: str
    encrypted_password: str = Field(..., repr=False)
    encryption_timestamp: int
    remember_login: bool = True
    platform_type: PlatformType
    persistence: SessionPersistence = SessionPersistence.PERSISTENT
    website_id: Optional[str] = None
    device_details: Optional[DeviceDetails] = None
    guard_data: Optional[str] = Field(None, repr=False)
    language: Optional[int] = None


class BeginCredentialsResponse(BaseModel):
    client_id: int
    request_id: bytes
    interval: Optional[float] = None
    allowed_confirmations: List[AllowedConfirmation] = Field(default_factory=list)
    steamid: Optional[int] = None
    weak_token: Optional[str] = Field(None, repr=False)
    agreement_session_url: Optional[str] = None
    extended_error_message: Optional[str] = None


class BeginQrRequest(BaseModel):
    device_friendly_name: str
    platform_type: PlatformType
    device_details: Optional[DeviceDetails] = None
    website_id: Optional[str] = None


class BeginQrResponse(BaseModel):
    client_id: int
    challenge_url: str
    request_id: bytes
    interval: Optional[float] = None
    allowed_confirmations: List[AllowedConfirmation] = Field(default_factory=list)
    version: Optional[int] = None


class PollStatusRequest(BaseModel):
    client_id: int
    request_id: bytes
    token_to_revoke: Optional[int] = None


class PollStatusResponse(BaseModel):
    new_client_id: Optional[int] = None
    new_challenge_url: Optional[str] = None
    refresh_token: Optional[str] = Field(None, repr=False)
    access_token: Optional[str] = Field(None, repr=False)
    had_remote_interaction: bool = False
    account_name: Optional[str] = None
    new_guard_data: Optional[str] = Field(None, repr=False)
    agreement_session_url: Optional[str] = None


class SubmitCodeRequest(BaseModel):
    client_id: int
    steamid: int
    code: str = Field(..., repr=False)
    code_type: int


class SubmitCodeResponse(BaseModel):
    agreement_session_url: Optional[str] = None


class GenerateAccessTokenRequest(BaseModel):
    refresh_token: str = Field(..., repr=False)
    steamid: int
    renewal_type: TokenRenewalType = TokenRenewalType.NONE


class GenerateAccessTokenResponse(BaseModel):
    access_token: Optional[str] = Field(None, repr=False)
    refresh_token: Optional[str] = Field(None, repr=False)


# ============================================================================
# Service Methods
# ============================================================================

class ServiceMethod(NamedTuple):
    """A fixed request/response pairing for one protocol call."""
    name: str
    http_method: str
    request_model: Type[BaseModel]
    response_model: Type[BaseModel]
    request_message: str
    response_message: str

    @property
    def interface(self) -> str:
        """Web API interface, e.g. ``IAuthenticationService``."""
        service = self.name.split(".", 1)[0]
        return f"I{service}Service"

    @property
    def method(self) -> str:
        return self.name.split(".", 1)[1].split("#", 1)[0]

    @property
    def version(self) -> int:
        return int(self.name.rsplit("#", 1)[1])

    @property
    def path(self) -> str:
        """Web API path, e.g. ``IAuthenticationService/GetPasswordRSAPublicKey/v1``."""
        return f"{self.interface}/{self.method}/v{self.version}"


GET_PASSWORD_RSA_PUBLIC_KEY = ServiceMethod(
    name="Authentication.GetPasswordRSAPublicKey#1",
    http_method="GET",
    request_model=RsaPublicKeyRequest,
    response_model=RsaPublicKeyResponse,
    request_message="CAuthentication_GetPasswordRSAPublicKey_Request",
    response_message="CAuthentication_GetPasswordRSAPublicKey_Response",
)

BEGIN_AUTH_SESSION_VIA_CREDENTIALS = ServiceMethod(
    name="Authentication.BeginAuthSessionViaCredentials#1",
    http_method="POST",
    request_model=BeginCredentialsRequest,
    response_model=BeginCredentialsResponse,
    request_message="CAuthentication_BeginAuthSessionViaCredentials_Request",
    response_message="CAuthentication_BeginAuthSessionViaCredentials_Response",
)

BEGIN_AUTH_SESSION_VIA_QR = ServiceMethod(
    name="Authentication.BeginAuthSessionViaQR#1",
    http_method="POST",
    request_model=BeginQrRequest,
    response_model=BeginQrResponse,
    request_message="CAuthentication_BeginAuthSessionViaQR_Request",
    response_message="CAuthentication_BeginAuthSessionViaQR_Response",
)

POLL_AUTH_SESSION_STATUS = ServiceMethod(
    name="Authentication.PollAuthSessionStatus#1",
    http_method="POST",
    request_model=PollStatusRequest,
    response_model=PollStatusResponse,
    request_message="CAuthentication_PollAuthSessionStatus_Request",
    response_message="CAuthentication_PollAuthSessionStatus_Response",
)

UPDATE_AUTH_SESSION_WITH_STEAM_GUARD_CODE = ServiceMethod(
    name="Authentication.UpdateAuthSessionWithSteamGuardCode#1",
    http_method="POST",
    request_model=SubmitCodeRequest,
    response_model=SubmitCodeResponse,
    request_message="CAuthentication_UpdateAuthSessionWithSteamGuardCode_Request",
    response_message="CAuthentication_UpdateAuthSessionWithSteamGuardCode_Response",
)

GENERATE_ACCESS_TOKEN_FOR_APP = ServiceMethod(
    name="Authentication.GenerateAccessTokenForApp#1",
    http_method="POST",
    request_model=GenerateAccessTokenRequest,
    response_model=GenerateAccessTokenResponse,
    request_message="CAuthentication_AccessToken_GenerateForApp_Request",
    response_message="CAuthentication_AccessToken_GenerateForApp_Response",
)

SERVICE_METHODS: Dict[str, ServiceMethod] = {
    method.name: method
    for method in (
        GET_PASSWORD_RSA_PUBLIC_KEY,
        BEGIN_AUTH_SESSION_VIA_CREDENTIALS,
        BEGIN_AUTH_SESSION_VIA_QR,
        POLL_AUTH_SESSION_STATUS,
        UPDATE_AUTH_SESSION_WITH_STEAM_GUARD_CODE,
        GENERATE_ACCESS_TOKEN_FOR_APP,
    )
}


# ============================================================================
# Protobuf Conversion
# ============================================================================

def _is_repeated(field: FieldDescriptor) -> bool:
    return field.label == FieldDescriptor.LABEL_REPEATED


def _fill(message: Message, values: Dict[str, Any]) -> None:
    """Copy a (possibly nested) dict of field values into a protobuf message."""
    for name, value in values.items():
        if value is None:
            continue

        field = message.DESCRIPTOR.fields_by_name[name]

        if field.type == FieldDescriptor.TYPE_MESSAGE:
            if _is_repeated(field):
                for item in value:
                    _fill(getattr(message, name).add(), item)
            else:
                _fill(getattr(message, name), value)
        elif _is_repeated(field):
            getattr(message, name).extend(value)
        else:
            setattr(message, name, value)


def _read(message: Message) -> Dict[str, Any]:
    """Read the fields present in a protobuf message into a dict."""
    values: Dict[str, Any] = {}

    for field in message.DESCRIPTOR.fields:
        value = getattr(message, field.name)

        if _is_repeated(field):
            if field.type == FieldDescriptor.TYPE_MESSAGE:
                values[field.name] = [_read(item) for item in value]
            else:
                values[field.name] = list(value)
        elif message.HasField(field.name):
            if field.type == FieldDescriptor.TYPE_MESSAGE:
                values[field.name] = _read(value)
            else:
                values[field.name] = value

    return values


def to_protobuf(model: BaseModel, message_name: str) -> Message:
    """
    Build a protobuf message from a wire model.

    Raises:
        CodecError: If a value does not fit the protobuf field
    """
    message = message_class(message_name)()
    try:
        _fill(message, model.model_dump(exclude_none=True))
    except (KeyError, TypeError, ValueError) as e:
        raise CodecError(f"Cannot encode {type(model).__name__} as {message_name}: {e}") from e
    return message


def from_protobuf(message: Message, model: Type[BaseModel]) -> BaseModel:
    """
    Validate a protobuf message into a wire model.

    Raises:
        MalformedMessageError: If required fields are missing or mistyped
    """
    try:
        return model.model_validate(_read(message))
    except ValidationError as e:
        raise MalformedMessageError(
            f"{message.DESCRIPTOR.name} does not match {model.__name__}: "
            f"{e.error_count()} validation error(s)"
        ) from e


def parse_message(message_name: str, data: bytes) -> Message:
    """
    Parse raw bytes as the named protobuf message.

    Raises:
        MalformedMessageError: If the payload is not a valid encoding
    """
    try:
        return message_class(message_name).FromString(data)
    except DecodeError as e:
        raise MalformedMessageError(f"Invalid {message_name} payload ({len(data)} bytes): {e}") from e


# ============================================================================
# Public Codec API
# ============================================================================

def encode(method: ServiceMethod, request: BaseModel) -> bytes:
    """
    Serialize a request model for ``method``.

    Args:
        method: Protocol call the request belongs to
        request: Instance of ``method.request_model``

    Returns:
        Protobuf bytes

    Raises:
        CodecError: If the request is not of the method's request type
    """
    if not isinstance(request, method.request_model):
        raise CodecError(
            f"{method.name} expects {method.request_model.__name__}, "
            f"got {type(request).__name__}"
        )
    return to_protobuf(request, method.request_message).SerializeToString()


def decode(method: ServiceMethod, data: bytes) -> BaseModel:
    """
    Deserialize a response body for ``method``.

    Args:
        method: Protocol call the response answers
        data: Raw protobuf bytes

    Returns:
        Instance of ``method.response_model``

    Raises:
        MalformedMessageError: On truncated/invalid payloads or missing fields
    """
    message = parse_message(method.response_message, data)
    response = from_protobuf(message, method.response_model)
    logger.debug(f"Decoded {method.name} response ({len(data)} bytes)")
    return response
