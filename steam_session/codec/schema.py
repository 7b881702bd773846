"""
Protobuf schema for the Steam authentication service.

The message definitions mirror ``steammessages_auth.steamclient.proto`` and
``steammessages_base.proto`` field-for-field, so the bytes produced here are
wire-compatible with Steam. They are declared as a field table and compiled
into a descriptor pool at import time instead of shipping generated code.
Enum-typed fields are declared as ``int32``; both use varint encoding.
"""

from typing import Dict, List, NamedTuple, Optional, Type

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import Message


PACKAGE = "steam_session"

# Unset job ids are all ones on the wire
JOB_ID_NONE = 0xFFFFFFFFFFFFFFFF

_FDP = descriptor_pb2.FieldDescriptorProto

_SCALAR_TYPES = {
    "string": _FDP.TYPE_STRING,
    "bytes": _FDP.TYPE_BYTES,
    "bool": _FDP.TYPE_BOOL,
    "float": _FDP.TYPE_FLOAT,
    "int32": _FDP.TYPE_INT32,
    "uint32": _FDP.TYPE_UINT32,
    "uint64": _FDP.TYPE_UINT64,
    "fixed64": _FDP.TYPE_FIXED64,
}


class FieldSpec(NamedTuple):
    name: str
    number: int
    type: str
    repeated: bool = False
    default: Optional[str] = None


# =============================================================================
# Message Table
# =============================================================================

MESSAGE_FIELDS: Dict[str, List[FieldSpec]] = {
    "CAuthentication_GetPasswordRSAPublicKey_Request": [
        FieldSpec("account_name", 1, "string"),
    ],
    "CAuthentication_GetPasswordRSAPublicKey_Response": [
        FieldSpec("publickey_mod", 1, "string"),
        FieldSpec("publickey_exp", 2, "string"),
        FieldSpec("timestamp", 3, "uint64"),
    ],
    "CAuthentication_DeviceDetails": [
        FieldSpec("device_friendly_name", 1, "string"),
        FieldSpec("platform_type", 2, "int32"),
        FieldSpec("os_type", 3, "int32"),
        FieldSpec("gaming_device_type", 4, "uint32"),
        FieldSpec("client_count", 5, "uint32"),
        FieldSpec("machine_id", 6, "bytes"),
    ],
    "CAuthentication_AllowedConfirmation": [
        FieldSpec("confirmation_type", 1, "int32"),
        FieldSpec("associated_message", 2, "string"),
    ],
    "CAuthentication_BeginAuthSessionViaCredentials_Request": [
        FieldSpec("device_friendly_name", 1, "string"),
        FieldSpec("account_name", 2, "string"),
        FieldSpec("encrypted_password", 3, "string"),
        FieldSpec("encryption_timestamp", 4, "uint64"),
        FieldSpec("remember_login", 5, "bool"),
        FieldSpec("platform_type", 6, "int32"),
        FieldSpec("persistence", 7, "int32", default="1"),
        FieldSpec("website_id", 8, "string", default="Unknown"),
        FieldSpec("device_details", 9, "CAuthentication_DeviceDetails"),
        FieldSpec("guard_data", 10, "string"),
        FieldSpec("language", 11, "uint32"),
        FieldSpec("qos_level", 12, "int32", default="2"),
    ],
    "CAuthentication_BeginAuthSessionViaCredentials_Response": [
        FieldSpec("client_id", 1, "uint64"),
        FieldSpec("request_id", 2, "bytes"),
        FieldSpec("interval", 3, "float"),
        FieldSpec("allowed_confirmations", 4, "CAuthentication_AllowedConfirmation", repeated=True),
        FieldSpec("steamid", 5, "uint64"),
        FieldSpec("weak_token", 6, "string"),
        FieldSpec("agreement_session_url", 7, "string"),
        FieldSpec("extended_error_message", 8, "string"),
    ],
    "CAuthentication_BeginAuthSessionViaQR_Request": [
        FieldSpec("device_friendly_name", 1, "string"),
        FieldSpec("platform_type", 2, "int32"),
        FieldSpec("device_details", 3, "CAuthentication_DeviceDetails"),
        FieldSpec("website_id", 4, "string", default="Unknown"),
    ],
    "CAuthentication_BeginAuthSessionViaQR_Response": [
        FieldSpec("client_id", 1, "uint64"),
        FieldSpec("challenge_url", 2, "string"),
        FieldSpec("request_id", 3, "bytes"),
        FieldSpec("interval", 4, "float"),
        FieldSpec("allowed_confirmations", 5, "CAuthentication_AllowedConfirmation", repeated=True),
        FieldSpec("version", 6, "int32"),
    ],
    "CAuthentication_PollAuthSessionStatus_Request": [
        FieldSpec("client_id", 1, "uint64"),
        FieldSpec("request_id", 2, "bytes"),
        FieldSpec("token_to_revoke", 3, "fixed64"),
    ],
    "CAuthentication_PollAuthSessionStatus_Response": [
        FieldSpec("new_client_id", 1, "uint64"),
        FieldSpec("new_challenge_url", 2, "string"),
        FieldSpec("refresh_token", 3, "string"),
        FieldSpec("access_token", 4, "string"),
        FieldSpec("had_remote_interaction", 5, "bool"),
        FieldSpec("account_name", 6, "string"),
        FieldSpec("new_guard_data", 7, "string"),
        FieldSpec("agreement_session_url", 8, "string"),
    ],
    "CAuthentication_UpdateAuthSessionWithSteamGuardCode_Request": [
        FieldSpec("client_id", 1, "uint64"),
        FieldSpec("steamid", 2, "fixed64"),
        FieldSpec("code", 3, "string"),
        FieldSpec("code_type", 4, "int32"),
    ],
    "CAuthentication_UpdateAuthSessionWithSteamGuardCode_Response": [
        FieldSpec("agreement_session_url", 7, "string"),
    ],
    "CAuthentication_AccessToken_GenerateForApp_Request": [
        FieldSpec("refresh_token", 1, "string"),
        FieldSpec("steamid", 2, "fixed64"),
        FieldSpec("renewal_type", 3, "int32"),
    ],
    "CAuthentication_AccessToken_GenerateForApp_Response": [
        FieldSpec("access_token", 1, "string"),
        FieldSpec("refresh_token", 2, "string"),
    ],
    # CM websocket envelope
    "CMsgProtoBufHeader": [
        FieldSpec("steamid", 1, "fixed64"),
        FieldSpec("client_sessionid", 2, "int32"),
        FieldSpec("routing_appid", 3, "uint32"),
        FieldSpec("jobid_source", 10, "fixed64", default=str(JOB_ID_NONE)),
        FieldSpec("jobid_target", 11, "fixed64", default=str(JOB_ID_NONE)),
        FieldSpec("target_job_name", 12, "string"),
        FieldSpec("eresult", 13, "int32", default="2"),
        FieldSpec("error_message", 14, "string"),
    ],
    "CMsgMulti": [
        FieldSpec("size_unzipped", 1, "uint32"),
        FieldSpec("message_body", 2, "bytes"),
    ],
}


# =============================================================================
# Descriptor Pool
# =============================================================================

def _build_file_proto() -> descriptor_pb2.FileDescriptorProto:
    """Compile MESSAGE_FIELDS into a proto2 FileDescriptorProto."""
    file_proto = descriptor_pb2.FileDescriptorProto(
        name=f"{PACKAGE}/steammessages_auth.proto",
        package=PACKAGE,
        syntax="proto2",
    )

    for message_name, fields in MESSAGE_FIELDS.items():
        message_proto = file_proto.message_type.add(name=message_name)

        for field in fields:
            field_proto = message_proto.field.add(
                name=field.name,
                number=field.number,
                label=_FDP.LABEL_REPEATED if field.repeated else _FDP.LABEL_OPTIONAL,
            )

            if field.type in _SCALAR_TYPES:
                field_proto.type = _SCALAR_TYPES[field.type]
            elif field.type in MESSAGE_FIELDS:
                field_proto.type = _FDP.TYPE_MESSAGE
                field_proto.type_name = f".{PACKAGE}.{field.type}"
            else:
                raise ValueError(f"Unknown field type '{field.type}' in {message_name}.{field.name}")

            if field.default is not None:
                field_proto.default_value = field.default

    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file_proto().SerializeToString())

_message_classes: Dict[str, Type[Message]] = {}


def message_class(name: str) -> Type[Message]:
    """
    Return the generated protobuf class for a message in MESSAGE_FIELDS.

    Args:
        name: Unqualified message name, e.g. ``CMsgMulti``

    Returns:
        Protobuf message class

    Raises:
        KeyError: If the message is not part of the schema
    """
    if name not in _message_classes:
        if name not in MESSAGE_FIELDS:
            raise KeyError(f"Unknown message type: {name}")
        descriptor = _pool.FindMessageTypeByName(f"{PACKAGE}.{name}")
        _message_classes[name] = message_factory.GetMessageClass(descriptor)
    return _message_classes[name]
