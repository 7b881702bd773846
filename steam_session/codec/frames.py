"""
CM websocket frame envelope.

Every frame on a Steam CM websocket is::

    u32 little-endian  emsg | PROTO_MASK
    u32 little-endian  header length
    CMsgProtoBufHeader
    body

``Multi`` frames carry a ``CMsgMulti`` body whose payload (gzip compressed
when ``size_unzipped`` is set) is a sequence of u32-length-prefixed frames.
"""

import gzip
import logging
import struct
import zlib
from enum import IntEnum
from typing import Iterator, List, NamedTuple, Optional

from pydantic import BaseModel

from ..errors import MalformedMessageError
from ..models import EResult
from .messages import ServiceMethod, encode, from_protobuf, parse_message, to_protobuf
from .schema import JOB_ID_NONE, message_class

logger = logging.getLogger(__name__)


PROTO_MASK = 0x80000000

_PREFIX = struct.Struct("<II")
_LENGTH = struct.Struct("<I")


class EMsg(IntEnum):
    """Message types the push socket sends or understands."""
    MULTI = 1
    SERVICE_METHOD_RESPONSE = 147
    CLIENT_LOG_ON_RESPONSE = 751
    CLIENT_LOGGED_OFF = 757
    SERVICE_METHOD_CALL_FROM_CLIENT_NON_AUTHED = 9804


class FrameHeader(BaseModel):
    """Fields of ``CMsgProtoBufHeader`` used for routing and results."""
    steamid: Optional[int] = None
    client_sessionid: Optional[int] = None
    jobid_source: int = JOB_ID_NONE
    jobid_target: int = JOB_ID_NONE
    target_job_name: Optional[str] = None
    eresult: int = EResult.FAIL
    error_message: Optional[str] = None


class Frame(NamedTuple):
    emsg: EMsg
    header: FrameHeader
    body: bytes


# ============================================================================
# Building
# ============================================================================

def build_frame(emsg: EMsg, header: FrameHeader, body: bytes = b"") -> bytes:
    """
    Serialize a protobuf-flagged CM frame.

    Args:
        emsg: Message type
        header: Frame header
        body: Already encoded message body

    Returns:
        Frame bytes ready to send as one binary websocket message
    """
    header_bytes = to_protobuf(header, "CMsgProtoBufHeader").SerializeToString()
    return _PREFIX.pack(int(emsg) | PROTO_MASK, len(header_bytes)) + header_bytes + body


def build_service_call(method: ServiceMethod, request: BaseModel, job_id: int) -> bytes:
    """
    Build an unauthenticated service method call frame.

    Args:
        method: Protocol call, its name becomes ``target_job_name``
        request: Request model for ``method``
        job_id: Source job id echoed back as ``jobid_target`` in the response

    Returns:
        Frame bytes
    """
    header = FrameHeader(jobid_source=job_id, target_job_name=method.name)
    return build_frame(
        EMsg.SERVICE_METHOD_CALL_FROM_CLIENT_NON_AUTHED,
        header,
        encode(method, request),
    )


def build_multi(frames: List[bytes], compress: bool = False) -> bytes:
    """
    Pack several frames into one ``Multi`` frame.

    Args:
        frames: Complete frames to pack
        compress: Gzip the payload and set ``size_unzipped``

    Returns:
        Frame bytes
    """
    payload = b"".join(_LENGTH.pack(len(frame)) + frame for frame in frames)
    if compress:
        message = message_class("CMsgMulti")(
            message_body=gzip.compress(payload), size_unzipped=len(payload)
        )
    else:
        message = message_class("CMsgMulti")(message_body=payload)

    header = FrameHeader(eresult=EResult.OK)
    return build_frame(EMsg.MULTI, header, message.SerializeToString())


# ============================================================================
# Parsing
# ============================================================================

def parse_frame(data: bytes) -> Frame:
    """
    Parse one CM frame.

    Raises:
        MalformedMessageError: On truncated data, non-protobuf frames or
            message types outside :class:`EMsg`
    """
    if len(data) < _PREFIX.size:
        raise MalformedMessageError(f"Frame too short ({len(data)} bytes)")

    raw_emsg, header_length = _PREFIX.unpack_from(data)
    if not raw_emsg & PROTO_MASK:
        raise MalformedMessageError(f"Unexpected non-protobuf message {raw_emsg}")

    raw_emsg &= ~PROTO_MASK
    try:
        emsg = EMsg(raw_emsg)
    except ValueError:
        raise MalformedMessageError(f"Unknown EMsg {raw_emsg}") from None

    header_end = _PREFIX.size + header_length
    if header_end > len(data):
        raise MalformedMessageError(
            f"Header length {header_length} exceeds frame size {len(data)}"
        )

    header_message = parse_message("CMsgProtoBufHeader", data[_PREFIX.size:header_end])
    header = from_protobuf(header_message, FrameHeader)

    return Frame(emsg=emsg, header=header, body=data[header_end:])


def unpack_multi(body: bytes) -> List[bytes]:
    """
    Split a ``CMsgMulti`` body into its sub-frames.

    Raises:
        MalformedMessageError: On a bad gzip payload or a truncated sub-frame
    """
    multi = parse_message("CMsgMulti", body)
    payload = multi.message_body

    if multi.size_unzipped:
        try:
            payload = gzip.decompress(payload)
        except (OSError, EOFError, zlib.error) as e:
            raise MalformedMessageError(f"Invalid compressed Multi payload: {e}") from e

    frames: List[bytes] = []
    offset = 0
    while offset + _LENGTH.size <= len(payload):
        (size,) = _LENGTH.unpack_from(payload, offset)
        offset += _LENGTH.size
        if offset + size > len(payload):
            raise MalformedMessageError(
                f"Multi sub-frame of {size} bytes truncated at offset {offset}"
            )
        frames.append(payload[offset:offset + size])
        offset += size

    logger.debug(f"Unpacked Multi into {len(frames)} frame(s)")
    return frames


def iter_frames(data: bytes) -> Iterator[Frame]:
    """Parse a websocket message, flattening nested ``Multi`` frames."""
    frame = parse_frame(data)
    if frame.emsg == EMsg.MULTI:
        for sub_frame in unpack_multi(frame.body):
            yield from iter_frames(sub_frame)
    else:
        yield frame
