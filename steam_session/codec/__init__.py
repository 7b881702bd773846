"""
Message codec: protobuf schema, typed request/response pairs and CM frames.
"""

from .messages import (
    SERVICE_METHODS,
    ServiceMethod,
    decode,
    encode,
)

__all__ = [
    "SERVICE_METHODS",
    "ServiceMethod",
    "decode",
    "encode",
]
