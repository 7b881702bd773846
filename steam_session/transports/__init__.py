"""
Transport Layer

- base: Transport interface and StatusUpdate helpers
- web_api: HTTPS request/response transport (all calls, HTTP polling)
- websocket: CM websocket push socket for QR logins
"""

from .base import Transport
from .web_api import WebApiTransport
from .websocket import PushSocket, discover_push_url

__all__ = [
    "Transport",
    "WebApiTransport",
    "PushSocket",
    "discover_push_url",
]
