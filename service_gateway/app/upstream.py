"""
Classification of failures talking to downstream services.

Transport errors are reduced to the POSIX-style codes the gateway reports
to clients (``ECONNREFUSED``, ``ETIMEDOUT``, ...), each mapped to an HTTP
status and message.
"""

import errno
import socket
from typing import Optional, Tuple

import httpx

ECONNREFUSED = "ECONNREFUSED"
ETIMEDOUT = "ETIMEDOUT"
ECONNRESET = "ECONNRESET"
ENOTFOUND = "ENOTFOUND"
SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

UPSTREAM_FAILURES = {
    ECONNREFUSED: (503, "Service connection refused"),
    ETIMEDOUT: (504, "Service request timeout"),
    ECONNRESET: (503, "Service connection reset"),
}
DEFAULT_FAILURE = (503, "Service temporarily unavailable")

_MESSAGE_HINTS = (
    ("refused", ECONNREFUSED),
    ("reset", ECONNRESET),
    ("timed out", ETIMEDOUT),
    ("name or service not known", ENOTFOUND),
    ("nodename nor servname", ENOTFOUND),
    ("getaddrinfo", ENOTFOUND),
)


def _code_from_exception(exc: BaseException) -> Optional[str]:
    if isinstance(exc, httpx.TimeoutException):
        return ETIMEDOUT
    if isinstance(exc, socket.gaierror):
        return ENOTFOUND
    if isinstance(exc, ConnectionRefusedError):
        return ECONNREFUSED
    if isinstance(exc, ConnectionResetError):
        return ECONNRESET
    if isinstance(exc, TimeoutError):
        return ETIMEDOUT
    if isinstance(exc, OSError) and exc.errno in errno.errorcode:
        return errno.errorcode[exc.errno]
    return None


def classify_transport_error(exc: BaseException) -> str:
    """Return the error code for ``exc``, following ``__cause__``/``__context__``."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        code = _code_from_exception(current)
        if code:
            return code
        current = current.__cause__ or current.__context__

    if isinstance(exc, httpx.RemoteProtocolError):
        return ECONNRESET

    message = str(exc).lower()
    for hint, code in _MESSAGE_HINTS:
        if hint in message:
            return code
    return SERVICE_UNAVAILABLE


def failure_response_for(code: str) -> Tuple[int, str]:
    """HTTP status and client message for a transport error code."""
    return UPSTREAM_FAILURES.get(code, DEFAULT_FAILURE)
