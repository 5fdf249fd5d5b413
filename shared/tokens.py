"""
JWT signing and verification helpers shared by the auth service and the gateway.
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from shared.errors import InvalidTokenError, TokenExpiredError

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*(ms|s|m|h|d|w)?\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
}


def parse_duration(value: Union[str, int]) -> timedelta:
    """Parse expiry strings such as ``"15m"``, ``"7d"`` or ``"3600"`` (seconds)."""
    if isinstance(value, int):
        return timedelta(seconds=value)

    match = _DURATION_PATTERN.match(value)
    if not match:
        raise ValueError(f"Unsupported duration: {value!r}")

    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[(unit or "s").lower()]


@dataclass(frozen=True)
class TokenVerification:
    """Outcome of a token check that callers branch on instead of catching."""

    valid: bool
    claims: Optional[Dict[str, Any]] = None
    error_code: Optional[str] = None
    error: Optional[str] = None

    @property
    def expired(self) -> bool:
        return self.error_code == "TOKEN_EXPIRED"


def encode_token(
    payload: Dict[str, Any],
    secret: str,
    expires_in: timedelta,
    *,
    token_type: str,
    algorithm: str = "HS256",
) -> str:
    """Sign ``payload`` with ``iat``/``exp``/``jti`` and a ``type`` marker."""
    now = datetime.now(timezone.utc)
    claims = dict(payload)
    claims.update({
        "type": token_type,
        "iat": now,
        "exp": now + expires_in,
        # Distinct tokens for identical payloads issued within the same second
        "jti": secrets.token_urlsafe(16),
    })
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_token(
    token: str,
    secret: str,
    *,
    token_type: str,
    algorithm: str = "HS256",
) -> Dict[str, Any]:
    """Verify signature and expiry; raise ``TokenExpiredError`` or ``InvalidTokenError``."""
    if not token:
        raise InvalidTokenError("Invalid token", details={"reason": "empty token"})

    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm])
    except ExpiredSignatureError as exc:
        raise TokenExpiredError("Token expired", details={"reason": str(exc)}) from exc
    except JWTError as exc:
        raise InvalidTokenError("Invalid token", details={"reason": str(exc)}) from exc

    if claims.get("type") != token_type:
        raise InvalidTokenError("Invalid token", details={"reason": f"expected {token_type} token"})

    return claims


def check_token(token: str, secret: str, *, token_type: str, algorithm: str = "HS256") -> TokenVerification:
    """Non-raising variant of :func:`decode_token`."""
    try:
        claims = decode_token(token, secret, token_type=token_type, algorithm=algorithm)
    except (TokenExpiredError, InvalidTokenError) as exc:
        return TokenVerification(valid=False, error_code=exc.code, error=exc.message)
    return TokenVerification(valid=True, claims=claims)


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        raise InvalidTokenError("No authorization header provided", details={"code": "MISSING_TOKEN"})

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise InvalidTokenError("Invalid authorization header format")

    return parts[1]
