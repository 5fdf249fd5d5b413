"""
Request validation package.

Schemas reproduce the field rules of the Ferremas auth API: person names of
2-100 letters (Spanish accents allowed), emails up to 255 characters,
passwords of 8-128 characters and UUID role identifiers. ``parse_payload``
turns schema failures into a ``{field: message}`` map answered with 400.
"""

from .schemas import (
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    UpdateProfileRequest,
    parse_payload,
)

__all__ = [
    "RegisterRequest",
    "LoginRequest",
    "RefreshRequest",
    "UpdateProfileRequest",
    "parse_payload",
]
