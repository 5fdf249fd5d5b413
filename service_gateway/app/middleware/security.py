"""
Edge security middleware for the Gateway.
"""

import secrets
from typing import Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.logging import get_logger

CONTENT_SECURITY_POLICY = "; ".join([
    "default-src 'self'",
    "style-src 'self' 'unsafe-inline'",
    "script-src 'self'",
    "img-src 'self' data: https:",
    "connect-src 'self'",
    "font-src 'self'",
    "object-src 'none'",
    "media-src 'self'",
    "frame-src 'none'",
])

SECURITY_HEADERS: Dict[str, str] = {
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "cross-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}

ACCEPTED_CONTENT_TYPES = ("application/json", "multipart/form-data")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Set the standard security headers on every response."""

    def __init__(self, app, headers: Optional[Dict[str, str]] = None):
        super().__init__(app)
        self.headers = dict(SECURITY_HEADERS if headers is None else headers)

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers[name] = value
        return response


class RequestValidationMiddleware(BaseHTTPMiddleware):
    """Reject POST/PUT/PATCH requests that are neither JSON nor multipart."""

    async def dispatch(self, request: Request, call_next):
        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if not any(accepted in content_type for accepted in ACCEPTED_CONTENT_TYPES):
                return JSONResponse(
                    status_code=400,
                    content={
                        "success": False,
                        "message": "Invalid content type. Expected application/json or multipart/form-data",
                    },
                )
        return await call_next(request)


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """Require a shared API key header. Disabled when no key is configured."""

    def __init__(self, app, api_key: Optional[str], header_name: str = "X-API-Key"):
        super().__init__(app)
        self.api_key = api_key
        self.header_name = header_name
        self.logger = get_logger("gateway.security")

    async def dispatch(self, request: Request, call_next):
        if not self.api_key:
            return await call_next(request)

        provided = request.headers.get(self.header_name, "")
        if not provided or not secrets.compare_digest(provided, self.api_key):
            self.logger.warning("Invalid or missing API key", path=request.url.path)
            return JSONResponse(
                status_code=401,
                content={"success": False, "message": "Invalid or missing API key"},
            )
        return await call_next(request)
