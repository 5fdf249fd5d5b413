"""
Token issuing and session management for the Auth service.
"""

from .service import RefreshedAccessToken, SessionCleanupTask, TokenPair, TokenService

__all__ = ["TokenService", "TokenPair", "RefreshedAccessToken", "SessionCleanupTask"]
