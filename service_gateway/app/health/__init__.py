"""
Health and diagnostics routes.
"""

from .routes import create_health_router

__all__ = ["create_health_router"]
