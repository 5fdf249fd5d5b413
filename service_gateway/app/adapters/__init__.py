"""
Adapters package for the Gateway Service.

Contains HTTP client wrappers for internal dependencies. Adapters own
request shapes and map transport failures to shared errors.

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .auth_client import AuthClient

__all__ = [
    "AuthClient",
]
