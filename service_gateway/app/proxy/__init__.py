"""
Reverse proxy for the API gateway.
"""

from .router import DEFAULT_REWRITES, ProxyContext, ProxyRouter, rewrite_path

__all__ = ["DEFAULT_REWRITES", "ProxyContext", "ProxyRouter", "rewrite_path"]
