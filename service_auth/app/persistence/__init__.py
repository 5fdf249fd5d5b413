"""
Persistence layer for the Auth service.
"""

from .interfaces import SessionRepository, UserRepository
from .models import SessionRecord, User
from .memory import InMemorySessionRepository, InMemoryUserRepository
from .postgres import PostgresSessionRepository, PostgresUserRepository, create_schema

__all__ = [
    "User",
    "SessionRecord",
    "UserRepository",
    "SessionRepository",
    "PostgresUserRepository",
    "PostgresSessionRepository",
    "create_schema",
    "InMemoryUserRepository",
    "InMemorySessionRepository",
]
