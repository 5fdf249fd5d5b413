"""
Repository interfaces for users and refresh-token sessions.

The token service and the HTTP layer only depend on these, so tests can
swap PostgreSQL for in-memory implementations.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from .models import User


class UserRepository(ABC):
    """Users and roles."""

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[User]:
        """Return the user (with role name) for a lower-cased email."""

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[User]:
        """Return the user (with role name) by primary key."""

    @abstractmethod
    async def email_exists(self, email: str) -> bool:
        pass

    @abstractmethod
    async def get_role_id(self, role_name: str) -> Optional[str]:
        pass

    @abstractmethod
    async def role_exists(self, role_id: str) -> bool:
        pass

    @abstractmethod
    async def create(self, name: str, lastname: str, email: str, password_hash: str, role_id: str) -> User:
        """Insert a user and return it joined with its role name."""

    @abstractmethod
    async def update(self, user_id: str, fields: Dict[str, Any]) -> Optional[User]:
        """Apply ``fields`` (name, lastname, active) and return the updated user."""

    async def ping(self) -> bool:
        return True


class SessionRepository(ABC):
    """Refresh-token sessions (table ``user_sessions``)."""

    @abstractmethod
    async def create(self, user_id: str, refresh_token: str, expires_at: datetime) -> None:
        pass

    @abstractmethod
    async def find_user_for_token(self, refresh_token: str, now: datetime) -> Optional[User]:
        """Return the owning user when an unexpired session row matches the token."""

    @abstractmethod
    async def delete_token(self, refresh_token: str) -> int:
        """Delete the matching session row; returns the number of rows removed."""

    @abstractmethod
    async def delete_user_sessions(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        """Delete rows with ``expires_at <= now``."""
