"""
In-memory repositories.

Used by the test suites and for running the service without PostgreSQL.
They keep the same semantics as the SQL implementations: lower-cased
unique emails, roles joined onto users and sessions that are only ever
inserted or deleted.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from .interfaces import SessionRepository, UserRepository
from .models import SessionRecord, User
from .postgres import DEFAULT_ROLES, UPDATABLE_USER_FIELDS


class InMemoryUserRepository(UserRepository):
    def __init__(self, roles: Optional[Dict[str, str]] = None):
        # role_name -> role_id
        self.roles: Dict[str, str] = dict(DEFAULT_ROLES if roles is None else roles)
        self.users: Dict[str, User] = {}

    def _role_name(self, role_id: str) -> Optional[str]:
        for name, known_id in self.roles.items():
            if known_id == role_id:
                return name
        return None

    def add(self, user: User) -> User:
        """Insert a fully built user (fixtures)."""
        user.email = user.email.lower()
        user.role_name = user.role_name or self._role_name(user.role_id)
        self.users[user.id] = user
        return user

    async def get_by_email(self, email: str) -> Optional[User]:
        email = email.lower()
        return next((user for user in self.users.values() if user.email == email), None)

    async def get_by_id(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def email_exists(self, email: str) -> bool:
        return await self.get_by_email(email) is not None

    async def get_role_id(self, role_name: str) -> Optional[str]:
        return self.roles.get(role_name)

    async def role_exists(self, role_id: str) -> bool:
        return self._role_name(role_id) is not None

    async def create(self, name: str, lastname: str, email: str, password_hash: str, role_id: str) -> User:
        user = User(
            id=str(uuid.uuid4()),
            name=name,
            lastname=lastname,
            email=email.lower(),
            password_hash=password_hash,
            role_id=role_id,
            role_name=self._role_name(role_id),
        )
        self.users[user.id] = user
        return user

    async def update(self, user_id: str, fields: Dict[str, Any]) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None:
            return None
        for key, value in fields.items():
            if key in UPDATABLE_USER_FIELDS:
                setattr(user, key, value)
        return user


class InMemorySessionRepository(SessionRepository):
    def __init__(self, users: InMemoryUserRepository):
        self.users = users
        self.records: List[SessionRecord] = []

    async def create(self, user_id: str, refresh_token: str, expires_at: datetime) -> None:
        self.records.append(SessionRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            refresh_token=refresh_token,
            expires_at=expires_at,
        ))

    async def find_user_for_token(self, refresh_token: str, now: datetime) -> Optional[User]:
        for record in self.records:
            if record.refresh_token == refresh_token and not record.is_expired(now):
                return await self.users.get_by_id(record.user_id)
        return None

    async def _delete_where(self, predicate) -> int:
        kept = [record for record in self.records if not predicate(record)]
        removed = len(self.records) - len(kept)
        self.records = kept
        return removed

    async def delete_token(self, refresh_token: str) -> int:
        return await self._delete_where(lambda record: record.refresh_token == refresh_token)

    async def delete_user_sessions(self, user_id: str) -> int:
        return await self._delete_where(lambda record: record.user_id == user_id)

    async def delete_expired(self, now: datetime) -> int:
        return await self._delete_where(lambda record: record.is_expired(now))
