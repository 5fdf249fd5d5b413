"""
Records stored by the Auth service.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    """A user joined with its role name."""

    id: str
    name: str
    lastname: str
    email: str
    role_id: str
    role_name: Optional[str] = None
    password_hash: str = ""
    active: bool = True
    created_at: datetime = field(default_factory=_utcnow)

    def to_public(self, include_created_at: bool = False) -> Dict[str, Any]:
        """Serialize without the password hash."""
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "lastname": self.lastname,
            "email": self.email,
            "role": self.role_name,
            "active": self.active,
        }
        if include_created_at:
            data["created_at"] = self.created_at.isoformat()
        return data

    def to_claims(self) -> Dict[str, Any]:
        """Identity claims carried by an access token."""
        return {
            "id": self.id,
            "email": self.email,
            "role_id": self.role_id,
            "role": self.role_name,
            "name": self.name,
            "lastname": self.lastname,
        }


@dataclass
class SessionRecord:
    """A persisted refresh token. Rows are inserted and deleted, never updated."""

    user_id: str
    refresh_token: str
    expires_at: datetime
    id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or _utcnow())
