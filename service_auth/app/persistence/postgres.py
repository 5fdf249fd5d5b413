"""
PostgreSQL persistence layer for the Auth service.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import asyncpg

from shared.database import Database, affected_rows
from shared.logging import get_logger

from .interfaces import SessionRepository, UserRepository
from .models import User

# Seed identifiers shared with the other Ferremas services
DEFAULT_ROLES = {
    "admin": "450e8400-e29b-41d4-a716-446655440001",
    "manager": "450e8400-e29b-41d4-a716-446655440002",
    "customer": "450e8400-e29b-41d4-a716-446655440003",
}

UPDATABLE_USER_FIELDS = ("name", "lastname", "active")

_USER_COLUMNS = """
    u.id, u.name, u.lastname, u.email, u.password_hash, u.role_id,
    u.active, u.created_at, r.role_name
"""


async def create_schema(database: Database):
    """Create auth tables and seed roles if they don't exist."""
    async with database.transaction() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS roles (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                role_name VARCHAR(50) UNIQUE NOT NULL
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                name VARCHAR(100) NOT NULL,
                lastname VARCHAR(100) NOT NULL,
                email VARCHAR(255) UNIQUE NOT NULL,
                password_hash VARCHAR(255) NOT NULL,
                role_id UUID NOT NULL REFERENCES roles(id) ON DELETE RESTRICT,
                active BOOLEAN DEFAULT TRUE,
                created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS user_sessions (
                id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                refresh_token VARCHAR(500) NOT NULL,
                expires_at TIMESTAMP WITH TIME ZONE NOT NULL,
                created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_user_sessions_user_id ON user_sessions(user_id);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_user_sessions_refresh_token ON user_sessions(refresh_token);
        """)
        for role_name, role_id in DEFAULT_ROLES.items():
            await conn.execute("""
                INSERT INTO roles (id, role_name) VALUES ($1, $2)
                ON CONFLICT (role_name) DO NOTHING
            """, role_id, role_name)


def _row_to_user(row: asyncpg.Record) -> User:
    return User(
        id=str(row["id"]),
        name=row["name"],
        lastname=row["lastname"],
        email=row["email"],
        password_hash=row["password_hash"],
        role_id=str(row["role_id"]),
        role_name=row["role_name"],
        active=row["active"],
        created_at=row["created_at"],
    )


class PostgresUserRepository(UserRepository):
    """Users and roles backed by PostgreSQL."""

    def __init__(self, database: Database):
        self.database = database
        self.logger = get_logger("auth.persistence.users")

    async def get_by_email(self, email: str) -> Optional[User]:
        row = await self.database.fetchrow(f"""
            SELECT {_USER_COLUMNS}
            FROM users u
            JOIN roles r ON u.role_id = r.id
            WHERE u.email = $1
        """, email.lower())
        return _row_to_user(row) if row else None

    async def get_by_id(self, user_id: str) -> Optional[User]:
        try:
            row = await self.database.fetchrow(f"""
                SELECT {_USER_COLUMNS}
                FROM users u
                JOIN roles r ON u.role_id = r.id
                WHERE u.id = $1::uuid
            """, user_id)
        except asyncpg.DataError:
            # Not a UUID, so no such user
            return None
        return _row_to_user(row) if row else None

    async def email_exists(self, email: str) -> bool:
        row = await self.database.fetchrow("SELECT id FROM users WHERE email = $1", email.lower())
        return row is not None

    async def get_role_id(self, role_name: str) -> Optional[str]:
        role_id = await self.database.fetchval("SELECT id FROM roles WHERE role_name = $1", role_name)
        return str(role_id) if role_id else None

    async def role_exists(self, role_id: str) -> bool:
        row = await self.database.fetchrow("SELECT id FROM roles WHERE id = $1::uuid", role_id)
        return row is not None

    async def create(self, name: str, lastname: str, email: str, password_hash: str, role_id: str) -> User:
        async with self.database.transaction() as conn:
            user_id = await conn.fetchval("""
                INSERT INTO users (name, lastname, email, password_hash, role_id)
                VALUES ($1, $2, $3, $4, $5::uuid)
                RETURNING id
            """, name, lastname, email.lower(), password_hash, role_id)
            row = await conn.fetchrow(f"""
                SELECT {_USER_COLUMNS}
                FROM users u
                JOIN roles r ON u.role_id = r.id
                WHERE u.id = $1
            """, user_id)

        self.logger.info("User created", user_id=str(user_id))
        return _row_to_user(row)

    async def update(self, user_id: str, fields: Dict[str, Any]) -> Optional[User]:
        updates = {key: value for key, value in fields.items() if key in UPDATABLE_USER_FIELDS}
        if not updates:
            return await self.get_by_id(user_id)

        # Column names come from the whitelist above, values are parameters
        set_clause = ", ".join(f"{column} = ${index}" for index, column in enumerate(updates, start=1))
        status = await self.database.execute(
            f"UPDATE users SET {set_clause} WHERE id = ${len(updates) + 1}::uuid",
            *updates.values(), user_id
        )
        if affected_rows(status) == 0:
            return None
        return await self.get_by_id(user_id)

    async def ping(self) -> bool:
        return await self.database.ping()


class PostgresSessionRepository(SessionRepository):
    """Refresh-token sessions backed by PostgreSQL."""

    def __init__(self, database: Database):
        self.database = database
        self.logger = get_logger("auth.persistence.sessions")

    async def create(self, user_id: str, refresh_token: str, expires_at: datetime) -> None:
        await self.database.execute("""
            INSERT INTO user_sessions (user_id, refresh_token, expires_at)
            VALUES ($1::uuid, $2, $3)
        """, user_id, refresh_token, expires_at)

    async def find_user_for_token(self, refresh_token: str, now: datetime) -> Optional[User]:
        row = await self.database.fetchrow(f"""
            SELECT {_USER_COLUMNS}
            FROM user_sessions us
            JOIN users u ON us.user_id = u.id
            JOIN roles r ON u.role_id = r.id
            WHERE us.refresh_token = $1 AND us.expires_at > $2
        """, refresh_token, now)
        return _row_to_user(row) if row else None

    async def delete_token(self, refresh_token: str) -> int:
        status = await self.database.execute(
            "DELETE FROM user_sessions WHERE refresh_token = $1", refresh_token
        )
        return affected_rows(status)

    async def delete_user_sessions(self, user_id: str) -> int:
        status = await self.database.execute(
            "DELETE FROM user_sessions WHERE user_id = $1::uuid", user_id
        )
        return affected_rows(status)

    async def delete_expired(self, now: datetime) -> int:
        status = await self.database.execute(
            "DELETE FROM user_sessions WHERE expires_at <= $1", now
        )
        return affected_rows(status)
