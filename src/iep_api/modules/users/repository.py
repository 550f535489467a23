"""
User Repository

Database operations for user accounts.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from iep_api.modules.users.models import User, UserRole

logger = logging.getLogger(__name__)


class UserRepository:
    """Repository for user database operations."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        role: UserRole,
        phone: str | None = None,
        dni: str | None = None,
        is_active: bool = True,
        is_verified: bool = False,
    ) -> User:
        """
        Add a user to the session and flush it.

        The caller owns the transaction: nothing is committed here so the
        insert can be part of a larger atomic unit (registration activation).

        Returns:
            The flushed User instance (id assigned)
        """
        user = User(
            email=email,
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            role=role,
            phone=phone,
            dni=dni,
            is_active=is_active,
            is_verified=is_verified,
        )

        db.add(user)
        await db.flush()

        logger.info(f"Created user: {user.id} - {user.email} ({user.role.value})")
        return user

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User | None:
        """Get a user by email address."""
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()
