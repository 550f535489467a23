"""
Seed Admin User

Creates an administrator account and prints a bearer token for the admin
pre-registration endpoints. Login lives elsewhere in the platform; this is
for bootstrapping and local development.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=... python scripts/seed_admin.py

Optional: ADMIN_FIRST_NAME, ADMIN_LAST_NAME
"""

import asyncio
import os
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from iep_api.core.config import settings
from iep_api.core.security import create_access_token, hash_password
from iep_api.modules.users.models import UserRole
from iep_api.modules.users.repository import UserRepository


async def seed_admin() -> None:
    """Create the admin user if it doesn't exist and print a token."""
    email = os.environ.get("ADMIN_EMAIL", "").strip().lower()
    password = os.environ.get("ADMIN_PASSWORD", "")
    first_name = os.environ.get("ADMIN_FIRST_NAME", "Administrador")
    last_name = os.environ.get("ADMIN_LAST_NAME", "IEP")

    if not email or len(password) < 8:
        print("ADMIN_EMAIL and ADMIN_PASSWORD (8+ characters) are required")
        sys.exit(1)

    engine = create_async_engine(settings.database_url, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as db:
        user = await UserRepository.get_by_email(db, email)

        if user:
            print(f"Admin already exists: {email}")
        else:
            user = await UserRepository.create(
                db,
                email=email,
                password_hash=hash_password(password),
                first_name=first_name,
                last_name=last_name,
                role=UserRole.ADMIN,
                is_active=True,
                is_verified=True,
            )
            await db.commit()
            print("Admin created successfully!")

        print(f"  Email: {user.email}")
        print(f"  ID: {user.id}")
        print(f"  Role: {user.role.value}")

        token = create_access_token(
            str(user.id),
            additional_claims={
                "email": user.email,
                "role": user.role.value,
                "name": user.full_name,
            },
        )
        print(f"  Access token: {token}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_admin())
