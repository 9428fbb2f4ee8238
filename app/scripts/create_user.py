"""
Seed a user.

    python -m app.scripts.create_user manager@example.com --roles manager --password secret
"""
import argparse
import asyncio
import os

from sqlalchemy import select

from app.models.users.user_models import User
from app.models.enums.user_role import UserRole
from app.core.db import AsyncSessionLocal
from app.core.security import hash_password


async def create_user(username: str, password: str, roles: list[str], full_name: str | None = None):
    async with AsyncSessionLocal() as session:
        existing = await session.scalar(select(User).where(User.username == username))
        if existing:
            print(f"User {username} already exists")
            return

        session.add(
            User(
                username=username,
                full_name=full_name,
                password_hash=hash_password(password),
                roles=[UserRole(r).value for r in roles],
                is_active=True,
            )
        )
        await session.commit()
        print(f"User {username} created with roles {', '.join(roles)}")


def main():
    parser = argparse.ArgumentParser(description="Create a quotation workflow user")
    parser.add_argument("username")
    parser.add_argument("--password", default=os.getenv("SEED_USER_PASSWORD", "changeme123"))
    parser.add_argument("--roles", nargs="+", default=[UserRole.admin.value],
                        choices=[r.value for r in UserRole])
    parser.add_argument("--full-name", default=None)
    args = parser.parse_args()

    asyncio.run(create_user(args.username, args.password, args.roles, args.full_name))


if __name__ == "__main__":
    main()
