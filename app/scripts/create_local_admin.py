"""
Script to seed the base roles and the super-administrator account for
local development.
"""

import argparse
import asyncio

from sqlmodel import select

from app.core.auth import hash_password
from app.core.config import get_settings
from app.core.database import get_session_context, init_db
from app.models.role import Role
from app.models.user import User

settings = get_settings()

BASE_ROLES = [
    # (code, name, is_super)
    ("super_admin", "Super Administrator", True),
    ("user", "User", False),
    ("admin", "Administrator", False),
]


async def _ensure_role(session, code: str, name: str, is_super: bool) -> Role:
    result = await session.execute(select(Role).where(Role.code == code))
    role = result.scalar_one_or_none()
    if not role:
        role = Role(code=code, name=name, is_super=is_super)
        session.add(role)
        await session.flush()
        print(f"Created role: {code} (id={role.id})")
    return role


async def create_admin(username: str, email: str, password: str, create_tables: bool = False):
    if create_tables:
        await init_db()

    async with get_session_context() as session:
        roles = {}
        for code, name, is_super in BASE_ROLES:
            roles[code] = await _ensure_role(session, code, name, is_super)

        if settings.default_role_id != roles["user"].id:
            print(
                f"Note: AA_DEFAULT_ROLE_ID is {settings.default_role_id}, "
                f"the 'user' role has id {roles['user'].id}."
            )

        result = await session.execute(
            select(User).where(User.username == username, User.is_deleted == False)  # noqa: E712
        )
        user = result.scalar_one_or_none()

        if not user:
            user = User(
                username=username,
                email=email,
                real_name="Super Administrator",
                password_hash=hash_password(password),
                role_id=roles["super_admin"].id,
                status="active",
            )
            session.add(user)
            await session.flush()
            print(f"Created super administrator: {username} (id={user.id})")
        else:
            print(f"User {username} already exists.")

    print("Done.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed roles and the super-admin user.")
    parser.add_argument("--username", default="admin", help="Login name for the super admin")
    parser.add_argument("--email", required=True, help="Email address for the user")
    parser.add_argument("--password", required=True, help="Password for the user")
    parser.add_argument(
        "--create-tables", action="store_true", help="Create tables first (no migrations)"
    )

    args = parser.parse_args()

    asyncio.run(create_admin(args.username, args.email, args.password, args.create_tables))
