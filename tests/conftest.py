"""
Shared fixtures: a throwaway SQLite database per test, the app wired to
it, and a small seeded directory of roles and users.
"""

from __future__ import annotations

import os

# Settings are read at import time by the app modules
os.environ["AA_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("AA_BCRYPT_ROUNDS", "4")
os.environ.setdefault("AA_LOG_FORMAT", "console")
os.environ.setdefault("AA_DEFAULT_ROLE_ID", "2")

from dataclasses import dataclass, field  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import app.models  # noqa: E402,F401
from app.core.auth import hash_password  # noqa: E402
from app.core.database import get_session  # noqa: E402
from app.main import app  # noqa: E402
from app.models.organization import Organization  # noqa: E402
from app.models.role import Role  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services.sessions import open_session  # noqa: E402

PASSWORD = "secret-pass"

SUPER_ROLE_ID = 1
USER_ROLE_ID = 2
ADMIN_ROLE_ID = 3


@dataclass
class Directory:
    """Ids and tokens of the seeded records."""
    root_id: int = 0
    admin_id: int = 0
    alice_id: int = 0
    bob_id: int = 0
    carol_id: int = 0
    org_ids: list[int] = field(default_factory=list)
    tokens: dict[str, str] = field(default_factory=dict)
    session_ids: dict[str, str] = field(default_factory=dict)

    def auth(self, who: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[who]}"}


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """A standalone session for arranging and inspecting state."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def directory(session_factory) -> Directory:
    """
    Roles: 1 super_admin (super), 2 user (default), 3 admin.
    Users: root (super admin), admin, alice, bob in tenant 1; carol in tenant 2.
    """
    d = Directory()
    async with session_factory() as session:
        session.add_all(
            [
                Role(id=SUPER_ROLE_ID, name="Super Administrator", code="super_admin", is_super=True),
                Role(id=USER_ROLE_ID, name="User", code="user"),
                Role(id=ADMIN_ROLE_ID, name="Administrator", code="admin"),
            ]
        )
        await session.flush()

        users = {}
        for username, role_id, tenant_id in (
            ("root", SUPER_ROLE_ID, 1),
            ("admin", ADMIN_ROLE_ID, 1),
            ("alice", USER_ROLE_ID, 1),
            ("bob", USER_ROLE_ID, 1),
            ("carol", USER_ROLE_ID, 2),
        ):
            user = User(
                username=username,
                email=f"{username}@example.com",
                password_hash=hash_password(PASSWORD),
                role_id=role_id,
                tenant_id=tenant_id,
            )
            session.add(user)
            await session.flush()
            users[username] = user

        for code in ("hq", "sales"):
            org = Organization(name=code.upper(), code=code, path="/", tenant_id=1)
            session.add(org)
            await session.flush()
            d.org_ids.append(org.id)

        for username in ("root", "admin", "alice"):
            user_session, token = await open_session(session, users[username])
            d.tokens[username] = token
            d.session_ids[username] = user_session.session_id

        await session.commit()

    d.root_id = users["root"].id
    d.admin_id = users["admin"].id
    d.alice_id = users["alice"].id
    d.bob_id = users["bob"].id
    d.carol_id = users["carol"].id
    return d


@pytest.fixture
async def client(session_factory):
    async def _get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = _get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
