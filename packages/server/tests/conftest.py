"""
Shared fixtures: a fresh file-backed SQLite database per test, a store
bound to it, and helpers to seed users and organisations.
"""

from __future__ import annotations

import os
import uuid

os.environ.setdefault("ENGAGE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENGAGE_SECRET_KEY", "test-secret-key-with-enough-bytes-for-hs256")
os.environ.setdefault("ENGAGE_LOG_FORMAT", "console")

import pytest  # noqa: E402

from engage_server.core.authorization import Actor  # noqa: E402
from engage_server.core.database import build_engine, build_session_factory, init_db  # noqa: E402
from engage_server.models.membership import Membership  # noqa: E402
from engage_server.models.organisation import Organisation  # noqa: E402
from engage_server.models.user import User  # noqa: E402
from engage_server.services.membership_store import MembershipStore  # noqa: E402
from engage_shared.schemas.common import Role  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'engage.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return MembershipStore(session_factory, max_retries=2, retry_backoff_seconds=0)


@pytest.fixture
def make_user(session_factory):
    async def _make(
        email: str | None = None, *, is_active: bool = True, is_super_admin: bool = False
    ) -> User:
        user = User(
            email=email or f"{uuid.uuid4().hex[:10]}@example.com",
            is_active=is_active,
            is_super_admin=is_super_admin,
        )
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _make


@pytest.fixture
def make_org(store):
    async def _make(owner: User, slug: str | None = None) -> tuple[Organisation, Membership]:
        slug = slug or f"org-{uuid.uuid4().hex[:8]}"
        return await store.create_organisation(slug.title(), slug, owner.id)

    return _make


@pytest.fixture
def add(store):
    """Insert a membership directly, bypassing the lifecycle rules."""

    async def _add(user: User, org: Organisation, role: Role) -> Membership:
        return await store.insert(user.id, org.id, role)

    return _add


@pytest.fixture
def as_actor():
    def _as_actor(user: User) -> Actor:
        return Actor(user_id=user.id, is_super_admin=user.is_super_admin)

    return _as_actor
