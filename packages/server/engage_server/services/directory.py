"""
Lookups of users and organisations owned outside the membership core.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlmodel import select

from engage_server.core.errors import NotFoundError
from engage_server.models.organisation import Organisation
from engage_server.models.user import User
from engage_server.services.membership_store import MembershipStore


async def get_addable_user(store: MembershipStore, user_id: uuid.UUID) -> User:
    """Return the user if it exists and is active; NotFoundError otherwise."""
    async with store.read_session() as session:
        user = await session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError("User not found or inactive")
    return user


async def get_addressable_organisation(
    store: MembershipStore, organisation_id: uuid.UUID
) -> Organisation:
    """Return the organisation if it exists and is not soft-deleted."""
    async with store.read_session() as session:
        organisation = await session.get(Organisation, organisation_id)
    if organisation is None or organisation.is_deleted:
        raise NotFoundError("Organisation not found")
    return organisation


async def get_users(
    store: MembershipStore, user_ids: Iterable[uuid.UUID]
) -> dict[uuid.UUID, User]:
    """Users by id, for attaching profile summaries to membership views."""
    ids = set(user_ids)
    if not ids:
        return {}
    async with store.read_session() as session:
        result = await session.execute(select(User).where(User.id.in_(ids)))
        return {user.id: user for user in result.scalars().all()}
