"""
Authentication and the tenant-scoped resource guard.

- Bearer JWT identifies the actor (token issuance lives in the identity service;
  ``create_jwt`` exists for local tooling and tests)
- The user row is re-read on every request: inactive users are rejected and
  the super-administrator flag always reflects the database
- ``require_roles`` is the dependency every organisation-scoped resource
  (agents, leads, calls, chats, tags, ...) puts in front of its routes
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from engage_server.core.authorization import Actor, authorize
from engage_server.core.config import get_settings
from engage_server.models.membership import Membership
from engage_server.models.organisation import Organisation
from engage_server.models.user import User
from engage_server.services.directory import get_addressable_organisation
from engage_server.services.membership_store import MembershipStore, get_membership_store
from engage_shared.schemas.common import ALL_ROLES, Role

log = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(
    user_id: uuid.UUID,
    *,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token for ``user_id``."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": exp,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    settings = get_settings()
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# Authentication dependency
# ---------------------------------------------------------------------------

async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: MembershipStore = Depends(get_membership_store),
) -> Actor:
    """Resolve the calling user from the Bearer token."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        payload = decode_jwt(credentials.credentials)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token subject")

    async with store.read_session() as session:
        user = await session.get(User, user_id)
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")

    return Actor(user_id=user.id, is_super_admin=user.is_super_admin)


# ---------------------------------------------------------------------------
# Tenant-scoped resource guard
# ---------------------------------------------------------------------------

class OrgContext:
    """An actor admitted to an organisation, with the role that admitted them."""

    def __init__(
        self,
        actor: Actor,
        organisation: Organisation,
        membership: Optional[Membership],
    ):
        self.actor = actor
        self.organisation = organisation
        self.membership = membership
        self.org_id = organisation.id
        self.user_id = actor.user_id
        self.role: Optional[Role] = Role(membership.role) if membership is not None else None


async def guard_organisation(
    store: MembershipStore,
    actor: Actor,
    organisation_id: uuid.UUID,
    required_any_of: frozenset[Role],
) -> OrgContext:
    organisation = await get_addressable_organisation(store, organisation_id)
    membership = await authorize(store, actor, organisation_id, required_any_of)
    return OrgContext(actor=actor, organisation=organisation, membership=membership)


def require_roles(*roles: Role):
    """Dependency factory: admit actors holding one of ``roles`` in ``{organisationId}``."""
    required = frozenset(roles) or ALL_ROLES

    async def dependency(
        organisationId: uuid.UUID,
        actor: Actor = Depends(get_current_actor),
        store: MembershipStore = Depends(get_membership_store),
    ) -> OrgContext:
        return await guard_organisation(store, actor, organisationId, required)

    return dependency


require_member = require_roles(Role.OWNER, Role.ADMIN, Role.MEMBER)
require_manager = require_roles(Role.OWNER, Role.ADMIN)
require_owner = require_roles(Role.OWNER)
