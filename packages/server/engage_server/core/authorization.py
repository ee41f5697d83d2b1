"""
Authorization engine: may this actor act on this organisation?

Every call re-reads the actor's active membership; nothing is cached, so a
role change or removal takes effect on the very next request.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog

from engage_server.core.errors import InsufficientRoleError, NoAccessError
from engage_server.models.membership import Membership
from engage_server.services.membership_store import MembershipStore
from engage_shared.schemas.common import Role

log = structlog.get_logger()


@dataclass(frozen=True)
class Actor:
    """The caller of an operation."""

    user_id: uuid.UUID
    is_super_admin: bool = False


class DenyReason(str, Enum):
    NO_ACCESS = "NoAccess"
    INSUFFICIENT_ROLE = "InsufficientRole"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: Optional[DenyReason] = None
    # The actor's active membership, when one was resolved
    membership: Optional[Membership] = None

    @property
    def role(self) -> Optional[Role]:
        return Role(self.membership.role) if self.membership is not None else None


async def check_access(
    store: MembershipStore,
    actor: Actor,
    organisation_id: uuid.UUID,
    required_any_of: Iterable[Role],
) -> AccessDecision:
    """Decide without raising.

    Super-administrators are allowed unconditionally. Everyone else needs an
    active membership whose role is one of ``required_any_of`` (exact set
    membership, not a privilege comparison).
    """
    if actor.is_super_admin:
        return AccessDecision(allowed=True)

    membership = await store.find_active(actor.user_id, organisation_id)
    if membership is None:
        return AccessDecision(allowed=False, reason=DenyReason.NO_ACCESS)

    if Role(membership.role) not in set(required_any_of):
        return AccessDecision(
            allowed=False, reason=DenyReason.INSUFFICIENT_ROLE, membership=membership
        )

    return AccessDecision(allowed=True, membership=membership)


async def authorize(
    store: MembershipStore,
    actor: Actor,
    organisation_id: uuid.UUID,
    required_any_of: Iterable[Role],
) -> Optional[Membership]:
    """Raising form of :func:`check_access`.

    Returns the actor's resolved membership (``None`` for a super-administrator),
    or raises NoAccessError / InsufficientRoleError.
    """
    required = frozenset(required_any_of)
    decision = await check_access(store, actor, organisation_id, required)
    if decision.allowed:
        return decision.membership

    log.info(
        "authz.denied",
        user_id=str(actor.user_id),
        org_id=str(organisation_id),
        reason=decision.reason.value,
    )
    if decision.reason == DenyReason.NO_ACCESS:
        raise NoAccessError()
    roles = ", ".join(sorted(r.value for r in required))
    raise InsufficientRoleError(f"Insufficient permissions. Required roles: {roles}")
