"""
Membership lifecycle: add, change role, remove, plus the member read views.

Per (user, organisation) pair a membership is Absent, Active(role) or
SoftDeleted(role). The owner-count and uniqueness checks made here are the
fast, user-facing ones; the binding re-check happens inside the store's
transaction right before the write.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog

from engage_server.core.authorization import Actor, authorize
from engage_server.core.errors import (
    ConflictError,
    ForbiddenCrossRoleError,
    LastOwnerError,
    NotFoundError,
    SelfActionDeniedError,
)
from engage_server.models.membership import Membership
from engage_server.services.directory import (
    get_addable_user,
    get_addressable_organisation,
)
from engage_server.services.membership_store import MembershipStore
from engage_shared.schemas.common import ALL_ROLES, MANAGER_ROLES, OWNER_ONLY, Role

log = structlog.get_logger()


def _resolved_role(membership: Optional[Membership]) -> Optional[Role]:
    return Role(membership.role) if membership is not None else None


async def _get_active(store: MembershipStore, membership_id: uuid.UUID) -> Membership:
    membership = await store.find_active_by_id(membership_id)
    if membership is None:
        raise NotFoundError("Membership not found")
    return membership


async def _ensure_not_last_owner(
    store: MembershipStore, organisation_id: uuid.UUID, message: str
) -> None:
    owners = await store.count_active_with_role(organisation_id, Role.OWNER)
    if owners <= 1:
        raise LastOwnerError(message)


async def add_member(
    store: MembershipStore,
    actor: Actor,
    organisation_id: uuid.UUID,
    user_id: uuid.UUID,
    role: Role,
) -> Membership:
    """Add a user to an organisation, restoring a previously removed membership.

    Restoring overwrites the old row's role with ``role``.
    """
    await get_addressable_organisation(store, organisation_id)
    await get_addable_user(store, user_id)

    actor_membership = await authorize(store, actor, organisation_id, MANAGER_ROLES)
    if _resolved_role(actor_membership) == Role.ADMIN and role == Role.OWNER:
        raise ForbiddenCrossRoleError("Admins cannot add owners")

    existing = await store.find_by_pair(user_id, organisation_id)
    if existing is None:
        membership = await store.insert(user_id, organisation_id, role)
        event = "membership.added"
    elif existing.is_deleted:
        membership = await store.restore(existing.id, role)
        event = "membership.restored"
    else:
        raise ConflictError("User is already a member of this organisation")

    log.info(
        event,
        membership_id=str(membership.id),
        user_id=str(user_id),
        org_id=str(organisation_id),
        role=role.value,
        actor=str(actor.user_id),
    )
    return membership


async def update_role(
    store: MembershipStore,
    actor: Actor,
    membership_id: uuid.UUID,
    new_role: Role,
) -> Membership:
    """Change a member's role. Owners only; never one's own role."""
    target = await _get_active(store, membership_id)
    if target.user_id == actor.user_id:
        raise SelfActionDeniedError("You cannot change your own role")

    await authorize(store, actor, target.organisation_id, OWNER_ONLY)

    old_role = Role(target.role)
    if old_role == Role.OWNER and new_role != Role.OWNER:
        await _ensure_not_last_owner(
            store,
            target.organisation_id,
            "Cannot demote the last owner of the organisation",
        )

    updated = await store.update_role(membership_id, new_role, expected_role=old_role)
    log.info(
        "membership.role_changed",
        membership_id=str(membership_id),
        org_id=str(target.organisation_id),
        old_role=old_role.value,
        new_role=new_role.value,
        actor=str(actor.user_id),
    )
    return updated


async def remove_member(
    store: MembershipStore,
    actor: Actor,
    membership_id: uuid.UUID,
) -> Membership:
    """Soft-delete a membership.

    Anyone may leave an organisation; removing someone else takes OWNER or
    ADMIN, and admins cannot remove owners. The last owner can never go.
    """
    target = await _get_active(store, membership_id)
    target_role = Role(target.role)

    if target.user_id != actor.user_id:
        actor_membership = await authorize(
            store, actor, target.organisation_id, MANAGER_ROLES
        )
        if _resolved_role(actor_membership) == Role.ADMIN and target_role == Role.OWNER:
            raise ForbiddenCrossRoleError("Admins cannot remove owners")

    if target_role == Role.OWNER:
        await _ensure_not_last_owner(
            store,
            target.organisation_id,
            "Cannot remove the last owner of the organisation",
        )

    removed = await store.soft_delete(membership_id, expected_role=target_role)
    log.info(
        "membership.removed",
        membership_id=str(membership_id),
        org_id=str(target.organisation_id),
        role=target_role.value,
        self_removal=target.user_id == actor.user_id,
        actor=str(actor.user_id),
    )
    return removed


async def list_members(
    store: MembershipStore, actor: Actor, organisation_id: uuid.UUID
) -> list[Membership]:
    """Active memberships of an organisation, newest first."""
    await get_addressable_organisation(store, organisation_id)
    await authorize(store, actor, organisation_id, ALL_ROLES)
    return await store.list_active(organisation_id)


async def get_member(
    store: MembershipStore, actor: Actor, membership_id: uuid.UUID
) -> Membership:
    membership = await _get_active(store, membership_id)
    await authorize(store, actor, membership.organisation_id, ALL_ROLES)
    return membership
