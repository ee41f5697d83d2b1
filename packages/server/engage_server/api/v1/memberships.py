"""
Organisation membership endpoints.

GET    /api/v1/organisations/{organisationId}/users                 - List members
POST   /api/v1/organisations/{organisationId}/users                 - Add (or restore) a member
GET    /api/v1/organisations/{organisationId}/users/{membershipId}  - Get a membership
PATCH  /api/v1/organisations/{organisationId}/users/{membershipId}  - Change role (Owner only)
DELETE /api/v1/organisations/{organisationId}/users/{membershipId}  - Remove (or leave)

Role checks happen in the lifecycle service, not in a route guard:
self-removal must stay open to every role. Routes addressing a single
membership only require the caller to belong to the organisation.

Read views include a profile summary of each member.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from engage_server.core.auth import get_current_actor
from engage_server.core.authorization import Actor, authorize
from engage_server.core.errors import NotFoundError
from engage_server.models.membership import Membership
from engage_server.services import memberships as membership_service
from engage_server.services.directory import get_addressable_organisation, get_users
from engage_server.services.membership_store import MembershipStore, get_membership_store
from engage_shared.schemas.common import ALL_ROLES
from engage_shared.schemas.memberships import (
    MembershipCreateRequest,
    MembershipListResponse,
    MembershipResponse,
    MembershipUpdateRequest,
    MembershipUser,
)

router = APIRouter()


async def _membership_in_org(
    store: MembershipStore,
    actor: Actor,
    organisation_id: uuid.UUID,
    membership_id: uuid.UUID,
) -> Membership:
    # Outsiders are turned away before membership ids are looked up
    await get_addressable_organisation(store, organisation_id)
    await authorize(store, actor, organisation_id, ALL_ROLES)

    membership = await store.find_active_by_id(membership_id)
    if membership is None or membership.organisation_id != organisation_id:
        raise NotFoundError("Membership not found")
    return membership


async def _with_users(
    store: MembershipStore, items: list[Membership]
) -> list[MembershipResponse]:
    users = await get_users(store, (m.user_id for m in items))
    responses = []
    for m in items:
        response = MembershipResponse.model_validate(m)
        user = users.get(m.user_id)
        if user is not None:
            response.user = MembershipUser.model_validate(user)
        responses.append(response)
    return responses


@router.get("", response_model=MembershipListResponse)
async def list_members(
    organisationId: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    store: MembershipStore = Depends(get_membership_store),
):
    """List active members of the organisation."""
    items = await membership_service.list_members(store, actor, organisationId)
    return MembershipListResponse(data=await _with_users(store, items))


@router.post("", response_model=MembershipResponse, status_code=201)
async def add_member(
    organisationId: uuid.UUID,
    body: MembershipCreateRequest,
    actor: Actor = Depends(get_current_actor),
    store: MembershipStore = Depends(get_membership_store),
):
    """Add a user to the organisation (Owner or Admin; admins cannot add owners)."""
    membership = await membership_service.add_member(
        store, actor, organisationId, body.user_id, body.role
    )
    return MembershipResponse.model_validate(membership)


@router.get("/{membershipId}", response_model=MembershipResponse)
async def get_member(
    organisationId: uuid.UUID,
    membershipId: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    store: MembershipStore = Depends(get_membership_store),
):
    """Get a single membership."""
    await _membership_in_org(store, actor, organisationId, membershipId)
    membership = await membership_service.get_member(store, actor, membershipId)
    (response,) = await _with_users(store, [membership])
    return response


@router.patch("/{membershipId}", response_model=MembershipResponse)
async def update_member_role(
    organisationId: uuid.UUID,
    membershipId: uuid.UUID,
    body: MembershipUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    store: MembershipStore = Depends(get_membership_store),
):
    """Change a member's role (Owner only, never your own)."""
    await _membership_in_org(store, actor, organisationId, membershipId)
    membership = await membership_service.update_role(store, actor, membershipId, body.role)
    return MembershipResponse.model_validate(membership)


@router.delete("/{membershipId}", response_model=MembershipResponse)
async def remove_member(
    organisationId: uuid.UUID,
    membershipId: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    store: MembershipStore = Depends(get_membership_store),
):
    """Remove a member, or leave the organisation when targeting yourself."""
    await _membership_in_org(store, actor, organisationId, membershipId)
    membership = await membership_service.remove_member(store, actor, membershipId)
    return MembershipResponse.model_validate(membership)
