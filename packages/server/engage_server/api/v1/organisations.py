"""
Organisation API endpoints.

GET    /api/v1/organisations                    - List organisations for the caller
POST   /api/v1/organisations                    - Create an organisation (caller becomes OWNER)
GET    /api/v1/organisations/{organisationId}   - Get organisation details (any member)
PATCH  /api/v1/organisations/{organisationId}   - Update name/slug (OWNER, ADMIN)
DELETE /api/v1/organisations/{organisationId}   - Soft-delete (OWNER)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from engage_server.core.auth import (
    OrgContext,
    get_current_actor,
    require_manager,
    require_member,
    require_owner,
)
from engage_server.core.authorization import Actor
from engage_server.services import organisations as org_service
from engage_server.services.membership_store import MembershipStore, get_membership_store
from engage_shared.schemas.organisations import (
    OrgCreateRequest,
    OrgListItem,
    OrgListResponse,
    OrgResponse,
    OrgUpdateRequest,
)

router = APIRouter()


@router.get("", response_model=OrgListResponse)
async def list_organisations(
    actor: Actor = Depends(get_current_actor),
    store: MembershipStore = Depends(get_membership_store),
):
    """List organisations the caller belongs to (all of them for super-admins)."""
    items = await org_service.list_organisations(store, actor)
    return OrgListResponse(data=[OrgListItem(**item) for item in items])


@router.post("", response_model=OrgResponse, status_code=201)
async def create_organisation(
    body: OrgCreateRequest,
    actor: Actor = Depends(get_current_actor),
    store: MembershipStore = Depends(get_membership_store),
):
    """Create a new organisation. The creator becomes its owner."""
    org = await org_service.create_organisation(store, actor, body)
    return OrgResponse.model_validate(org)


@router.get("/{organisationId}", response_model=OrgResponse)
async def get_organisation(ctx: OrgContext = Depends(require_member)):
    """Get organisation details."""
    return OrgResponse.model_validate(ctx.organisation)


@router.patch("/{organisationId}", response_model=OrgResponse)
async def update_organisation(
    body: OrgUpdateRequest,
    ctx: OrgContext = Depends(require_manager),
    store: MembershipStore = Depends(get_membership_store),
):
    """Update organisation name or slug (Owner or Admin)."""
    org = await org_service.update_organisation(store, ctx.org_id, body)
    return OrgResponse.model_validate(org)


@router.delete("/{organisationId}", response_model=OrgResponse)
async def delete_organisation(
    ctx: OrgContext = Depends(require_owner),
    store: MembershipStore = Depends(get_membership_store),
):
    """Soft-delete the organisation (Owner only)."""
    org = await org_service.delete_organisation(store, ctx.org_id)
    return OrgResponse.model_validate(org)
