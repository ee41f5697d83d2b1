"""
Organisation service: create, list, update and soft-delete tenants.

Authorization for the organisation-scoped operations is done by the
``require_roles`` guard in front of the route; these functions assume the
caller has already been let through.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from engage_server.core.authorization import Actor
from engage_server.core.errors import ConflictError
from engage_server.models.membership import Membership
from engage_server.models.organisation import Organisation
from engage_server.services.membership_store import MembershipStore, lock_organisation
from engage_shared.schemas.organisations import OrgCreateRequest, OrgUpdateRequest

log = structlog.get_logger()


async def create_organisation(
    store: MembershipStore, actor: Actor, req: OrgCreateRequest
) -> Organisation:
    """Create an organisation; the creator becomes its OWNER in the same transaction."""
    organisation, membership = await store.create_organisation(
        req.name, req.slug, actor.user_id
    )
    log.info(
        "organisation.created",
        org_id=str(organisation.id),
        slug=organisation.slug,
        owner=str(actor.user_id),
        membership_id=str(membership.id),
    )
    return organisation


async def list_organisations(
    store: MembershipStore, actor: Actor
) -> list[dict]:
    """Organisations visible to the actor, newest first, with the actor's role.

    Super-administrators see every non-deleted organisation.
    """
    async with store.read_session() as session:
        stmt = (
            select(Organisation, Membership.role)
            .outerjoin(
                Membership,
                (Membership.organisation_id == Organisation.id)
                & (Membership.user_id == actor.user_id)
                & (Membership.is_deleted == False),  # noqa: E712
            )
            .where(Organisation.is_deleted == False)  # noqa: E712
            .order_by(Organisation.created_at.desc())
        )
        if not actor.is_super_admin:
            stmt = stmt.where(Membership.id.is_not(None))
        result = await session.execute(stmt)
        rows = result.all()

    return [
        {
            "id": org.id,
            "name": org.name,
            "slug": org.slug,
            "role": role,
            "created_at": org.created_at,
        }
        for org, role in rows
    ]


async def update_organisation(
    store: MembershipStore, organisation_id: uuid.UUID, req: OrgUpdateRequest
) -> Organisation:
    """Rename an organisation and/or change its slug."""

    async def work(session: AsyncSession) -> Organisation:
        organisation = await lock_organisation(session, organisation_id)

        if req.slug is not None and req.slug != organisation.slug:
            await _ensure_slug_free(session, req.slug)
            organisation.slug = req.slug
        if req.name is not None:
            organisation.name = req.name

        organisation.updated_at = datetime.now(timezone.utc)
        session.add(organisation)
        await session.flush()
        return organisation

    organisation = await store.transaction(
        work,
        op="organisation.update",
        conflict_message="Organisation slug already exists",
    )
    log.info("organisation.updated", org_id=str(organisation.id), slug=organisation.slug)
    return organisation


async def delete_organisation(
    store: MembershipStore, organisation_id: uuid.UUID
) -> Organisation:
    """Soft-delete an organisation. Its memberships are left untouched."""

    async def work(session: AsyncSession) -> Organisation:
        organisation = await lock_organisation(session, organisation_id)
        organisation.is_deleted = True
        organisation.updated_at = datetime.now(timezone.utc)
        session.add(organisation)
        await session.flush()
        return organisation

    organisation = await store.transaction(work, op="organisation.delete")
    log.info("organisation.deleted", org_id=str(organisation.id), slug=organisation.slug)
    return organisation


async def _ensure_slug_free(session: AsyncSession, slug: str) -> None:
    result = await session.execute(select(Organisation.id).where(Organisation.slug == slug))
    if result.first() is not None:
        raise ConflictError("Organisation slug already exists")
