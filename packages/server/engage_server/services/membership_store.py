"""
Membership store: the only writer of ``user_organisations`` rows.

Every mutating operation runs in its own transaction which first locks the
organisation row (``SELECT ... FOR UPDATE``), then re-reads the rows it is
about to touch and re-checks the membership invariants before writing:

- M1: at most one active membership per (user, organisation)
- M2: an organisation with active members keeps at least one active OWNER

Because every mutation of an organisation's memberships takes the same
row lock, two concurrent demotions/removals are serialized and the second
one observes the first one's committed result.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional, TypeVar

import structlog
from sqlalchemy import func
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from engage_server.core.errors import (
    ConflictError,
    LastOwnerError,
    NotFoundError,
    StorageError,
)
from engage_server.models.membership import Membership
from engage_server.models.organisation import Organisation
from engage_shared.schemas.common import Role

log = structlog.get_logger()

T = TypeVar("T")

# serialization_failure, deadlock_detected
TRANSIENT_SQLSTATES = {"40001", "40P01"}


def _is_transient(exc: DBAPIError) -> bool:
    if exc.connection_invalidated:
        return True
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True
    # SQLite reports writer contention this way
    return isinstance(exc, OperationalError) and "database is locked" in str(orig)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Statement helpers (usable inside any session)
# ---------------------------------------------------------------------------

def _active_pair(user_id: uuid.UUID, organisation_id: uuid.UUID):
    return select(Membership).where(
        Membership.user_id == user_id,
        Membership.organisation_id == organisation_id,
        Membership.is_deleted == False,  # noqa: E712
    )


async def _count_active_with_role(
    session: AsyncSession, organisation_id: uuid.UUID, role: Role
) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Membership)
        .where(
            Membership.organisation_id == organisation_id,
            Membership.role == role.value,
            Membership.is_deleted == False,  # noqa: E712
        )
    )
    return int(result.scalar_one())


async def lock_organisation(
    session: AsyncSession, organisation_id: uuid.UUID
) -> Organisation:
    """Lock the organisation row for the rest of the transaction.

    Raises NotFoundError if the organisation does not exist or is soft-deleted.
    """
    result = await session.execute(
        select(Organisation)
        .where(Organisation.id == organisation_id)
        .with_for_update()
    )
    organisation = result.scalar_one_or_none()
    if organisation is None or organisation.is_deleted:
        raise NotFoundError("Organisation not found")
    return organisation


class MembershipStore:
    """Transactional CRUD and count operations over memberships."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_retries: int = 3,
        retry_backoff_seconds: float = 0.05,
    ):
        self._session_factory = session_factory
        self._max_retries = max_retries
        self._retry_backoff_seconds = retry_backoff_seconds

    # -----------------------------------------------------------------------
    # Sessions and transactions
    # -----------------------------------------------------------------------

    @asynccontextmanager
    async def read_session(self) -> AsyncIterator[AsyncSession]:
        """A short-lived session for reads. Never commits."""
        async with self._session_factory() as session:
            yield session

    async def transaction(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        *,
        op: str,
        conflict_message: str = "Conflicting concurrent update",
    ) -> T:
        """Run ``work`` inside a single transaction, retrying transient failures.

        The transaction commits only if ``work`` returns; any exception
        (including cancellation of the calling task) rolls it back.
        Integrity violations surface as ConflictError.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        return await work(session)
            except IntegrityError as exc:
                log.info("storage.integrity_conflict", op=op, error=str(exc.orig))
                raise ConflictError(conflict_message) from exc
            except DBAPIError as exc:
                if not _is_transient(exc):
                    raise
                if attempt > self._max_retries:
                    log.error("storage.retries_exhausted", op=op, attempts=attempt)
                    raise StorageError() from exc
                log.warning("storage.retry", op=op, attempt=attempt, error=str(exc.orig))
                await asyncio.sleep(self._retry_backoff_seconds * attempt)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def find_active(
        self, user_id: uuid.UUID, organisation_id: uuid.UUID
    ) -> Optional[Membership]:
        async with self.read_session() as session:
            result = await session.execute(_active_pair(user_id, organisation_id))
            return result.scalar_one_or_none()

    async def find_active_by_id(self, membership_id: uuid.UUID) -> Optional[Membership]:
        async with self.read_session() as session:
            result = await session.execute(
                select(Membership).where(
                    Membership.id == membership_id,
                    Membership.is_deleted == False,  # noqa: E712
                )
            )
            return result.scalar_one_or_none()

    async def find_by_pair(
        self, user_id: uuid.UUID, organisation_id: uuid.UUID
    ) -> Optional[Membership]:
        """The pair's active membership, else its most recent soft-deleted one."""
        async with self.read_session() as session:
            result = await session.execute(
                select(Membership)
                .where(
                    Membership.user_id == user_id,
                    Membership.organisation_id == organisation_id,
                )
                .order_by(Membership.is_deleted.asc(), Membership.updated_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_active(self, organisation_id: uuid.UUID) -> list[Membership]:
        async with self.read_session() as session:
            result = await session.execute(
                select(Membership)
                .where(
                    Membership.organisation_id == organisation_id,
                    Membership.is_deleted == False,  # noqa: E712
                )
                .order_by(Membership.created_at.desc())
            )
            return list(result.scalars().all())

    async def count_active_with_role(self, organisation_id: uuid.UUID, role: Role) -> int:
        async with self.read_session() as session:
            return await _count_active_with_role(session, organisation_id, role)

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------

    async def insert(
        self, user_id: uuid.UUID, organisation_id: uuid.UUID, role: Role
    ) -> Membership:
        """Create a new active membership. ConflictError if one is already active."""

        async def work(session: AsyncSession) -> Membership:
            await lock_organisation(session, organisation_id)
            existing = await session.execute(_active_pair(user_id, organisation_id))
            if existing.scalar_one_or_none() is not None:
                raise ConflictError("User is already a member of this organisation")

            membership = Membership(
                user_id=user_id,
                organisation_id=organisation_id,
                role=role.value,
            )
            session.add(membership)
            await session.flush()
            return membership

        return await self.transaction(
            work,
            op="membership.insert",
            conflict_message="User is already a member of this organisation",
        )

    async def restore(self, membership_id: uuid.UUID, role: Role) -> Membership:
        """Reactivate a soft-deleted membership with a new role."""

        async def work(session: AsyncSession) -> Membership:
            membership = await self._lock_target(session, membership_id)
            if not membership.is_deleted:
                raise ConflictError("User is already a member of this organisation")
            other = await session.execute(
                _active_pair(membership.user_id, membership.organisation_id)
            )
            if other.scalar_one_or_none() is not None:
                raise ConflictError("User is already a member of this organisation")

            membership.role = role.value
            membership.is_deleted = False
            membership.updated_at = _utcnow()
            session.add(membership)
            await session.flush()
            return membership

        return await self.transaction(
            work,
            op="membership.restore",
            conflict_message="User is already a member of this organisation",
        )

    async def update_role(
        self,
        membership_id: uuid.UUID,
        role: Role,
        *,
        expected_role: Optional[Role] = None,
    ) -> Membership:
        """Change an active membership's role, refusing to demote the last owner.

        ``expected_role`` is the role the caller based its authorization
        decision on; if the row changed meanwhile the write is refused.
        """

        async def work(session: AsyncSession) -> Membership:
            membership = await self._lock_target(session, membership_id)
            if membership.is_deleted:
                raise NotFoundError("Membership not found")
            self._check_expected_role(membership, expected_role)
            if membership.role == Role.OWNER.value and role != Role.OWNER:
                await self._guard_last_owner(
                    session,
                    membership.organisation_id,
                    "Cannot demote the last owner of the organisation",
                )

            membership.role = role.value
            membership.updated_at = _utcnow()
            session.add(membership)
            await session.flush()
            return membership

        return await self.transaction(work, op="membership.update_role")

    async def soft_delete(
        self,
        membership_id: uuid.UUID,
        *,
        expected_role: Optional[Role] = None,
    ) -> Membership:
        """Mark an active membership deleted, refusing to remove the last owner."""

        async def work(session: AsyncSession) -> Membership:
            membership = await self._lock_target(session, membership_id)
            if membership.is_deleted:
                raise NotFoundError("Membership not found")
            self._check_expected_role(membership, expected_role)
            if membership.role == Role.OWNER.value:
                await self._guard_last_owner(
                    session,
                    membership.organisation_id,
                    "Cannot remove the last owner of the organisation",
                )

            membership.is_deleted = True
            membership.updated_at = _utcnow()
            session.add(membership)
            await session.flush()
            return membership

        return await self.transaction(work, op="membership.soft_delete")

    async def create_organisation(
        self, name: str, slug: str, owner_id: uuid.UUID
    ) -> tuple[Organisation, Membership]:
        """Create an organisation together with its first OWNER membership."""

        async def work(session: AsyncSession) -> tuple[Organisation, Membership]:
            existing = await session.execute(
                select(Organisation.id).where(Organisation.slug == slug)
            )
            if existing.first() is not None:
                raise ConflictError("Organisation slug already exists")

            organisation = Organisation(name=name, slug=slug)
            session.add(organisation)
            await session.flush()

            membership = Membership(
                user_id=owner_id,
                organisation_id=organisation.id,
                role=Role.OWNER.value,
            )
            session.add(membership)
            await session.flush()
            return organisation, membership

        return await self.transaction(
            work,
            op="organisation.create",
            conflict_message="Organisation slug already exists",
        )

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    async def _lock_target(
        self, session: AsyncSession, membership_id: uuid.UUID
    ) -> Membership:
        # organisation_id never changes, so it is safe to read before locking
        result = await session.execute(
            select(Membership.organisation_id).where(Membership.id == membership_id)
        )
        organisation_id = result.scalar_one_or_none()
        if organisation_id is None:
            raise NotFoundError("Membership not found")

        await lock_organisation(session, organisation_id)

        result = await session.execute(
            select(Membership)
            .where(Membership.id == membership_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    def _check_expected_role(membership: Membership, expected_role: Optional[Role]) -> None:
        if expected_role is not None and membership.role != expected_role.value:
            raise ConflictError("Membership was modified concurrently; retry the request")

    @staticmethod
    async def _guard_last_owner(
        session: AsyncSession, organisation_id: uuid.UUID, message: str
    ) -> None:
        owners = await _count_active_with_role(session, organisation_id, Role.OWNER)
        if owners <= 1:
            raise LastOwnerError(message)


@lru_cache
def get_membership_store() -> MembershipStore:
    """FastAPI dependency: the process-wide store bound to the main engine."""
    from engage_server.core.config import get_settings
    from engage_server.core.database import async_session_factory

    settings = get_settings()
    return MembershipStore(
        async_session_factory,
        max_retries=settings.storage_max_retries,
        retry_backoff_seconds=settings.storage_retry_backoff_ms / 1000,
    )
