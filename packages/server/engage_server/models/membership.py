"""User-Organisation membership.

At most one active (``is_deleted = false``) row may exist per
(user, organisation) pair; the partial unique index enforces it at the
database level. Soft-deleted rows are kept so a later add can restore them.
"""

import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from engage_shared.schemas.common import Role

from .base import TimestampMixin, UUIDMixin


class Membership(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "user_organisations"
    __table_args__ = (
        sa.Index(
            "uq_user_organisations_active_pair",
            "user_id",
            "organisation_id",
            unique=True,
            postgresql_where=sa.text("NOT is_deleted"),
            sqlite_where=sa.text("is_deleted = 0"),
        ),
        sa.Index("idx_user_organisations_org_role", "organisation_id", "role", "is_deleted"),
    )

    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    organisation_id: uuid.UUID = Field(foreign_key="organisations.id", nullable=False, index=True)
    role: str = Field(nullable=False, default=Role.MEMBER.value)  # OWNER | ADMIN | MEMBER
    is_deleted: bool = Field(default=False, nullable=False)

    @property
    def role_enum(self) -> Role:
        return Role(self.role)
