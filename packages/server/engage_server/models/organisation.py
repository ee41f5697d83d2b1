"""Organisation (tenant) model."""

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Organisation(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "organisations"

    name: str = Field(nullable=False, index=True)
    slug: str = Field(unique=True, nullable=False, index=True)
    is_deleted: bool = Field(default=False, nullable=False)
