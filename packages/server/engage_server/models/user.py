"""User model.

Accounts are managed elsewhere; the membership core only reads the
``is_active`` and ``is_super_admin`` flags.
"""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class User(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    email: str = Field(unique=True, index=True, nullable=False)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool = Field(default=True, nullable=False)
    is_super_admin: bool = Field(default=False, nullable=False)
