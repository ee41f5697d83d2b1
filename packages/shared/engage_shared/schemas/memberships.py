"""Organisation membership schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .common import Role


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class MembershipCreateRequest(BaseModel):
    """Add a user to the organisation (or restore a removed membership)."""
    user_id: uuid.UUID
    role: Role = Role.MEMBER


class MembershipUpdateRequest(BaseModel):
    """Change a member's role. Only owners may do this."""
    role: Role


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class MembershipUser(BaseModel):
    """Profile summary of the member, included on read views."""
    id: uuid.UUID
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    model_config = {"from_attributes": True}


class MembershipResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    organisation_id: uuid.UUID
    role: Role
    is_deleted: bool
    created_at: datetime
    updated_at: datetime
    user: Optional[MembershipUser] = None

    model_config = {"from_attributes": True}


class MembershipListResponse(BaseModel):
    data: List[MembershipResponse]
