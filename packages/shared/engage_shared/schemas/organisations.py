"""
Organisation-related Pydantic schemas shared between server and clients.

Covers: organisation CRUD request/response and the per-user listing item.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .common import Role

SLUG_PATTERN = r"^[a-z0-9][a-z0-9-]*[a-z0-9]$"


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class OrgCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Organisation display name")
    slug: str = Field(
        ...,
        min_length=2,
        max_length=100,
        pattern=SLUG_PATTERN,
        description="URL-safe organisation identifier",
    )


class OrgUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=2, max_length=100, pattern=SLUG_PATTERN)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class OrgResponse(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrgListItem(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    role: Optional[Role] = None  # the requesting user's role; None for super-admin views
    created_at: datetime

    model_config = {"from_attributes": True}


class OrgListResponse(BaseModel):
    data: list[OrgListItem]
