from enum import Enum
from typing import Union

from pydantic import BaseModel


class Role(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


# Strict total order of privilege
ROLE_RANK: dict["Role", int] = {
    Role.OWNER: 3,
    Role.ADMIN: 2,
    Role.MEMBER: 1,
}

ALL_ROLES: frozenset["Role"] = frozenset(Role)
MANAGER_ROLES: frozenset["Role"] = frozenset({Role.OWNER, Role.ADMIN})
OWNER_ONLY: frozenset["Role"] = frozenset({Role.OWNER})


def rank(role: Union[Role, str]) -> int:
    """Privilege rank of a role: OWNER=3, ADMIN=2, MEMBER=1."""
    return ROLE_RANK[Role(role)]


def at_least(role: Union[Role, str], threshold: Union[Role, str]) -> bool:
    return rank(role) >= rank(threshold)


class ErrorBody(BaseModel):
    code: str
    message: str
    status: int


class ErrorResponse(BaseModel):
    error: ErrorBody
