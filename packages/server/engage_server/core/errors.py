"""
Error taxonomy for the membership and access-control core.

Every error is terminal and caller-visible. ``status_code`` is the HTTP
status the API layer renders it with; ``code`` is the stable machine name.
"""

from __future__ import annotations


class EngageError(Exception):
    code = "ERROR"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(EngageError):
    code = "NotFound"
    status_code = 404
    default_message = "Not found"


class NoAccessError(EngageError):
    code = "NoAccess"
    status_code = 403
    default_message = "You do not have access to this organisation"


class InsufficientRoleError(EngageError):
    code = "InsufficientRole"
    status_code = 403
    default_message = "Insufficient permissions"


class ForbiddenCrossRoleError(EngageError):
    code = "ForbiddenCrossRole"
    status_code = 403
    default_message = "Admins cannot act on owners"


class SelfActionDeniedError(EngageError):
    code = "SelfActionDenied"
    status_code = 400
    default_message = "You cannot change your own role"


class LastOwnerError(EngageError):
    code = "LastOwnerError"
    status_code = 400
    default_message = "An organisation must keep at least one owner"


class ConflictError(EngageError):
    code = "ConflictError"
    status_code = 409
    default_message = "Conflict"


class StorageError(EngageError):
    """Transient backend failure that outlasted the retry budget."""

    code = "StorageError"
    status_code = 503
    default_message = "Storage temporarily unavailable"
