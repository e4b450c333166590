"""Error taxonomy for membership operations.

Each error subclasses the builtin the older service code raised for the same
situation (``ValueError``, ``PermissionError``, ``LookupError``) so callers
catching the broad builtin keep working.
"""

from typing import Any, Optional
from uuid import UUID


class MembershipError(Exception):
    """Base class for every error raised by the membership engine."""

    code = "membership_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ConflictError(MembershipError):
    """The user already holds an active membership elsewhere (or the slot is taken)."""

    code = "conflict"

    def __init__(
        self,
        message: str,
        community_id: Optional[UUID] = None,
        community_name: Optional[str] = None,
        status: Optional[str] = None,
    ):
        super().__init__(message)
        self.community_id = community_id
        self.community_name = community_name
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            community_id=str(self.community_id) if self.community_id else None,
            community_name=self.community_name,
            status=self.status,
        )
        return data


class NotFoundError(MembershipError, LookupError):
    code = "not_found"


class AuthorizationError(MembershipError, PermissionError):
    code = "forbidden"


class ValidationError(MembershipError, ValueError):
    code = "invalid"


class StateError(MembershipError):
    """Operation is not valid for the record's current status."""

    code = "invalid_state"

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status"] = self.status
        return data


class TransientStoreError(MembershipError):
    """Storage failure; the operation is safe to retry."""

    code = "store_unavailable"
