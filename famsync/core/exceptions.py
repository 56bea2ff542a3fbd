"""Domain error taxonomy.

Services raise these; ``famsync.main`` translates them into the JSON error
envelope with the matching HTTP status.
"""

from fastapi import status


class AppError(Exception):
    """Base class for errors raised by famsync services."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_SERVER_ERROR"
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, details: dict | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.details = details


# -- 400 ---------------------------------------------------------------------

class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    message = "Validation error"


# -- 401 ---------------------------------------------------------------------

class Unauthorized(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"
    message = "Could not validate credentials"


# -- 403 ---------------------------------------------------------------------

class PermissionDenied(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "PERMISSION_DENIED"
    message = "Permission denied"


class NotFamilyAdmin(PermissionDenied):
    code = "NOT_FAMILY_ADMIN"
    message = "You must be an admin of this family to perform this action"


class CannotRemoveCreator(PermissionDenied):
    code = "CANNOT_REMOVE_CREATOR"
    message = "Cannot remove the family creator"


class CannotLeaveAsCreator(PermissionDenied):
    code = "CANNOT_LEAVE_AS_CREATOR"
    message = "Cannot leave family as creator. Delete the family instead."


# -- 404 ---------------------------------------------------------------------

class ResourceNotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "RESOURCE_NOT_FOUND"
    message = "Resource not found"


class NotFamilyMember(ResourceNotFound):
    # Reported as 404 so non-members cannot probe which families exist.
    code = "NOT_FAMILY_MEMBER"
    message = "Family not found or you are not a member of it"


class FamilyNotFound(ResourceNotFound):
    code = "FAMILY_NOT_FOUND"
    message = "Family not found"


class InviteNotFound(ResourceNotFound):
    code = "INVITE_NOT_FOUND"
    message = "Invite not found or invalid"


# -- 409 ---------------------------------------------------------------------

class ResourceAlreadyExists(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "RESOURCE_ALREADY_EXISTS"
    message = "Resource already exists"


class AlreadyFamilyMember(ResourceAlreadyExists):
    code = "ALREADY_FAMILY_MEMBER"
    message = "User is already a member of this family"


class JoinRequestAlreadyProcessed(ResourceAlreadyExists):
    code = "JOIN_REQUEST_ALREADY_PROCESSED"
    message = "This join request has already been processed"


# -- 410 ---------------------------------------------------------------------

class InviteExpired(AppError):
    status_code = status.HTTP_410_GONE
    code = "INVITE_EXPIRED"
    message = "This invite has expired"


class InviteAlreadyUsed(AppError):
    status_code = status.HTTP_410_GONE
    code = "INVITE_ALREADY_USED"
    message = "This invite has already been used"


# -- 500 ---------------------------------------------------------------------

class InternalServerError(AppError):
    pass
