# core/errors.py
"""
Domain error taxonomy.

Authorization denials are NOT errors (the resolver returns ``False``);
everything here is a genuine fault raised by the limiter, the store or a
request flow, and is translated to an HTTP response by ``to_http_exception``.
"""
from typing import Optional

from fastapi import HTTPException, status

PERMISSION_DENIED_MESSAGE = "You do not have permission to perform this action."


class NudgeError(Exception):
    """Base class for all domain errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "An unexpected error occurred."):
        super().__init__(message)
        self.message = message


class NotFound(NudgeError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Optional[str] = None):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class NotAuthenticated(NudgeError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication required."):
        super().__init__(message)


class PermissionDenied(NudgeError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = PERMISSION_DENIED_MESSAGE):
        super().__init__(message)


class InvalidRequest(NudgeError):
    status_code = status.HTTP_400_BAD_REQUEST


class Conflict(NudgeError):
    status_code = status.HTTP_409_CONFLICT


class AlreadyInvited(Conflict):
    def __init__(self, email: str):
        super().__init__(f"{email} has already been invited to this project.")
        self.email = email


class AlreadyMember(Conflict):
    def __init__(self, email: str):
        super().__init__(f"{email} is already a member of this project.")
        self.email = email


class EmailAlreadyRegistered(Conflict):
    def __init__(self, email: str):
        super().__init__("An account with this email already exists.")
        self.email = email


class TokenExpired(NudgeError):
    status_code = status.HTTP_410_GONE


class InvitationExpired(TokenExpired):
    def __init__(self):
        super().__init__("This invitation has expired. Please request a new one.")


class LimitExceeded(NudgeError):
    """A plan quota would be exceeded by the requested creation."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, resource: str, current: float, limit: float, plan: str):
        super().__init__(
            f"Your {plan} plan allows {limit:g} {resource} and you are using {current:g}. "
            f"Upgrade your plan to add more."
        )
        self.resource = resource
        self.current = current
        self.limit = limit
        self.plan = plan


class PaymentGatewayError(NudgeError):
    status_code = status.HTTP_502_BAD_GATEWAY


def to_http_exception(error: NudgeError) -> HTTPException:
    """Translate a domain error into the HTTP response the client sees."""
    detail: object = error.message
    if isinstance(error, LimitExceeded):
        detail = {
            "message": error.message,
            "resource": error.resource,
            "current": error.current,
            "limit": error.limit,
            "plan": error.plan,
        }
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(error, NotAuthenticated) else None
    return HTTPException(status_code=error.status_code, detail=detail, headers=headers)
