"""Error taxonomy shared by all access services.

Services raise these; the API layer maps them to HTTP responses in one place
(see tenant_access.main). Every error carries a stable ``kind`` so callers
can branch without parsing messages.
"""


class AccessError(Exception):
    """Base exception for access engine errors."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.message = message or (self.__class__.__doc__ or self.kind).strip()
        self.context = context


class NotFoundError(AccessError):
    """Requested entity does not exist."""

    kind = "not_found"
    status_code = 404


class ForbiddenError(AccessError):
    """Access denied."""

    kind = "forbidden"
    status_code = 403


class ExpiredError(AccessError):
    """Token or invitation has expired."""

    kind = "expired"
    status_code = 410


class RevokedError(AccessError):
    """Token or invitation was revoked."""

    kind = "revoked"
    status_code = 410


class ConflictError(AccessError):
    """State changed concurrently or entity already exists."""

    kind = "conflict"
    status_code = 409


class InvalidInputError(AccessError):
    """Value outside the accepted vocabulary or malformed identifier."""

    kind = "validation"
    status_code = 422
