"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes
and the caller-facing error kind they belong to.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Coarse error taxonomy surfaced to callers.

    Every ApiErrorCode belongs to exactly one kind. Clients may branch on
    the kind (e.g. retry TRANSIENT) without knowing every specific code.
    """

    VALIDATION = "VALIDATION"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    TRANSIENT = "TRANSIENT"
    INTERNAL = "INTERNAL"


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_NOT_PARTICIPANT = "E_NOT_PARTICIPANT"
    E_NOT_AUTHORIZED = "E_NOT_AUTHORIZED"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_ROOM_NOT_FOUND = "E_ROOM_NOT_FOUND"
    E_LINKU_NOT_FOUND = "E_LINKU_NOT_FOUND"
    E_REVIEW_NOT_FOUND = "E_REVIEW_NOT_FOUND"
    E_USER_NOT_FOUND = "E_USER_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_SELF_CHAT = "E_SELF_CHAT"
    E_SELF_SEND = "E_SELF_SEND"

    # Conflict errors (409)
    E_CONFLICT = "E_CONFLICT"
    E_ALREADY_REVIEWED = "E_ALREADY_REVIEWED"
    E_NO_ACTIVE_LINKU = "E_NO_ACTIVE_LINKU"

    # Server errors
    E_TRANSIENT = "E_TRANSIENT"  # 503
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_NOT_PARTICIPANT: 403,
    ApiErrorCode.E_NOT_AUTHORIZED: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_ROOM_NOT_FOUND: 404,
    ApiErrorCode.E_LINKU_NOT_FOUND: 404,
    ApiErrorCode.E_REVIEW_NOT_FOUND: 404,
    ApiErrorCode.E_USER_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_SELF_CHAT: 400,
    ApiErrorCode.E_SELF_SEND: 400,
    ApiErrorCode.E_CONFLICT: 409,
    ApiErrorCode.E_ALREADY_REVIEWED: 409,
    ApiErrorCode.E_NO_ACTIVE_LINKU: 409,
    ApiErrorCode.E_TRANSIENT: 503,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
    ApiErrorCode.E_INTERNAL: 500,
}

# Error code to error kind mapping
ERROR_CODE_TO_KIND: dict[ApiErrorCode, ErrorKind] = {
    ApiErrorCode.E_UNAUTHENTICATED: ErrorKind.NOT_AUTHENTICATED,
    ApiErrorCode.E_FORBIDDEN: ErrorKind.NOT_AUTHORIZED,
    ApiErrorCode.E_NOT_PARTICIPANT: ErrorKind.NOT_AUTHORIZED,
    ApiErrorCode.E_NOT_AUTHORIZED: ErrorKind.NOT_AUTHORIZED,
    ApiErrorCode.E_NOT_FOUND: ErrorKind.NOT_FOUND,
    ApiErrorCode.E_ROOM_NOT_FOUND: ErrorKind.NOT_FOUND,
    ApiErrorCode.E_LINKU_NOT_FOUND: ErrorKind.NOT_FOUND,
    ApiErrorCode.E_REVIEW_NOT_FOUND: ErrorKind.NOT_FOUND,
    ApiErrorCode.E_USER_NOT_FOUND: ErrorKind.NOT_FOUND,
    ApiErrorCode.E_INVALID_REQUEST: ErrorKind.VALIDATION,
    ApiErrorCode.E_SELF_CHAT: ErrorKind.CONFLICT,
    ApiErrorCode.E_SELF_SEND: ErrorKind.VALIDATION,
    ApiErrorCode.E_CONFLICT: ErrorKind.CONFLICT,
    ApiErrorCode.E_ALREADY_REVIEWED: ErrorKind.CONFLICT,
    ApiErrorCode.E_NO_ACTIVE_LINKU: ErrorKind.CONFLICT,
    ApiErrorCode.E_TRANSIENT: ErrorKind.TRANSIENT,
    ApiErrorCode.E_AUTH_UNAVAILABLE: ErrorKind.TRANSIENT,
    ApiErrorCode.E_INTERNAL: ErrorKind.INTERNAL,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
        kind: Error kind (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        self.kind = ERROR_CODE_TO_KIND.get(code, ErrorKind.INTERNAL)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class ConflictError(ApiError):
    """State conflict error (invariant would be violated)."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_CONFLICT, message: str = "Conflict"):
        super().__init__(code, message)
