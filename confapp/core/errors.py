"""
Typed errors raised by services and rendered by the API layer.

Every error carries an HTTP status, a stable machine code, a human message and
optional details. The exception handler in ``confapp.main`` turns them into
``{"error": {"code", "message", "details"}}`` responses.
"""
from typing import Any, Optional


class ApiError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Internal Server Error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message or self.message
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(code={self.code}, message={self.message!r})>"


class ValidationError(ApiError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid request"


class BadRequestError(ApiError):
    status_code = 400
    code = "BAD_REQUEST"
    message = "Bad request"


class OrgRequiredError(ApiError):
    status_code = 400
    code = "ORG_REQUIRED"
    message = "orgId is required for this operation"


class UnauthorizedError(ApiError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Authentication required"


class PaymentRequiredError(ApiError):
    status_code = 400
    code = "PAYMENT_REQUIRED"
    message = "Payment must be completed before submission"


class ForbiddenError(ApiError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Access forbidden"


class NotFoundError(ApiError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Resource not found"


class ConflictError(ApiError):
    status_code = 409
    code = "CONFLICT"
    message = "Resource already exists"


class InvalidStatusError(ApiError):
    status_code = 400
    code = "INVALID_STATUS"
    message = "Operation not allowed in the current status"


class FileTooLargeError(ApiError):
    status_code = 400
    code = "FILE_TOO_LARGE"
    message = "File exceeds the maximum allowed size"


class FileTypeNotAllowedError(ApiError):
    status_code = 400
    code = "FILE_TYPE_NOT_ALLOWED"
    message = "File type is not allowed"
