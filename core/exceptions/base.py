from typing import Any, Dict, Optional


class CustomException(Exception):
    """Base exception for errors that map onto an HTTP error response."""

    code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"
    message: str = "An unexpected error occurred"
    data: Optional[Dict[str, Any]] = None

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[int] = None,
        error_code: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.message
        self.code = code or self.code
        self.error_code = error_code or self.error_code
        self.data = data or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Response body rendered by the API exception handler."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "data": self.data,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code}, error_code={self.error_code}, message={self.message})"


class BadRequestException(CustomException):
    code = 400
    error_code = "BAD_REQUEST"
    message = "Bad request"


class UnauthorizedException(CustomException):
    code = 401
    error_code = "UNAUTHORIZED"
    message = "Unauthorized"


class ForbiddenException(CustomException):
    code = 403
    error_code = "FORBIDDEN"
    message = "Access forbidden"


class NotFoundException(CustomException):
    code = 404
    error_code = "NOT_FOUND"
    message = "Resource not found"


class ConflictException(CustomException):
    code = 409
    error_code = "CONFLICT"
    message = "Resource conflict"


class ValidationException(CustomException):
    code = 422
    error_code = "VALIDATION_ERROR"
    message = "Validation error"


class BadGatewayException(CustomException):
    """An upstream provider failed or rejected the request (502)."""

    code = 502
    error_code = "BAD_GATEWAY"
    message = "Upstream service error"


class ServiceUnavailableException(CustomException):
    """The request could not be completed right now and may be retried (503)."""

    code = 503
    error_code = "SERVICE_UNAVAILABLE"
    message = "Service temporarily unavailable"
