"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        headers: dict[str, str] | None = None,
    ):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        self.headers = headers
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401, headers={"WWW-Authenticate": "Bearer"})


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class ConflictException(AppException):
    """Conflict exception.

    Raised for a duplicate active queue entry or when the doctor is already
    in a consultation. Not retried automatically since it depends on state.
    """

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class InvalidStateException(AppException):
    """Operation is not legal from the entry's current status."""

    def __init__(self, message: str = "Invalid state transition"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class UnavailableException(AppException):
    """Doctor is not accepting patients (or the queue is full)."""

    def __init__(self, message: str = "Doctor is not accepting patients"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class BusyException(AppException):
    """The doctor's queue could not be locked in time. Safe to retry."""

    def __init__(self, message: str = "Queue is busy, retry shortly", retry_after: int = 1):
        """Initialize with 503 status code and a Retry-After hint."""
        super().__init__(message, status_code=503, headers={"Retry-After": str(retry_after)})


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)
