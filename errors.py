class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""
    detail = "Something went wrong!"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.detail
        super().__init__(self.detail)


class ValidationError(AppError):
    detail = "Validation failed"


class InvalidEvent(ValidationError):
    detail = "Invalid event data"


class DuplicateError(AppError):
    detail = "Already exists"


class DuplicateUser(DuplicateError):
    detail = "Username already taken"


class AuthenticationError(AppError):
    detail = "Not authenticated"


class InvalidCredentials(AuthenticationError):
    detail = "Invalid username or password"


class MissingToken(AuthenticationError):
    detail = "Missing bearer token"


class MalformedToken(AuthenticationError):
    detail = "Malformed token"


class ExpiredToken(AuthenticationError):
    detail = "Token has expired"


class InvalidSignature(AuthenticationError):
    detail = "Invalid token"


class StorageError(AppError):
    detail = "Database error"


# Every authentication failure is a 401, bad signatures included.
ERROR_STATUS = {
    ValidationError: 400,
    DuplicateError: 400,
    AuthenticationError: 401,
    StorageError: 500,
}


def status_for(exc: AppError) -> int:
    """Resolve the HTTP status of an error from the most specific mapped class."""
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500
