"""Error taxonomy raised by the core and rendered by the API."""

from fastapi import status


class FileVaultError(Exception):
    """Base error; carries the HTTP status the API answers with."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(FileVaultError):
    """Missing or bad credentials, unknown or expired token. Never says which."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"

    def __init__(self, message: str = "") -> None:
        # The cause is only for logs; callers always see the same message.
        super().__init__()
        self.reason = message


class ValidationError(FileVaultError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class NotFound(FileVaultError):
    """Absent, or not visible to the caller. The two are indistinguishable."""

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"

    def __init__(self, message: str = "") -> None:
        super().__init__()
        self.reason = message


class Conflict(FileVaultError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Already exist"


class TransientStorageError(FileVaultError):
    """Cache, database or disk call failed; the caller may retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Storage temporarily unavailable"
