class OpenDriveError(Exception):
    """Base class for everything the adapter raises."""


class SetupError(OpenDriveError):
    """Credentials or configuration missing. Fatal, never retried."""


class ApiError(OpenDriveError):
    """Raised when the OpenDrive API returns a non-2xx response."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"OpenDrive API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class AuthError(ApiError):
    """Session rejected by the server (401)."""


class TransientNetworkError(OpenDriveError):
    """Connection reset, timeout or other transport level failure."""


class NotFoundError(OpenDriveError):
    pass


class DirectoryNotFound(NotFoundError):
    pass


class ObjectNotFound(NotFoundError):
    pass


class ConflictError(OpenDriveError):
    pass


class SameNameCopyError(ConflictError):
    pass


class DirectoryNotEmpty(ConflictError):
    pass


class RootPurgeError(ConflictError):
    pass


class ProtocolError(OpenDriveError):
    """Malformed response or an upload whose byte count does not add up."""


class CallCancelledError(OpenDriveError):
    """The caller's deadline passed or its cancel event was set."""


class HashUnsupportedError(OpenDriveError):
    pass


class CantCopyError(OpenDriveError):
    pass
