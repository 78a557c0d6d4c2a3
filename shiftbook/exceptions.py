class ShiftbookError(Exception):
    """Base class for errors raised by shiftbook."""


class InvalidBackupError(ShiftbookError):
    """A backup payload is missing the profile, hospitals or shifts section."""


class RemoteSyncError(ShiftbookError):
    """A full sync or full fetch against the remote store failed."""


class NotAuthenticatedError(ShiftbookError):
    """A remote operation needs a signed-in user and there is none."""


class AuthenticationError(ShiftbookError):
    """The remote backend rejected the credentials."""
