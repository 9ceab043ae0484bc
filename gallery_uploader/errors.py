"""Error taxonomy for batch uploads."""
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classifies why an item ended up failed."""
    VALIDATION = "validation"
    NETWORK = "network"
    SERVER = "server"


class UploaderError(RuntimeError):
    """Base class for all uploader errors."""


class ValidationRejected(UploaderError):
    """File rejected before any network activity."""

    def __init__(self, filename: str, reason: str):
        super().__init__(reason)
        self.filename = filename
        self.reason = reason


class TransportError(UploaderError):
    """Upload attempt failed."""
    kind = ErrorKind.NETWORK


class TransportNetworkError(TransportError):
    """No response was received from the server."""
    kind = ErrorKind.NETWORK


class TransportServerError(TransportError):
    """Server answered with a non-2xx status."""
    kind = ErrorKind.SERVER

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UserCancelled(UploaderError):
    """Upload was cancelled by pause/stop. Not a failure."""


class InvalidTransition(UploaderError):
    """Item status change not allowed by the upload lifecycle."""


class NoFilesFound(UploaderError):
    """Intake source contained no qualifying files."""
