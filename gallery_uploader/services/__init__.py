"""Services for gallery uploader module."""
from .preview import PreviewService
from .transport import HTTPUploadTransport
from .validator import ValidatorService

__all__ = [
    "HTTPUploadTransport",
    "PreviewService",
    "ValidatorService",
]
