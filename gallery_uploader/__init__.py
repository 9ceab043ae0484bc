"""
Gallery uploader - batch image uploads with a bounded, pausable queue.

Follows SOLID principles:
- Single Responsibility: intake, validation, previews, queue and transport are separate
- Dependency Injection: transport, validator and preview service are injected
- Interface Segregation: small protocols for transport and drag-and-drop entries

Usage:
    from gallery_uploader import GalleryUploader, UploadConfig

    async with GalleryUploader(UploadConfig(base_url="https://example.com")) as uploader:
        uploader.add_folder(Path("Villa Seeblick"))
        uploader.start()
        snapshot = await uploader.wait()

    # Pause / resume / stop while running
    uploader.pause()
    uploader.resume()
    uploader.stop()

    # Explicit retries (never automatic)
    uploader.retry_failed()
    uploader.start()
"""
__version__ = "0.1.0"

from .errors import (
    ErrorKind,
    InvalidTransition,
    NoFilesFound,
    TransportError,
    TransportNetworkError,
    TransportServerError,
    UploaderError,
    UserCancelled,
    ValidationRejected,
)
from .models import (
    BatchSnapshot,
    BatchSummary,
    FileDescriptor,
    ItemSnapshot,
    UploadConfig,
    UploadItem,
    UploadOutcome,
    UploadStatus,
    ValidationPolicy,
)
from .orchestrator import FileCollector, GalleryUploader, PathEntry, QueueController
from .services import HTTPUploadTransport, PreviewService, ValidatorService

__all__ = [
    # Main
    "GalleryUploader",
    "QueueController",
    "FileCollector",
    "PathEntry",
    # Models
    "BatchSnapshot",
    "BatchSummary",
    "FileDescriptor",
    "ItemSnapshot",
    "UploadConfig",
    "UploadItem",
    "UploadOutcome",
    "UploadStatus",
    "ValidationPolicy",
    # Services
    "HTTPUploadTransport",
    "PreviewService",
    "ValidatorService",
    # Errors
    "ErrorKind",
    "InvalidTransition",
    "NoFilesFound",
    "TransportError",
    "TransportNetworkError",
    "TransportServerError",
    "UploaderError",
    "UserCancelled",
    "ValidationRejected",
]
