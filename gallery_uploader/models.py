"""
Models for gallery uploader.

Payloads, outcomes, snapshots and config are immutable dataclasses.
UploadItem is the only mutable record; it is owned by the queue controller.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Dict, Optional, Tuple
import io
import uuid

from .errors import ErrorKind, InvalidTransition


MB = 1024 * 1024
DEFAULT_ENDPOINT = "/api/gallery/upload"
DEFAULT_SUPPORTED_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
)


class UploadStatus(Enum):
    """Per-file upload status."""
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


_TRANSITIONS = {
    UploadStatus.PENDING: {UploadStatus.UPLOADING},
    UploadStatus.UPLOADING: {UploadStatus.COMPLETED, UploadStatus.FAILED, UploadStatus.PAUSED},
    UploadStatus.FAILED: {UploadStatus.PENDING},
    UploadStatus.PAUSED: {UploadStatus.PENDING},
    UploadStatus.COMPLETED: set(),
}


def generate_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FileDescriptor:
    """Immutable reference to a file's content plus its declared metadata."""
    name: str
    size: int
    mime_type: str
    path: Optional[Path] = None
    data: Optional[bytes] = field(default=None, repr=False)
    relative_path: Optional[str] = None

    @classmethod
    def from_path(cls, path: Path, mime_type: str, relative_path: Optional[str] = None):
        path = Path(path)
        return cls(
            name=path.name,
            size=path.stat().st_size,
            mime_type=mime_type,
            path=path,
            relative_path=relative_path,
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, mime_type: str):
        return cls(name=name, size=len(data), mime_type=mime_type, data=data)

    def open(self) -> BinaryIO:
        """Open the content for streaming reads."""
        if self.data is not None:
            return io.BytesIO(self.data)
        if self.path is None:
            raise FileNotFoundError(f"No content for {self.name}")
        return open(self.path, "rb")

    def read_bytes(self) -> bytes:
        with self.open() as fh:
            return fh.read()


@dataclass(frozen=True)
class PreviewHandle:
    """Revocable display reference for one item. Content is loaded on demand."""
    uri: str
    source: FileDescriptor = field(repr=False)

    @property
    def filename(self) -> str:
        return self.source.name


@dataclass(frozen=True)
class UploadOutcome:
    """Result of a single transport call."""
    ok: bool
    cancelled: bool = False
    response: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def success(cls, response: Any = None):
        return cls(ok=True, response=response)

    @classmethod
    def fail(cls, error: str, kind: ErrorKind = ErrorKind.NETWORK):
        return cls(ok=False, error=error, error_kind=kind)

    @classmethod
    def cancel(cls):
        return cls(ok=False, cancelled=True)


@dataclass
class UploadItem:
    """One file of a batch and its upload lifecycle."""
    payload: FileDescriptor
    id: str = field(default_factory=generate_id)
    status: UploadStatus = UploadStatus.PENDING
    progress: int = 0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    retry_count: int = 0
    preview: Optional[PreviewHandle] = None
    category: str = "general"
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @classmethod
    def rejected(cls, payload: FileDescriptor, reason: str, category: str = "general"):
        return cls(
            payload=payload,
            status=UploadStatus.FAILED,
            error=reason,
            error_kind=ErrorKind.VALIDATION,
            category=category,
        )

    @property
    def is_retryable(self) -> bool:
        return self.status == UploadStatus.FAILED and self.error_kind != ErrorKind.VALIDATION

    def _transition(self, target: UploadStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"{self.payload.name}: {self.status.value} -> {target.value} not allowed"
            )
        self.status = target

    def mark_uploading(self) -> None:
        self._transition(UploadStatus.UPLOADING)
        self.progress = 0
        self.error = None
        self.error_kind = None
        self.started_at = _now()
        self.ended_at = None

    def update_progress(self, percent: int) -> bool:
        """Record transport progress. Returns True if the value changed."""
        if self.status != UploadStatus.UPLOADING:
            return False
        percent = max(0, min(100, int(percent)))
        if percent <= self.progress:
            return False
        self.progress = percent
        return True

    def mark_completed(self) -> None:
        self._transition(UploadStatus.COMPLETED)
        self.progress = 100
        self.ended_at = _now()

    def mark_failed(self, error: str, kind: ErrorKind = ErrorKind.NETWORK) -> None:
        self._transition(UploadStatus.FAILED)
        self.error = error or "Unknown error"
        self.error_kind = kind
        self.ended_at = _now()

    def mark_paused(self) -> None:
        self._transition(UploadStatus.PAUSED)
        self.progress = 0
        self.error = None
        self.error_kind = None
        self.ended_at = _now()

    def requeue(self) -> None:
        """Failed -> Pending (retry) or Paused -> Pending (resume)."""
        retried = self.status == UploadStatus.FAILED
        self._transition(UploadStatus.PENDING)
        if retried:
            self.retry_count += 1
        self.progress = 0
        self.error = None
        self.error_kind = None

    def snapshot(self) -> "ItemSnapshot":
        return ItemSnapshot(
            id=self.id,
            filename=self.payload.name,
            size=self.payload.size,
            mime_type=self.payload.mime_type,
            status=self.status,
            progress=self.progress,
            error=self.error,
            error_kind=self.error_kind,
            retry_count=self.retry_count,
            preview_uri=self.preview.uri if self.preview else None,
            category=self.category,
            started_at=self.started_at,
            ended_at=self.ended_at,
        )


@dataclass(frozen=True)
class ItemSnapshot:
    """Read-only view of an UploadItem."""
    id: str
    filename: str
    size: int
    mime_type: str
    status: UploadStatus
    progress: int
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    retry_count: int = 0
    preview_uri: Optional[str] = None
    category: str = "general"
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


@dataclass(frozen=True)
class BatchSummary:
    """Derived batch-wide counts and progress."""
    total: int = 0
    completed_count: int = 0
    failed_count: int = 0
    paused_count: int = 0
    pending_count: int = 0
    currently_uploading_ids: Tuple[str, ...] = ()
    overall_progress: int = 0

    @property
    def all_success(self) -> bool:
        return self.total > 0 and self.completed_count == self.total


@dataclass(frozen=True)
class BatchSnapshot:
    """Immutable state published to renderers after every mutation."""
    items: Tuple[ItemSnapshot, ...]
    is_active: bool
    is_paused: bool
    summary: BatchSummary
    label: Optional[str] = None

    def get(self, item_id: str) -> Optional[ItemSnapshot]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def by_status(self, status: UploadStatus) -> Tuple[ItemSnapshot, ...]:
        return tuple(item for item in self.items if item.status == status)


@dataclass(frozen=True)
class ValidationPolicy:
    """Acceptance rules applied before upload."""
    accepted_mime_prefixes: Tuple[str, ...] = ("image/",)
    max_bytes: int = 10 * MB
    supported_types: Tuple[str, ...] = DEFAULT_SUPPORTED_TYPES


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for batch uploads."""
    base_url: str = "http://127.0.0.1:5000"
    endpoint: str = DEFAULT_ENDPOINT
    max_concurrent: int = 3
    category: str = "general"
    timeout: float = 60.0
    policy: ValidationPolicy = field(default_factory=ValidationPolicy)

    def __post_init__(self):
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")

    def with_overrides(self, **changes: Any) -> "UploadConfig":
        values: Dict[str, Any] = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **values)
