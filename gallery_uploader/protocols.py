"""
Protocols (Interfaces) for Dependency Inversion.

Small collaborator contracts consumed by the batch orchestrator.
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Protocol, runtime_checkable
import asyncio

from .models import BatchSnapshot, FileDescriptor, UploadOutcome


ProgressCallback = Callable[[int], None]


@runtime_checkable
class IUploadTransport(Protocol):
    """Interface for a single upload call."""

    async def upload(
        self,
        payload: FileDescriptor,
        metadata: Dict[str, str],
        on_progress: ProgressCallback,
        cancel_event: asyncio.Event,
    ) -> UploadOutcome:
        """
        Upload one payload.

        Must return UploadOutcome.cancel() (not raise) once cancel_event is set.
        """
        ...


@runtime_checkable
class IDirectoryEntry(Protocol):
    """Drag-and-drop entry: either a file or a directory of entries."""

    name: str

    @property
    def is_file(self) -> bool:
        ...

    @property
    def is_directory(self) -> bool:
        ...

    async def file(self) -> FileDescriptor:
        """Resolve a file entry to its descriptor."""
        ...

    async def children(self) -> List["IDirectoryEntry"]:
        """List the entries of a directory entry."""
        ...


class IBatchRenderer(ABC):
    """Interface for UI collaborators reading batch snapshots."""

    @abstractmethod
    def render(self, snapshot: BatchSnapshot) -> None:
        """Render a read-only snapshot."""
        pass

    def finish(self, snapshot: BatchSnapshot) -> Any:
        """Called once when the batch drains naturally."""
        return None
