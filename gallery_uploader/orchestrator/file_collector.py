"""File collection utilities for batch intake."""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence
import asyncio
import mimetypes
import logging

from ..errors import NoFilesFound
from ..models import FileDescriptor
from ..protocols import IDirectoryEntry

logger = logging.getLogger(__name__)

IMAGE_MIME_PREFIX = "image/"
DEFAULT_MIME_TYPE = "application/octet-stream"


def guess_mime_type(path) -> str:
    mime_type, _ = mimetypes.guess_type(str(path))
    return mime_type or DEFAULT_MIME_TYPE


def is_image(descriptor: FileDescriptor) -> bool:
    return (descriptor.mime_type or "").startswith(IMAGE_MIME_PREFIX)


@dataclass
class CollectedFiles:
    """Flat, ordered intake result."""
    files: List[FileDescriptor] = field(default_factory=list)
    label: Optional[str] = None

    def __len__(self) -> int:
        return len(self.files)


class PathEntry:
    """Local filesystem implementation of IDirectoryEntry."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.name = self.path.name

    def __repr__(self) -> str:
        return f"PathEntry({str(self.path)!r})"

    @property
    def is_file(self) -> bool:
        return self.path.is_file()

    @property
    def is_directory(self) -> bool:
        return self.path.is_dir()

    async def file(self) -> FileDescriptor:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, FileDescriptor.from_path, self.path, guess_mime_type(self.path)
        )

    async def children(self) -> List["PathEntry"]:
        loop = asyncio.get_running_loop()
        paths = await loop.run_in_executor(None, lambda: sorted(self.path.iterdir()))
        return [PathEntry(p) for p in paths]


class FileCollector:
    """Normalizes picker, folder and drag-and-drop sources into descriptors."""

    @staticmethod
    def from_files(paths: Iterable[Path]) -> CollectedFiles:
        """
        Collect an explicit multi-file selection.

        Files are not filtered by type here; the validator reports why a
        selected file cannot be uploaded.
        """
        files = []
        for path in paths:
            path = Path(path)
            if not path.is_file():
                logger.warning(f"[intake] Skipping non-file selection: {path}")
                continue
            files.append(FileDescriptor.from_path(path, guess_mime_type(path)))

        if not files:
            raise NoFilesFound("No files selected")
        return CollectedFiles(files=files)

    @staticmethod
    def from_folder(folder: Path) -> CollectedFiles:
        """
        Collect all image files of a folder recursively.

        Relative paths keep the folder name as first component; it becomes
        the batch label.
        """
        folder = Path(folder).resolve()
        files = []
        for item in sorted(folder.rglob("*")):
            if not item.is_file():
                continue
            mime_type = guess_mime_type(item)
            if not mime_type.startswith(IMAGE_MIME_PREFIX):
                continue
            relative = item.relative_to(folder.parent).as_posix()
            files.append(FileDescriptor.from_path(item, mime_type, relative_path=relative))

        if not files:
            raise NoFilesFound(f"The folder {folder.name} contains no image files")

        label = files[0].relative_path.split("/")[0] if files[0].relative_path else folder.name
        return CollectedFiles(files=files, label=label)

    async def from_entries(self, entries: Sequence[IDirectoryEntry]) -> CollectedFiles:
        """
        Resolve dropped entries to a flat list of image files.

        Directories are walked recursively; siblings are resolved concurrently
        and results keep entry order.
        """
        groups = await asyncio.gather(*(self._walk(entry) for entry in entries))
        files = [descriptor for group in groups for descriptor in group]

        if not files:
            raise NoFilesFound("The dropped items contain no image files")

        label = entries[0].name if entries and entries[0].is_directory else None
        return CollectedFiles(files=files, label=label)

    async def _walk(self, entry: IDirectoryEntry) -> List[FileDescriptor]:
        if entry.is_file:
            descriptor = await entry.file()
            return [descriptor] if is_image(descriptor) else []

        if entry.is_directory:
            children = await entry.children()
            groups = await asyncio.gather(*(self._walk(child) for child in children))
            return [descriptor for group in groups for descriptor in group]

        logger.debug(f"[intake] Ignoring entry that is neither file nor directory: {entry.name}")
        return []
