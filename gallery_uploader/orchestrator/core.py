"""Core orchestrator - coordinates intake, validation, previews and the queue."""
import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from ..errors import NoFilesFound
from ..models import BatchSnapshot, FileDescriptor, ItemSnapshot, UploadConfig, UploadItem
from ..protocols import IDirectoryEntry, IUploadTransport
from ..services.preview import PreviewService
from ..services.transport import HTTPUploadTransport
from ..services.validator import ValidatorService
from ..utils.events import EventEmitter
from .file_collector import CollectedFiles, FileCollector
from .queue import QueueController

logger = logging.getLogger(__name__)


class GalleryUploader:
    """
    Batch upload orchestrator for the gallery.

    Follows:
    - Dependency Injection (transport, validator and preview service injected)
    - Single Responsibility (delegates to collector, validator, queue)

    Usage:
        async with GalleryUploader(UploadConfig(base_url=url)) as uploader:
            uploader.on_change(lambda snapshot: render(snapshot))
            uploader.on_finish(lambda snapshot: print("done"))

            uploader.add_folder(Path("~/Pictures/Villa"))
            uploader.start()
            uploader.pause()
            uploader.resume()
            snapshot = await uploader.wait()
    """

    def __init__(
        self,
        config: Optional[UploadConfig] = None,
        transport: Optional[IUploadTransport] = None,
        validator: Optional[ValidatorService] = None,
        previews: Optional[PreviewService] = None,
        collector: Optional[FileCollector] = None,
    ):
        self._config = config or UploadConfig()
        self._owns_transport = transport is None
        self._transport = transport or HTTPUploadTransport(
            self._config.base_url,
            endpoint=self._config.endpoint,
            timeout=self._config.timeout,
        )
        self._validator = validator or ValidatorService(self._config.policy)
        self._previews = previews or PreviewService()
        self._collector = collector or FileCollector()
        self._events = EventEmitter()
        self._queue = QueueController(self._transport, self._config, self._events)

    async def __aenter__(self):
        if self._owns_transport:
            await self._transport.__aenter__()
        return self

    async def __aexit__(self, *args):
        await self.close()

    # Collaborators
    @property
    def config(self) -> UploadConfig:
        return self._config

    @property
    def queue(self) -> QueueController:
        return self._queue

    @property
    def previews(self) -> PreviewService:
        return self._previews

    # Event subscription methods
    def on_change(self, callback: Callable[[BatchSnapshot], None]):
        """Called with a fresh snapshot after every state change."""
        self._events.on("change", callback)

    def on_item_start(self, callback: Callable[[ItemSnapshot], None]):
        """Called when an item is dispatched to the transport."""
        self._events.on("item_start", callback)

    def on_item_progress(self, callback: Callable[[ItemSnapshot], None]):
        """Called when an item's progress increases."""
        self._events.on("item_progress", callback)

    def on_item_complete(self, callback: Callable[[ItemSnapshot], None]):
        """Called when an item finishes uploading."""
        self._events.on("item_complete", callback)

    def on_item_fail(self, callback: Callable[[ItemSnapshot], None]):
        """Called when an upload attempt fails."""
        self._events.on("item_fail", callback)

    def on_finish(self, callback: Callable[[BatchSnapshot], None]):
        """Called when the batch drains naturally (not after stop)."""
        self._events.on("finish", callback)

    def on_refresh(self, callback: Callable[[], None]):
        """Called after a natural drain so the gallery list can be reloaded."""
        self._events.on("refresh", callback)

    def on_empty(self, callback: Callable[[str], None]):
        """Called when intake finds no files or start() has nothing to upload."""
        self._events.on("empty", callback)

    def on_error(self, callback: Callable[[Exception], None]):
        """Called when intake fails unexpectedly."""
        self._events.on("error", callback)

    # Intake
    def add_files(self, paths: Iterable[Path]) -> List[ItemSnapshot]:
        """Add an explicit multi-file selection."""
        return self._ingest(lambda: self._collector.from_files(paths))

    def add_folder(self, folder: Path) -> List[ItemSnapshot]:
        """Add every image of a folder (recursive)."""
        return self._ingest(lambda: self._collector.from_folder(folder))

    async def add_entries(self, entries: Sequence[IDirectoryEntry]) -> List[ItemSnapshot]:
        """Add dropped entries, walking directories recursively."""
        try:
            collected = await self._collector.from_entries(entries)
        except NoFilesFound as e:
            self._events.emit_nowait("empty", str(e))
            raise
        except Exception as e:
            self._events.emit_nowait("error", e)
            raise
        return self._add_collected(collected)

    def add_descriptors(
        self,
        descriptors: Sequence[FileDescriptor],
        label: Optional[str] = None,
    ) -> List[ItemSnapshot]:
        """Add already-built descriptors (e.g. in-memory payloads)."""
        return self._ingest(lambda: CollectedFiles(files=list(descriptors), label=label))

    def _ingest(self, collect: Callable[[], CollectedFiles]) -> List[ItemSnapshot]:
        try:
            collected = collect()
        except NoFilesFound as e:
            self._events.emit_nowait("empty", str(e))
            raise
        except Exception as e:
            self._events.emit_nowait("error", e)
            raise
        if not collected.files:
            message = "No files to add"
            self._events.emit_nowait("empty", message)
            raise NoFilesFound(message)
        return self._add_collected(collected)

    def _add_collected(self, collected: CollectedFiles) -> List[ItemSnapshot]:
        items = self._validator.build_items(collected.files, category=self._config.category)
        for item in items:
            if item.error is None:
                item.preview = self._previews.allocate(item.payload)

        if collected.label or self._queue.label is None:
            self._queue.label = collected.label
        self._queue.add(items)

        rejected = sum(1 for item in items if item.error is not None)
        logger.info(
            f"Prepared {len(items)} file(s) from {collected.label or 'selected files'}"
            f" ({rejected} rejected)"
        )
        return [item.snapshot() for item in items]

    # Commands
    def start(self) -> bool:
        return self._queue.start()

    def pause(self) -> bool:
        return self._queue.pause()

    def resume(self) -> bool:
        return self._queue.resume()

    def stop(self) -> bool:
        return self._queue.stop()

    def retry_one(self, item_id: str) -> bool:
        return self._queue.retry_one(item_id)

    def retry_failed(self) -> int:
        return self._queue.retry_failed()

    def remove(self, item_id: str) -> bool:
        """Remove one item and release its preview handle."""
        item = self._queue.remove(item_id)
        if item is None:
            return False
        self._release_preview(item)
        return True

    def clear(self) -> int:
        """Tear the batch down: stop, drop all items, release all previews."""
        removed = self._queue.clear()
        for item in removed:
            self._release_preview(item)
        self._queue.label = None
        return len(removed)

    def load_preview(self, item_id: str) -> Optional[bytes]:
        """Read preview content for display; None if the item has no live preview."""
        item = self._queue.get(item_id)
        if item is None or item.preview is None:
            return None
        return self._previews.load(item.preview)

    def snapshot(self) -> BatchSnapshot:
        return self._queue.snapshot()

    async def wait(self) -> BatchSnapshot:
        return await self._queue.wait()

    async def run(self) -> BatchSnapshot:
        """Start the batch and wait for it to drain."""
        self.start()
        return await self.wait()

    async def close(self) -> None:
        """Cleanup resources."""
        await self._queue.aclose()
        self.clear()
        leaked = self._previews.release_all()
        if leaked:
            logger.warning(f"[preview] {leaked} handle(s) had no owning item on close")
        if self._owns_transport:
            await self._transport.__aexit__(None, None, None)

    def _release_preview(self, item: UploadItem) -> None:
        if item.preview is not None:
            self._previews.release(item.preview)
            item.preview = None
