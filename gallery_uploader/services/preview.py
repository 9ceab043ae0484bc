"""
Preview Service - Single Responsibility: own local preview handles.

Each accepted image gets one revocable handle for display while the batch is
reviewed and uploaded. A handle only references the payload; content is read
when a renderer asks for it, never at intake.
"""
from typing import Callable, Dict, Optional
import logging
import uuid

from ..models import FileDescriptor, PreviewHandle

logger = logging.getLogger(__name__)


class PreviewService:
    """
    Allocates, loads and releases preview handles.

    Every handle is released exactly once: either when its item is removed
    from the batch or when the batch is torn down.
    """

    URI_SCHEME = "preview"

    def __init__(self, loader: Optional[Callable[[FileDescriptor], bytes]] = None):
        self._loader = loader or (lambda descriptor: descriptor.read_bytes())
        self._live: Dict[str, PreviewHandle] = {}

    @property
    def live_count(self) -> int:
        return len(self._live)

    def is_live(self, handle: PreviewHandle) -> bool:
        return handle.uri in self._live

    def allocate(self, descriptor: FileDescriptor) -> Optional[PreviewHandle]:
        """Create a preview handle, or None if the payload has no content source."""
        if descriptor.data is None and descriptor.path is None:
            logger.warning(f"[preview] Could not generate preview for {descriptor.name}: no content")
            return None

        handle = PreviewHandle(uri=f"{self.URI_SCHEME}://{uuid.uuid4().hex}", source=descriptor)
        self._live[handle.uri] = handle
        logger.debug(f"[preview] Allocated {handle.uri} for {descriptor.name}")
        return handle

    def load(self, handle: PreviewHandle) -> Optional[bytes]:
        """Read the content behind a live handle; None if released or unreadable."""
        if handle.uri not in self._live:
            logger.warning(f"[preview] Load of released handle: {handle.uri}")
            return None
        try:
            return self._loader(handle.source)
        except Exception as e:
            logger.warning(f"[preview] Could not load preview for {handle.filename}: {e}")
            return None

    def release(self, handle: Optional[PreviewHandle]) -> bool:
        """Release a handle. Returns False if it was already released."""
        if handle is None:
            return False
        if self._live.pop(handle.uri, None) is None:
            logger.warning(f"[preview] Handle already released: {handle.uri}")
            return False
        logger.debug(f"[preview] Released {handle.uri}")
        return True

    def release_all(self) -> int:
        """Release every outstanding handle (batch teardown)."""
        count = len(self._live)
        self._live.clear()
        if count:
            logger.debug(f"[preview] Released {count} handle(s) on teardown")
        return count
