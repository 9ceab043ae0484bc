"""
Shared test fixtures and utilities.
"""
import asyncio
from typing import Callable, Dict, List, Optional

import pytest

from gallery_uploader.errors import ErrorKind
from gallery_uploader.models import FileDescriptor, UploadItem, UploadOutcome


class ControlledTransport:
    """
    Fake transport whose calls stay in flight until the test resolves them.

    With `auto` set, every call resolves on the next loop iteration instead.
    """

    def __init__(self, auto: Optional[UploadOutcome] = None):
        self.auto = auto
        self.calls: List[str] = []
        self.metadata: List[Dict[str, str]] = []
        self.cancelled: List[str] = []
        self.observed_active: List[int] = []
        self.controller = None
        self._futures: Dict[str, asyncio.Future] = {}
        self._progress: Dict[str, Callable[[int], None]] = {}

    async def upload(self, payload, metadata, on_progress, cancel_event):
        self.calls.append(payload.name)
        self.metadata.append(metadata)
        if self.controller is not None:
            self.observed_active.append(self.controller.active_count)

        if self.auto is not None:
            await asyncio.sleep(0)
            on_progress(50)
            return self.auto

        future = asyncio.get_running_loop().create_future()
        self._futures[payload.name] = future
        self._progress[payload.name] = on_progress
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({future, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if future in done:
            return future.result()
        self.cancelled.append(payload.name)
        return UploadOutcome.cancel()

    def progress(self, name: str, percent: int) -> None:
        self._progress[name](percent)

    def succeed(self, name: str) -> None:
        self._futures[name].set_result(UploadOutcome.success({"id": name}))

    def fail(self, name: str, message: str = "HTTP 500: Internal Server Error") -> None:
        self._futures[name].set_result(UploadOutcome.fail(message, ErrorKind.SERVER))

    def explode(self, name: str, exc: Exception) -> None:
        self._futures[name].set_exception(exc)


async def settle(rounds: int = 20) -> None:
    """Let pending tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_descriptor(name: str, size: int = 1024, mime_type: str = "image/jpeg") -> FileDescriptor:
    return FileDescriptor.from_bytes(name, b"x" * size, mime_type)


def make_items(count: int, prefix: str = "photo") -> List[UploadItem]:
    return [UploadItem(payload=make_descriptor(f"{prefix}{i}.jpg")) for i in range(count)]


@pytest.fixture
def transport():
    return ControlledTransport()


@pytest.fixture
def auto_transport():
    return ControlledTransport(auto=UploadOutcome.success({"ok": True}))
