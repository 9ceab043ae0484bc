"""
Queue controller - bounded-concurrency upload queue.

Runs on a single asyncio event loop. The control state (flags, pending FIFO,
in-flight counter) is only touched from the synchronous control points below:
dispatch, per-item completion, start/pause/resume/stop/retry/remove. The only
suspension point is inside the transport call, so no lock is needed.
"""
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, List, Optional, Set
import asyncio
import logging

from ..errors import ErrorKind
from ..models import (
    BatchSnapshot,
    UploadConfig,
    UploadItem,
    UploadOutcome,
    UploadStatus,
)
from ..protocols import IUploadTransport
from ..utils.events import EventEmitter
from .aggregator import summarize

logger = logging.getLogger(__name__)


@dataclass
class ControlState:
    """Mutable control block, kept apart from published snapshots."""
    is_active: bool = False
    is_paused: bool = False
    should_stop: bool = False
    pending: Deque[str] = field(default_factory=deque)
    active_count: int = 0


@dataclass(eq=False)
class _Attempt:
    """One dispatch of one item, with its own cancellation token."""
    item_id: str
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None


class QueueController:
    """
    Owns the batch items and drives their uploads.

    Usage:
        controller = QueueController(transport, UploadConfig(max_concurrent=3))
        controller.add(items)
        controller.start()
        controller.pause()
        controller.resume()
        snapshot = await controller.wait()
    """

    def __init__(
        self,
        transport: IUploadTransport,
        config: Optional[UploadConfig] = None,
        events: Optional[EventEmitter] = None,
    ):
        self._transport = transport
        self._config = config or UploadConfig()
        self._events = events or EventEmitter()
        self._state = ControlState()
        self._items: Dict[str, UploadItem] = {}
        self._attempts: Dict[str, _Attempt] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()
        self.label: Optional[str] = None

    # State properties
    @property
    def events(self) -> EventEmitter:
        return self._events

    @property
    def max_concurrent(self) -> int:
        return self._config.max_concurrent

    @property
    def is_active(self) -> bool:
        return self._state.is_active

    @property
    def is_paused(self) -> bool:
        return self._state.is_paused

    @property
    def active_count(self) -> int:
        return self._state.active_count

    @property
    def pending_ids(self) -> List[str]:
        return list(self._state.pending)

    def items(self) -> List[UploadItem]:
        return list(self._items.values())

    def get(self, item_id: str) -> Optional[UploadItem]:
        return self._items.get(item_id)

    def snapshot(self) -> BatchSnapshot:
        items = self._items.values()
        return BatchSnapshot(
            items=tuple(item.snapshot() for item in items),
            is_active=self._state.is_active,
            is_paused=self._state.is_paused,
            summary=summarize(items),
            label=self.label,
        )

    # Item store
    def add(self, items: Iterable[UploadItem]) -> None:
        """Append items in display order. IDs must be unique within the batch."""
        items = list(items)
        for item in items:
            if item.id in self._items:
                raise ValueError(f"Duplicate item id: {item.id}")
        for item in items:
            self._items[item.id] = item
        self._publish()

    def remove(self, item_id: str) -> Optional[UploadItem]:
        """
        Drop an item from the batch and the pending queue.

        An in-flight upload of the item is cancelled; its outcome is ignored.
        Preview release is the caller's concern.
        """
        item = self._items.pop(item_id, None)
        if item is None:
            return None

        try:
            self._state.pending.remove(item_id)
        except ValueError:
            pass

        attempt = self._attempts.pop(item_id, None)
        if attempt is not None:
            attempt.cancel_event.set()

        logger.debug(f"[queue] Removed {item.payload.name}")
        self._publish()
        return item

    def clear(self) -> List[UploadItem]:
        """Stop the batch and drop every item."""
        self.stop()
        removed = list(self._items.values())
        self._items.clear()
        self._state.pending.clear()
        self._publish()
        return removed

    # Control methods
    def start(self) -> bool:
        """
        Start uploading every Pending, retryable Failed and Paused item.

        Returns False if the batch is already active or there is nothing
        to upload.
        """
        if self._state.is_active:
            logger.debug("[queue] start() ignored: batch already active")
            return False

        seeds: List[UploadItem] = []
        for item in self._items.values():
            if item.status == UploadStatus.PENDING:
                seeds.append(item)
            elif item.status == UploadStatus.PAUSED or item.is_retryable:
                item.requeue()
                seeds.append(item)

        if not seeds:
            logger.info("[queue] Nothing to upload")
            self._events.emit_nowait("empty", "Nothing to upload")
            return False

        # Tasks cancelled by an earlier stop() may still be unwinding.
        self._state = ControlState(
            is_active=True,
            pending=deque(item.id for item in seeds),
            active_count=self._state.active_count,
        )
        self._idle.clear()
        logger.info(
            f"[queue] Starting batch: {len(seeds)} file(s), max {self.max_concurrent} parallel"
        )
        self._events.emit_nowait("start", len(seeds))
        self._publish()
        self._process_next()
        return True

    def pause(self) -> bool:
        """Suspend the batch; in-flight uploads are cancelled and become Paused."""
        if not self._state.is_active or self._state.is_paused:
            return False

        self._state.is_paused = True
        cancelled = self._cancel_in_flight()
        logger.info(f"[queue] Paused ({cancelled} upload(s) cancelled)")
        self._events.emit_nowait("pause")
        self._publish()
        return True

    def resume(self) -> bool:
        """Requeue every Paused item and continue the batch."""
        if not self._state.is_paused:
            return False

        resumed = 0
        for item in self._items.values():
            if item.status == UploadStatus.PAUSED:
                item.requeue()
                self._enqueue(item.id)
                resumed += 1

        self._state.is_paused = False
        self._state.is_active = True
        self._state.should_stop = False
        self._idle.clear()
        logger.info(f"[queue] Resumed ({resumed} file(s) requeued)")
        self._events.emit_nowait("resume", resumed)
        self._publish()
        self._process_next()
        return True

    def stop(self) -> bool:
        """
        Stop the batch immediately.

        In-flight uploads are cancelled and become Paused; Pending items stay
        Pending. Nothing is force-completed or force-failed.
        """
        if not self._state.is_active and not self._state.is_paused:
            return False

        self._state.should_stop = True
        self._state.is_active = False
        self._state.is_paused = False
        cancelled = self._cancel_in_flight()
        logger.info(f"[queue] Stopped ({cancelled} upload(s) cancelled)")
        self._events.emit_nowait("stop")
        self._publish()
        self._check_idle()
        return True

    def retry_one(self, item_id: str) -> bool:
        """Move one Failed item back to Pending. Does not start an inactive batch."""
        item = self._items.get(item_id)
        if item is None or not item.is_retryable:
            return False

        item.requeue()
        self._enqueue(item.id)
        logger.info(f"[queue] Retry queued: {item.payload.name} (attempt {item.retry_count + 1})")
        self._publish()
        self._kick()
        return True

    def retry_failed(self) -> int:
        """Move every retryable Failed item back to Pending."""
        count = 0
        for item in self._items.values():
            if item.is_retryable:
                item.requeue()
                self._enqueue(item.id)
                count += 1

        if count:
            logger.info(f"[queue] Retry queued for {count} failed file(s)")
            self._publish()
            self._kick()
        return count

    async def wait(self) -> BatchSnapshot:
        """Wait until the batch is no longer running and nothing is in flight."""
        await self._idle.wait()
        await self._events.drain()
        return self.snapshot()

    async def aclose(self) -> None:
        """Stop the batch and wait for in-flight tasks to unwind."""
        self.stop()
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._events.drain()

    # Dispatch loop
    def _process_next(self) -> None:
        state = self._state

        # Paused batches stay active so resume() can continue them.
        if state.is_paused:
            return

        if state.should_stop or not state.pending:
            if state.active_count == 0:
                self._finalize()
            return

        dispatched = 0
        while state.active_count < self.max_concurrent and state.pending:
            item = self._items.get(state.pending.popleft())
            if item is None or item.status != UploadStatus.PENDING:
                continue
            self._dispatch(item)
            dispatched += 1

        if dispatched:
            self._publish()

        if not state.pending and state.active_count == 0:
            self._finalize()

    def _dispatch(self, item: UploadItem) -> None:
        self._state.active_count += 1
        item.mark_uploading()

        attempt = _Attempt(item.id)
        self._attempts[item.id] = attempt
        attempt.task = asyncio.create_task(self._run(item, attempt))
        self._tasks.add(attempt.task)
        attempt.task.add_done_callback(self._tasks.discard)

        logger.info(
            f"[queue] Uploading {item.payload.name} "
            f"({self._state.active_count}/{self.max_concurrent} slots)"
        )
        self._events.emit_nowait("item_start", item.snapshot())

    async def _run(self, item: UploadItem, attempt: _Attempt) -> None:
        outcome: Optional[UploadOutcome] = None
        metadata = {
            "category": item.category,
            "originalName": item.payload.name,
            "uploadTimestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            outcome = await self._transport.upload(
                item.payload,
                metadata,
                lambda percent: self._on_progress(item, attempt, percent),
                attempt.cancel_event,
            )
        except Exception as e:
            logger.error(f"[queue] Unexpected error uploading {item.payload.name}: {e}", exc_info=True)
            outcome = UploadOutcome.fail(str(e) or type(e).__name__, ErrorKind.NETWORK)
        finally:
            self._state.active_count -= 1
            is_current = self._attempts.get(item.id) is attempt
            if is_current:
                del self._attempts[item.id]
            if outcome is not None and is_current:
                self._apply_outcome(item, outcome)
            self._process_next()
            self._check_idle()

    def _apply_outcome(self, item: UploadItem, outcome: UploadOutcome) -> None:
        if item.status != UploadStatus.UPLOADING:
            return

        if outcome.cancelled:
            item.mark_paused()
        elif outcome.ok:
            item.mark_completed()
            logger.info(f"[queue] ✓ {item.payload.name}")
            self._events.emit_nowait("item_complete", item.snapshot())
        else:
            item.mark_failed(outcome.error, outcome.error_kind or ErrorKind.NETWORK)
            logger.warning(f"[queue] ✗ {item.payload.name}: {item.error}")
            self._events.emit_nowait("item_fail", item.snapshot())
        self._publish()

    def _on_progress(self, item: UploadItem, attempt: _Attempt, percent: int) -> None:
        if self._attempts.get(item.id) is not attempt:
            return
        if item.update_progress(percent):
            self._events.emit_nowait("item_progress", item.snapshot())
            self._publish()

    def _cancel_in_flight(self) -> int:
        attempts = list(self._attempts.values())
        self._attempts.clear()
        for attempt in attempts:
            attempt.cancel_event.set()
            item = self._items.get(attempt.item_id)
            if item is not None and item.status == UploadStatus.UPLOADING:
                item.mark_paused()
        return len(attempts)

    def _enqueue(self, item_id: str) -> None:
        if item_id not in self._state.pending:
            self._state.pending.append(item_id)

    def _kick(self) -> None:
        if self._state.is_active and not self._state.is_paused:
            self._process_next()

    def _finalize(self) -> None:
        if not self._state.is_active:
            return

        self._state.is_active = False
        snapshot = self.snapshot()
        summary = snapshot.summary
        logger.info(
            f"[queue] Batch finished: {summary.completed_count} uploaded, "
            f"{summary.failed_count} failed"
        )
        self._events.emit_nowait("change", snapshot)
        self._events.emit_nowait("finish", snapshot)
        self._events.emit_nowait("refresh")
        self._check_idle()

    def _check_idle(self) -> None:
        if not self._state.is_active and self._state.active_count == 0:
            self._idle.set()

    def _publish(self) -> None:
        if self._events.has_listeners("change"):
            self._events.emit_nowait("change", self.snapshot())
