"""Tests for the bounded-concurrency queue controller."""
from dataclasses import FrozenInstanceError

import pytest

from gallery_uploader.errors import ErrorKind
from gallery_uploader.models import UploadConfig, UploadItem, UploadOutcome, UploadStatus
from gallery_uploader.orchestrator.queue import QueueController

from conftest import ControlledTransport, make_descriptor, make_items, settle


def _build_controller(transport, max_concurrent=3, items=None):
    controller = QueueController(transport, UploadConfig(max_concurrent=max_concurrent))
    transport.controller = controller
    if items is not None:
        controller.add(items)
    return controller


def _statuses(controller):
    return [item.status for item in controller.items()]


class TestStart:
    @pytest.mark.asyncio
    async def test_start_fills_concurrency_window(self, transport):
        controller = _build_controller(transport, max_concurrent=3, items=make_items(10))

        assert controller.start() is True

        statuses = _statuses(controller)
        assert statuses.count(UploadStatus.UPLOADING) == 3
        assert statuses.count(UploadStatus.PENDING) == 7
        assert controller.active_count == 3
        assert controller.is_active is True
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_dispatch_is_fifo(self, transport):
        items = make_items(5)
        controller = _build_controller(transport, max_concurrent=2, items=items)

        controller.start()
        await settle()

        assert transport.calls == ["photo0.jpg", "photo1.jpg"]
        transport.succeed("photo1.jpg")
        await settle()
        assert transport.calls == ["photo0.jpg", "photo1.jpg", "photo2.jpg"]
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_start_is_noop_when_active(self, transport):
        controller = _build_controller(transport, items=make_items(5))

        assert controller.start() is True
        assert controller.start() is False
        assert controller.active_count == 3
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_start_with_nothing_to_upload_emits_empty(self, transport):
        controller = _build_controller(transport, items=[])
        messages = []
        controller.events.on("empty", messages.append)

        assert controller.start() is False

        assert messages == ["Nothing to upload"]
        assert controller.is_active is False
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_start_skips_validation_rejections(self, auto_transport):
        rejected = UploadItem.rejected(make_descriptor("huge.jpg"), "File too large (max. 10MB)")
        controller = _build_controller(auto_transport, items=make_items(2) + [rejected])

        controller.start()
        snapshot = await controller.wait()

        assert "huge.jpg" not in auto_transport.calls
        assert snapshot.get(rejected.id).status == UploadStatus.FAILED
        assert snapshot.get(rejected.id).retry_count == 0

    @pytest.mark.asyncio
    async def test_start_requeues_failed_items(self, transport):
        items = make_items(1)
        controller = _build_controller(transport, items=items)
        controller.start()
        await settle()
        transport.fail("photo0.jpg")
        await settle()
        assert items[0].status == UploadStatus.FAILED

        assert controller.start() is True

        assert items[0].status == UploadStatus.UPLOADING
        assert items[0].retry_count == 1
        await controller.aclose()


class TestDrain:
    @pytest.mark.asyncio
    async def test_natural_drain_finalizes_and_notifies(self, auto_transport):
        controller = _build_controller(auto_transport, max_concurrent=3, items=make_items(10))
        finished = []
        refreshed = []
        controller.events.on("finish", finished.append)
        controller.events.on("refresh", lambda: refreshed.append(True))

        controller.start()
        snapshot = await controller.wait()

        assert snapshot.is_active is False
        assert snapshot.summary.completed_count == 10
        assert snapshot.summary.overall_progress == 100
        assert all(item.progress == 100 for item in snapshot.items)
        assert len(finished) == 1
        assert refreshed == [True]
        assert max(auto_transport.observed_active) <= 3

    @pytest.mark.asyncio
    async def test_active_count_never_exceeds_limit(self, auto_transport):
        controller = _build_controller(auto_transport, max_concurrent=2, items=make_items(25))
        observed = []
        controller.events.on("change", lambda snapshot: observed.append(controller.active_count))

        controller.start()
        await controller.wait()

        assert len(auto_transport.calls) == 25
        assert max(observed) <= 2
        assert max(auto_transport.observed_active) <= 2
        assert controller.active_count == 0

    @pytest.mark.asyncio
    async def test_failure_is_scoped_to_item(self, transport):
        controller = _build_controller(transport, max_concurrent=3, items=make_items(3))
        controller.start()
        await settle()

        transport.fail("photo1.jpg", "Server exploded")
        transport.succeed("photo0.jpg")
        transport.succeed("photo2.jpg")
        snapshot = await controller.wait()

        failed = snapshot.by_status(UploadStatus.FAILED)
        assert [item.filename for item in failed] == ["photo1.jpg"]
        assert failed[0].error == "Server exploded"
        assert failed[0].error_kind == ErrorKind.SERVER
        assert failed[0].retry_count == 0
        assert snapshot.summary.completed_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_transport_exception_fails_item(self, transport):
        controller = _build_controller(transport, items=make_items(1))
        controller.start()
        await settle()

        transport.explode("photo0.jpg", OSError("disk vanished"))
        snapshot = await controller.wait()

        item = snapshot.items[0]
        assert item.status == UploadStatus.FAILED
        assert item.error == "disk vanished"

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(self, transport):
        items = make_items(1)
        controller = _build_controller(transport, items=items)
        controller.start()
        await settle()

        transport.progress("photo0.jpg", 40)
        transport.progress("photo0.jpg", 25)
        assert items[0].progress == 40

        transport.succeed("photo0.jpg")
        await controller.wait()
        assert items[0].progress == 100

    @pytest.mark.asyncio
    async def test_upload_metadata(self, transport):
        controller = _build_controller(transport, items=make_items(1))
        controller.start()
        await settle()

        metadata = transport.metadata[0]
        assert metadata["category"] == "general"
        assert metadata["originalName"] == "photo0.jpg"
        assert "uploadTimestamp" in metadata
        await controller.aclose()


class TestPauseResume:
    @pytest.mark.asyncio
    async def test_pause_keeps_batch_active(self, transport):
        controller = _build_controller(transport, max_concurrent=3, items=make_items(5))
        controller.start()
        await settle()

        assert controller.pause() is True
        await settle()

        snapshot = controller.snapshot()
        assert snapshot.is_active is True
        assert snapshot.is_paused is True
        assert sorted(transport.cancelled) == ["photo0.jpg", "photo1.jpg", "photo2.jpg"]
        assert controller.active_count == 0
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_pause_moves_in_flight_items_to_paused(self, transport):
        items = make_items(5)
        controller = _build_controller(transport, max_concurrent=3, items=items)
        controller.start()
        await settle()
        transport.progress("photo0.jpg", 60)
        transport.succeed("photo1.jpg")
        await settle()
        before = controller.snapshot().summary

        controller.pause()
        await settle()

        after = controller.snapshot().summary
        paused = [item for item in items if item.status == UploadStatus.PAUSED]
        assert [item.payload.name for item in paused] == ["photo0.jpg", "photo2.jpg", "photo3.jpg"]
        assert all(item.progress == 0 and item.error is None for item in paused)
        assert after.completed_count == before.completed_count
        assert after.failed_count == before.failed_count
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_resume_requeues_exactly_paused_items(self, transport):
        items = make_items(5)
        controller = _build_controller(transport, max_concurrent=3, items=items)
        controller.start()
        await settle()
        controller.pause()
        await settle()

        assert controller.resume() is True

        assert controller.is_active is True
        assert controller.is_paused is False
        statuses = _statuses(controller)
        assert statuses.count(UploadStatus.PAUSED) == 0
        assert statuses.count(UploadStatus.UPLOADING) == 3
        assert statuses.count(UploadStatus.PENDING) == 2
        pending = controller.pending_ids
        assert len(pending) == len(set(pending)) == 2
        # Never-dispatched items go first, resumed ones follow in display order
        assert [item.payload.name for item in items if item.status == UploadStatus.UPLOADING] == [
            "photo0.jpg",
            "photo3.jpg",
            "photo4.jpg",
        ]
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_resume_requires_pause(self, transport):
        controller = _build_controller(transport, items=make_items(2))
        assert controller.resume() is False
        controller.start()
        assert controller.resume() is False
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_pause_requires_active_batch(self, transport):
        controller = _build_controller(transport, items=make_items(2))
        assert controller.pause() is False

    @pytest.mark.asyncio
    async def test_paused_batch_completes_after_resume(self, auto_transport):
        controller = _build_controller(auto_transport, max_concurrent=2, items=make_items(6))
        finished = []
        controller.events.on("finish", finished.append)

        controller.start()
        controller.pause()
        await settle()
        assert finished == []

        controller.resume()
        snapshot = await controller.wait()

        assert snapshot.summary.completed_count == 6
        assert len(finished) == 1


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_leaves_pending_items_untouched(self, transport):
        items = make_items(5)
        controller = _build_controller(transport, max_concurrent=2, items=items)
        finished = []
        controller.events.on("finish", finished.append)
        controller.start()
        await settle()

        assert controller.stop() is True

        assert controller.is_active is False
        assert controller.is_paused is False
        assert [item.status for item in items] == [
            UploadStatus.PAUSED,
            UploadStatus.PAUSED,
            UploadStatus.PENDING,
            UploadStatus.PENDING,
            UploadStatus.PENDING,
        ]
        snapshot = await controller.wait()
        assert snapshot.summary.completed_count == 0
        assert snapshot.summary.failed_count == 0
        assert finished == []

    @pytest.mark.asyncio
    async def test_no_item_uploading_after_stop(self, transport):
        controller = _build_controller(transport, max_concurrent=3, items=make_items(4))
        controller.start()

        controller.stop()

        assert controller.snapshot().summary.currently_uploading_ids == ()
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_stop_clears_pause(self, transport):
        controller = _build_controller(transport, items=make_items(4))
        controller.start()
        controller.pause()

        assert controller.stop() is True
        assert controller.is_paused is False
        assert controller.resume() is False
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_start_after_stop_continues_remaining(self, transport):
        items = make_items(4)
        controller = _build_controller(transport, max_concurrent=2, items=items)
        controller.start()
        await settle()
        transport.succeed("photo0.jpg")
        await settle()
        controller.stop()
        await settle()

        assert controller.start() is True

        assert items[0].status == UploadStatus.COMPLETED
        assert controller.active_count == 2
        assert sum(item.status == UploadStatus.UPLOADING for item in items) == 2
        await controller.aclose()


class TestRetry:
    @pytest.mark.asyncio
    async def test_retry_one_while_inactive_does_not_upload(self, transport):
        items = make_items(1)
        controller = _build_controller(transport, items=items)
        controller.start()
        await settle()
        transport.fail("photo0.jpg")
        await controller.wait()
        calls_before = len(transport.calls)

        assert controller.retry_one(items[0].id) is True
        await settle()

        assert items[0].status == UploadStatus.PENDING
        assert items[0].retry_count == 1
        assert items[0].error is None
        assert items[0].progress == 0
        assert len(transport.calls) == calls_before

        controller.start()
        assert items[0].status == UploadStatus.UPLOADING
        assert items[0].retry_count == 1
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_retry_one_rejects_non_failed(self, transport):
        items = make_items(1)
        controller = _build_controller(transport, items=items)

        assert controller.retry_one(items[0].id) is False
        assert controller.retry_one("missing") is False

    @pytest.mark.asyncio
    async def test_retry_one_ignores_validation_rejection(self, transport):
        rejected = UploadItem.rejected(make_descriptor("notes.txt", mime_type="text/plain"), "Only image files are allowed")
        controller = _build_controller(transport, items=[rejected])

        assert controller.retry_one(rejected.id) is False
        assert rejected.status == UploadStatus.FAILED

    @pytest.mark.asyncio
    async def test_retry_failed_while_active(self, transport):
        items = make_items(3)
        controller = _build_controller(transport, max_concurrent=2, items=items)
        controller.start()
        await settle()
        transport.fail("photo0.jpg")
        await settle()
        assert items[0].status == UploadStatus.FAILED

        assert controller.retry_failed() == 1
        await settle()

        # Slot freed by the failure went to photo2; the retried item waits in FIFO
        assert items[0].status == UploadStatus.PENDING
        assert controller.pending_ids == [items[0].id]
        transport.succeed("photo1.jpg")
        await settle()
        assert items[0].status == UploadStatus.UPLOADING
        transport.succeed("photo0.jpg")
        transport.succeed("photo2.jpg")
        snapshot = await controller.wait()
        assert snapshot.summary.completed_count == 3


class TestRemove:
    @pytest.mark.asyncio
    async def test_remove_pending_item(self, transport):
        items = make_items(4)
        controller = _build_controller(transport, max_concurrent=1, items=items)
        controller.start()

        removed = controller.remove(items[2].id)

        assert removed is items[2]
        assert items[2].id not in controller.pending_ids
        assert controller.get(items[2].id) is None
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_remove_in_flight_item_frees_slot(self, transport):
        items = make_items(2)
        controller = _build_controller(transport, max_concurrent=1, items=items)
        controller.start()
        await settle()

        controller.remove(items[0].id)
        await settle()

        assert transport.cancelled == ["photo0.jpg"]
        assert items[1].status == UploadStatus.UPLOADING
        assert controller.active_count == 1
        await controller.aclose()

    @pytest.mark.asyncio
    async def test_duplicate_ids_rejected(self, transport):
        items = make_items(1)
        controller = _build_controller(transport, items=items)

        with pytest.raises(ValueError):
            controller.add(items)


@pytest.mark.asyncio
async def test_snapshot_is_immutable(transport):
    controller = _build_controller(transport, items=make_items(1))
    snapshot = controller.snapshot()

    with pytest.raises(FrozenInstanceError):
        snapshot.is_active = True
    with pytest.raises(FrozenInstanceError):
        snapshot.items[0].status = UploadStatus.COMPLETED


@pytest.mark.asyncio
async def test_outcome_for_cancelled_attempt_is_ignored():
    transport = ControlledTransport(auto=UploadOutcome.success({"ok": True}))
    items = make_items(1)
    controller = _build_controller(transport, items=items)

    controller.start()
    controller.pause()
    await settle()

    assert items[0].status == UploadStatus.PAUSED
    assert controller.active_count == 0
    await controller.aclose()
