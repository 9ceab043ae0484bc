"""Batch summary derivation."""
from typing import Iterable, Union

from ..models import BatchSummary, ItemSnapshot, UploadItem, UploadStatus


def summarize(items: Iterable[Union[UploadItem, ItemSnapshot]]) -> BatchSummary:
    """
    Derive counts and overall progress from the current items.

    overall_progress = mean(100 if completed else progress), rounded half up.
    Pure function: no side effects, independent of completion order.
    """
    total = 0
    progress_sum = 0
    counts = {status: 0 for status in UploadStatus}
    uploading = []

    for item in items:
        total += 1
        counts[item.status] += 1
        if item.status == UploadStatus.COMPLETED:
            progress_sum += 100
        else:
            progress_sum += item.progress or 0
        if item.status == UploadStatus.UPLOADING:
            uploading.append(item.id)

    return BatchSummary(
        total=total,
        completed_count=counts[UploadStatus.COMPLETED],
        failed_count=counts[UploadStatus.FAILED],
        paused_count=counts[UploadStatus.PAUSED],
        pending_count=counts[UploadStatus.PENDING],
        currently_uploading_ids=tuple(uploading),
        overall_progress=int(progress_sum / total + 0.5) if total else 0,
    )
