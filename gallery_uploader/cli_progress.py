"""Console rendering and progress helpers for gallery uploader CLI."""
from __future__ import annotations

from typing import Any, Dict, Optional
import time

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from .models import BatchSnapshot, ItemSnapshot
from .protocols import IBatchRenderer


console = Console()


def _echo(message: str) -> None:
    console.print(message)


def _human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]gallery-upload[/bold green]",
        subtitle="[dim]batch uploader[/dim]",
        border_style="blue",
    )
    console.print(panel)


class BatchProgressDisplay(IBatchRenderer):
    """Event-based console display for a batch upload."""

    def __init__(self, live: bool = True):
        self._use_live = live
        self._active_tasks: Dict[str, TaskID] = {}
        self._overall_task_id: Optional[TaskID] = None
        self._live: Optional[Live] = None
        self._meta_progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=28),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[dim]{task.fields[detail]}", justify="left"),
            expand=False,
            console=console,
        )
        self._file_progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold green]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            expand=False,
            console=console,
        )

    def _emit_timeline(
        self,
        status: str,
        name: str,
        size_bytes: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        stamp = time.strftime("%H:%M:%S")
        size_label = f" {_human_size(size_bytes)}" if size_bytes and size_bytes > 0 else ""
        error_label = f" cause={error}" if error else ""
        palette = {
            "DONE": "green",
            "FAIL": "red",
            "SKIP": "yellow",
            "INFO": "blue",
        }
        color = palette.get(status, "white")
        _echo(
            f"[dim]{stamp}[/dim] [{color}]{status:<4}[/{color}] "
            f"file: {name}{size_label}{error_label}"
        )

    def _start_live(self) -> None:
        if not self._use_live or self._live is not None:
            return

        self._live = Live(
            Group(self._meta_progress, self._file_progress),
            console=console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        self._overall_task_id = self._meta_progress.add_task(
            "overall",
            label="Overall",
            total=100,
            completed=0,
            detail="uploaded=0 failed=0",
        )

    def _stop_live(self) -> None:
        if self._live is None:
            return
        self._live.stop()
        self._live = None

    def render(self, snapshot: BatchSnapshot) -> None:
        if self._overall_task_id is None:
            return
        summary = snapshot.summary
        state = "paused" if snapshot.is_paused else "running" if snapshot.is_active else "idle"
        self._meta_progress.update(
            self._overall_task_id,
            label=snapshot.label or "Overall",
            completed=summary.overall_progress,
            detail=(
                f"{state} uploaded={summary.completed_count} failed={summary.failed_count} "
                f"pending={summary.pending_count}"
            ),
        )

    def on_prepared(self, items: list) -> None:
        for item in items:
            if item.error:
                self._emit_timeline("SKIP", item.filename, item.size, error=item.error)

    def on_item_start(self, item: ItemSnapshot) -> None:
        self._start_live()
        if not self._use_live:
            _echo(f"[cyan]Starting:[/cyan] {item.filename}")
            return
        old_task = self._active_tasks.pop(item.id, None)
        if old_task is not None:
            self._file_progress.remove_task(old_task)
        self._active_tasks[item.id] = self._file_progress.add_task(
            "upload",
            label=item.filename[:60],
            total=max(item.size, 1),
        )

    def on_item_progress(self, item: ItemSnapshot) -> None:
        task_id = self._active_tasks.get(item.id)
        if task_id is None:
            return
        self._file_progress.update(task_id, completed=item.size * item.progress // 100)

    def _drop_task(self, item: ItemSnapshot) -> None:
        task_id = self._active_tasks.pop(item.id, None)
        if task_id is not None:
            self._file_progress.remove_task(task_id)

    def on_item_complete(self, item: ItemSnapshot) -> None:
        self._drop_task(item)
        self._emit_timeline("DONE", item.filename, size_bytes=item.size)

    def on_item_fail(self, item: ItemSnapshot) -> None:
        self._drop_task(item)
        self._emit_timeline("FAIL", item.filename, size_bytes=item.size, error=item.error)

    def on_empty(self, message: str) -> None:
        _echo(f"[yellow]{message}[/yellow]")

    def finish(self, snapshot: BatchSnapshot) -> None:
        self._stop_live()
        for task_id in self._active_tasks.values():
            self._file_progress.remove_task(task_id)
        self._active_tasks.clear()
        summary = snapshot.summary
        _echo(
            f"[bold]Finished[/bold] uploaded={summary.completed_count} "
            f"total={summary.total} failed={summary.failed_count} "
            f"paused={summary.paused_count} pending={summary.pending_count}"
        )
