"""Console rendering and progress helpers for postpay CLI."""
from __future__ import annotations

import time
from typing import Any, Dict, Optional, Sequence

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
)
from rich.table import Table

from .models import CheckoutOutcome, PollAttempt, StagedFile, UploadProgress

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
        title="[bold green]postpay[/bold green]",
        subtitle="[dim]checkout staging CLI[/dim]",
        border_style="blue",
    )
    console.print(panel)


def render_staged_files(files: Sequence[StagedFile], missing_ids: Sequence[str]) -> None:
    """Render the current manifest as a table."""
    if not files and not missing_ids:
        _echo("[dim]Nothing staged.[/dim]")
        return

    table = Table(title="Staged files")
    table.add_column("Id", style="cyan")
    table.add_column("Content type")
    table.add_column("Encoded size", justify="right")
    table.add_column("State")
    for staged in files:
        table.add_row(
            staged.id,
            staged.content_type,
            _human_size(len(staged.encoded_payload)),
            "[green]ok[/green]",
        )
    for file_id in missing_ids:
        table.add_row(file_id, "-", "-", "[red]missing payload[/red]")
    console.print(table)


class ResumeProgressDisplay:
    """Event-based console display for the post-payment flow."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            expand=False,
            console=console,
        )
        self._live: Optional[Live] = None
        self._task_id: Optional[TaskID] = None

    def start(self) -> None:
        _echo(f"[cyan]Looking up order for session[/cyan] {self.session_id}")

    def on_poll_wait(self, attempt: PollAttempt) -> None:
        stamp = time.strftime("%H:%M:%S")
        _echo(
            f"[dim]{stamp}[/dim] [yellow]WAIT[/yellow] order not ready "
            f"(attempt {attempt.attempt}, {attempt.remaining} left), "
            f"retrying in {attempt.delay:.1f}s"
        )

    def on_upload_progress(self, progress: UploadProgress) -> None:
        if self._live is None:
            self._live = Live(self._progress, console=console, refresh_per_second=8)
            self._live.start()
            self._task_id = self._progress.add_task(
                "upload", label="Uploading", total=max(progress.bytes_total, 1)
            )
        if self._task_id is not None:
            self._progress.update(
                self._task_id,
                completed=progress.bytes_done,
                label=f"Uploading {progress.files_done}/{progress.files_total}",
            )

    def on_outcome(self, outcome: CheckoutOutcome) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None

        if outcome.success:
            order_id = outcome.order.id if outcome.order else "?"
            _echo(f"[green]Uploaded:[/green] files for order {order_id}")
            return

        _echo(f"[red]Failed ({outcome.error_kind}):[/red] {outcome.user_message}")
        if outcome.fallback:
            _echo(f"[dim]Continue at {outcome.fallback}[/dim]")
