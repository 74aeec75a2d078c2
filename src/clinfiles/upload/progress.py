"""Rich progress display for a batch upload.

Shows one bar for the batch and a status column with the file and phase
that most recently changed.  Events arrive in completion order.
"""

from __future__ import annotations

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from clinfiles.models import UploadPhase

_PHASE_LABELS: dict[UploadPhase, str] = {
    UploadPhase.REQUEST_SLOT: "requesting slot",
    UploadPhase.TRANSFER: "uploading",
    UploadPhase.CONFIRM_REGISTRATION: "confirming",
}


class UploadProgressTracker:
    """Rich progress tracker for one batch commit.

    Usage::

        with UploadProgressTracker(total_files=3) as tracker:
            tracker.file_started("temp_1", "pano.png")
            tracker.phase_changed("temp_1", "pano.png", UploadPhase.TRANSFER)
            tracker.file_succeeded("temp_1", "pano.png")
    """

    def __init__(self, total_files: int) -> None:
        self._total_files = total_files
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
        )
        self._task: TaskID | None = None
        self._stats: dict[str, int] = {
            "succeeded": 0,
            "failed": 0,
            "cancelled": 0,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._progress.start()
        self._task = self._progress.add_task(
            "[green]Uploading", total=self._total_files, status="starting..."
        )

    def stop(self) -> None:
        self._progress.stop()

    def __enter__(self) -> UploadProgressTracker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # File-level events
    # ------------------------------------------------------------------

    def file_started(self, temp_id: str, filename: str) -> None:
        self._set_status(_truncate(filename))

    def phase_changed(self, temp_id: str, filename: str, phase: UploadPhase) -> None:
        self._set_status(f"{_truncate(filename)} ({_PHASE_LABELS[phase]})")

    def file_succeeded(self, temp_id: str, filename: str) -> None:
        self._stats["succeeded"] += 1
        self._finish(f"[green]OK[/green] {_truncate(filename)}")

    def file_failed(
        self, temp_id: str, filename: str, phase: UploadPhase, reason: str
    ) -> None:
        self._stats["failed"] += 1
        self._finish(f"[red]FAIL[/red] {_truncate(filename)} ({_PHASE_LABELS[phase]})")

    def file_cancelled(self, temp_id: str, filename: str) -> None:
        self._stats["cancelled"] += 1
        self._finish(f"[yellow]CANCELLED[/yellow] {_truncate(filename)}")

    @property
    def stats(self) -> dict[str, int]:
        """Return a copy of the current counts."""
        return dict(self._stats)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _set_status(self, status: str) -> None:
        if self._task is not None:
            self._progress.update(self._task, status=status)

    def _finish(self, status: str) -> None:
        if self._task is not None:
            self._progress.advance(self._task, 1)
            self._progress.update(self._task, status=status)


def _truncate(filename: str, max_len: int = 40) -> str:
    """Shorten a filename for display, keeping its end (and extension)."""
    if len(filename) <= max_len:
        return filename
    return "..." + filename[-(max_len - 3) :]
