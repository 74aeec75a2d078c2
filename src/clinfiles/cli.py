"""CLI entry point for clinical file attachments.

Provides commands:
  - upload: Stage files for a patient and commit them in one batch
  - list: Show the files registered for a patient (optionally one encounter)
  - delete: Remove a registered file
  - config: Manage the backend API token in the system keyring
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import keyring
import typer
from keyring.errors import KeyringError, PasswordDeleteError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from clinfiles.config import (
    KEY_NAME,
    SERVICE_NAME,
    TOKEN_ENV_VAR,
    load_upload_config,
    resolve_api_token,
)
from clinfiles.exceptions import InvalidCategory, QuotaExceeded, RegistrarError
from clinfiles.models import FileCategory, UploadConfig

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Clinical file attachments - stage, upload and manage patient files",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage configuration (API token)")
app.add_typer(config_app, name="config")


def _enable_debug_log() -> None:
    debug_dir = Path.home() / ".clinfiles"
    debug_dir.mkdir(exist_ok=True)
    fh = logging.FileHandler(debug_dir / "debug.log")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root = logging.getLogger("clinfiles")
    root.setLevel(logging.DEBUG)
    root.addHandler(fh)


def _load_config(config_path: Path | None) -> UploadConfig:
    try:
        return load_upload_config(config_path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] Invalid configuration: {e}")
        raise typer.Exit(code=1)


def _require_id(value: str, option: str) -> str:
    value = value.strip()
    if not value:
        console.print(f"[red]Error:[/red] {option} must not be empty")
        raise typer.Exit(code=1)
    return value


def _format_size(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


# ---------------------------------------------------------------------------
# upload
# ---------------------------------------------------------------------------


@app.command()
def upload(
    files: Annotated[
        list[Path],
        typer.Argument(
            help="Files to attach",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    patient: Annotated[
        str,
        typer.Option("--patient", "-p", help="Patient id the files belong to"),
    ],
    snapshot: Annotated[
        str | None,
        typer.Option("--snapshot", "-s", help="Encounter/snapshot id to link the files to"),
    ] = None,
    category: Annotated[
        str,
        typer.Option("--category", "-c", help="XRAY, LAB, PHOTO, 3D or OTHER"),
    ] = "OTHER",
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-n", help="Max simultaneous uploads"),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to upload_config.json"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Stage and list the files without uploading"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Write debug log to ~/.clinfiles/debug.log"),
    ] = False,
) -> None:
    """Stage FILES for a patient and upload them in one batch.

    Each file is sent straight to storage through a pre-signed URL and only
    registered once storage accepted it.  Failed files are listed at the end.
    """
    from clinfiles.upload.payload import LocalFilePayload
    from clinfiles.upload.progress import UploadProgressTracker
    from clinfiles.upload.registrar import HttpMetadataRegistrar
    from clinfiles.upload.session import build_session
    from clinfiles.upload.storage import HttpStorageGateway

    if debug:
        _enable_debug_log()

    patient = _require_id(patient, "--patient")
    config = _load_config(config_path)
    if concurrency is not None:
        if concurrency < 1:
            console.print("[red]Error:[/red] --concurrency must be at least 1")
            raise typer.Exit(code=1)
        config.max_concurrent_uploads = concurrency

    try:
        resolved = FileCategory.parse(category)
    except InvalidCategory as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    progress = UploadProgressTracker(total_files=len(files))

    async def _run_upload() -> int:
        async with HttpMetadataRegistrar(
            config.api_base_url,
            api_token=config.api_token,
            timeout=config.request_timeout_seconds,
            max_retries=config.max_retries,
        ) as registrar, HttpStorageGateway(
            timeout=config.transfer_timeout_seconds
        ) as storage:
            session = build_session(registrar, storage, config, progress=progress)

            for path in files:
                try:
                    session.queue.add(LocalFilePayload.from_path(path), resolved)
                except QuotaExceeded as e:
                    console.print(f"[red]Error:[/red] {e}")
                    return 1

            staged = session.queue.snapshot()
            if dry_run:
                table = Table(title=f"Staged files ({len(staged)})")
                table.add_column("File", style="cyan", no_wrap=True)
                table.add_column("Type")
                table.add_column("Size", justify="right")
                for d in staged:
                    table.add_row(d.filename, d.content_type, _format_size(d.size_bytes))
                console.print(table)
                console.print(
                    f"\nCategory [bold]{resolved.value}[/bold] | patient "
                    f"[bold]{patient}[/bold] | snapshot {snapshot or '-'}"
                )
                return 0

            console.print(
                Panel(
                    f"Uploading [bold]{len(staged)}[/bold] files for patient "
                    f"[bold]{patient}[/bold]\n"
                    f"Category: {resolved.value} | Snapshot: {snapshot or '-'} | "
                    f"Concurrency: {config.max_concurrent_uploads}",
                    title="Clinical Files",
                )
            )

            with progress:
                result = await session.commit(patient, encounter_ref=snapshot)

            summary_table = Table(title="Upload Summary")
            summary_table.add_column("Metric", style="bold")
            summary_table.add_column("Count", justify="right")
            summary_table.add_row("Total files", str(result.total))
            summary_table.add_row("Succeeded", f"[green]{result.succeeded}[/green]")
            summary_table.add_row("Failed", f"[red]{result.failed}[/red]")
            summary_table.add_row("Cancelled", f"[yellow]{result.cancelled}[/yellow]")
            console.print(Panel(summary_table, title="Upload Complete"))

            if result.failures:
                fail_table = Table(title="Failed files")
                fail_table.add_column("File", style="cyan")
                fail_table.add_column("Phase")
                fail_table.add_column("Reason")
                for outcome in result.failures:
                    fail_table.add_row(
                        outcome.filename,
                        outcome.phase.value if outcome.phase else "-",
                        outcome.reason or "",
                    )
                console.print(fail_table)
                if any(not o.needs_new_transfer for o in result.failures):
                    console.print(
                        "[yellow]Some files reached storage but were not "
                        "registered; retry their confirmation or ask an "
                        "administrator to clean up the stored objects.[/yellow]"
                    )

            return 0 if result.all_succeeded else 1

    exit_code = asyncio.run(_run_upload())
    if exit_code:
        raise typer.Exit(code=exit_code)


# ---------------------------------------------------------------------------
# list / delete
# ---------------------------------------------------------------------------


@app.command("list")
def list_files(
    patient: Annotated[
        str,
        typer.Option("--patient", "-p", help="Patient id"),
    ],
    snapshot: Annotated[
        str | None,
        typer.Option("--snapshot", "-s", help="Only files linked to this snapshot"),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to upload_config.json"),
    ] = None,
) -> None:
    """List the files registered for a patient."""
    from clinfiles.upload.registrar import HttpMetadataRegistrar

    patient = _require_id(patient, "--patient")
    config = _load_config(config_path)

    async def _fetch():
        async with HttpMetadataRegistrar(
            config.api_base_url,
            api_token=config.api_token,
            timeout=config.request_timeout_seconds,
            max_retries=config.max_retries,
        ) as registrar:
            return await registrar.list_files(patient, snapshot)

    try:
        records = asyncio.run(_fetch())
    except (RegistrarError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if not records:
        console.print("[yellow]No files found.[/yellow]")
        return

    table = Table(title=f"Files for patient {patient}")
    table.add_column("ID", style="dim")
    table.add_column("File", style="cyan")
    table.add_column("Category")
    table.add_column("Size", justify="right")
    table.add_column("Created")
    for r in records:
        table.add_row(
            r.id,
            r.original_filename,
            r.category.value,
            _format_size(r.size_bytes),
            r.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def delete(
    file_id: Annotated[str, typer.Argument(help="Id of the file record to delete")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt"),
    ] = False,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to upload_config.json"),
    ] = None,
) -> None:
    """Delete a registered clinical file."""
    from clinfiles.upload.registrar import HttpMetadataRegistrar

    file_id = _require_id(file_id, "FILE_ID")
    if not yes and not typer.confirm(f"Delete file {file_id}?"):
        console.print("Aborted.")
        raise typer.Exit(code=1)

    config = _load_config(config_path)

    async def _delete() -> None:
        async with HttpMetadataRegistrar(
            config.api_base_url,
            api_token=config.api_token,
            timeout=config.request_timeout_seconds,
            max_retries=config.max_retries,
        ) as registrar:
            await registrar.delete_file(file_id)

    try:
        asyncio.run(_delete())
    except (RegistrarError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[green]✓[/green] Deleted file {file_id}")


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


def _mask(token: str) -> str:
    """Keep a short prefix so the user can tell tokens apart."""
    shown = min(4, len(token) // 3)
    return token[:shown] + "*" * (len(token) - shown)


@config_app.command("set-api-token")
def set_api_token(
    token: Annotated[
        str,
        typer.Argument(help="Backend API token to store in the system keyring"),
    ],
) -> None:
    """Store the backend API token in the system keyring."""
    token = token.strip()
    if not token:
        console.print("[red]Error:[/red] API token cannot be empty")
        raise typer.Exit(code=1)

    try:
        keyring.set_password(SERVICE_NAME, KEY_NAME, token)
    except KeyringError as e:
        console.print(f"[red]Error:[/red] Keyring refused the token: {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]Saved[/green] API token {_mask(token)} to keyring '{SERVICE_NAME}'")


@config_app.command("get-api-token")
def show_api_token() -> None:
    """Show which API token uploads will use (masked) and its source."""
    token, source = resolve_api_token()
    if token is None:
        console.print(
            "[yellow]No API token configured.[/yellow] Requests go out without "
            f"a bearer token.\nUse [bold]clinfiles config set-api-token[/bold] "
            f"or set {TOKEN_ENV_VAR}."
        )
        raise typer.Exit(code=1)

    console.print(f"API token {_mask(token)} [dim](from {source})[/dim]")


@config_app.command("remove-api-token")
def remove_api_token() -> None:
    """Delete the stored API token from the system keyring."""
    try:
        keyring.delete_password(SERVICE_NAME, KEY_NAME)
    except PasswordDeleteError:
        console.print(f"Keyring '{SERVICE_NAME}' holds no API token; nothing removed.")
        return
    console.print(f"[green]Removed[/green] API token from keyring '{SERVICE_NAME}'")


if __name__ == "__main__":
    app()
