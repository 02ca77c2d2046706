"""CLI entry point for the donorhub upload client.

Provides commands:
  - upload: Upload local files straight to object storage
  - categories: Show size and type limits per logical category
  - reconcile: Confirm objects left stored-but-unconfirmed by earlier runs
  - config: Manage the origin bearer token
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer
from keyring.errors import KeyringError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from donorhub.config import get_auth_token, load_upload_config, set_auth_token
from donorhub.models import FileDescriptor, LogicalCategory, UploadConfig
from donorhub.upload.policy import MIB, UploadPolicy

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_PATH = Path("data/unconfirmed.db")

app = typer.Typer(
    help="donorhub - Upload campaign, profile and KYC files to object storage",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage configuration (auth token)")
app.add_typer(config_app, name="config")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def _ledger_path(config: UploadConfig) -> Path:
    return Path(config.ledger_path) if config.ledger_path else DEFAULT_LEDGER_PATH


def _load_token() -> str:
    try:
        return get_auth_token()
    except RuntimeError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)


@app.command()
def upload(
    files: Annotated[
        list[Path],
        typer.Argument(help="Files to upload", exists=True, dir_okay=False, readable=True),
    ],
    category: Annotated[
        LogicalCategory,
        typer.Option("--category", "-c", help="Logical category of every file"),
    ],
    origin: Annotated[
        str | None,
        typer.Option("--origin", help="Origin server URL (overrides config)"),
    ] = None,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-n", help="Max concurrent uploads"),
    ] = None,
    retries: Annotated[
        int | None,
        typer.Option("--retries", help="Total attempts per file (1 = no automatic retry)"),
    ] = None,
    ledger_path: Annotated[
        Path | None,
        typer.Option("--ledger", "-l", help="Where to record stored-but-unconfirmed objects"),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to upload_config.json"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
) -> None:
    """Upload FILES directly to storage and confirm them with the origin.

    The bearer token is read from the system keyring (service: donorhub)
    or the DONORHUB_TOKEN environment variable.
    """
    _configure_logging(verbose)

    config = load_upload_config(config_path)
    if origin is not None:
        config.origin_url = origin
    if concurrency is not None:
        config.max_concurrent_uploads = concurrency
    if retries is not None:
        config.retry_attempts = retries
    config.ledger_path = str(ledger_path or _ledger_path(config))
    if config.max_concurrent_uploads < 1 or config.retry_attempts < 1:
        console.print("[red]Error:[/red] --concurrency and --retries must be at least 1")
        raise typer.Exit(code=1)

    token = _load_token()

    console.print(
        Panel(
            f"Uploading [bold]{len(files)}[/bold] files as "
            f"[bold]{category.value}[/bold] to [bold]{config.origin_url}[/bold]\n"
            f"Concurrency: {config.max_concurrent_uploads} | "
            f"Attempts: {config.retry_attempts}",
            title="Upload",
        )
    )

    entries = asyncio.run(_run_upload(files, category, config, token))

    summary_table = Table(title="Upload Summary")
    summary_table.add_column("File", style="cyan", no_wrap=True)
    summary_table.add_column("Result")
    summary_table.add_column("Public URL / Error")

    failed = 0
    for entry in entries:
        if entry.success:
            summary_table.add_row(
                entry.file_descriptor.name,
                "[green]ok[/green]",
                entry.result.public_url,
            )
        else:
            failed += 1
            summary_table.add_row(
                entry.file_descriptor.name,
                f"[red]{type(entry.error).__name__}[/red]",
                escape(str(entry.error)),
            )

    console.print(summary_table)
    console.print(
        f"[green]{len(entries) - failed}[/green] succeeded, [red]{failed}[/red] failed"
    )
    if failed:
        raise typer.Exit(code=1)


async def _run_upload(
    files: list[Path],
    category: LogicalCategory,
    config: UploadConfig,
    token: str,
) -> list:
    # Import upload modules here to keep CLI startup fast for categories/config
    from donorhub.upload.ledger import UnconfirmedObjectLedger
    from donorhub.upload.progress import SessionProgressDisplay
    from donorhub.upload.session import UploadSession

    descriptors = [FileDescriptor.from_path(path) for path in files]
    ledger = None
    if config.ledger_path:
        Path(config.ledger_path).parent.mkdir(parents=True, exist_ok=True)
        ledger = UnconfirmedObjectLedger(config.ledger_path)
        await ledger.connect()
    try:
        async with UploadSession.from_config(config, token, ledger=ledger) as session:
            session.submit_many(descriptors, category)
            display = SessionProgressDisplay(console)
            session.add_listener(display.on_event)
            with display:
                return await session.run()
    finally:
        if ledger is not None:
            await ledger.close()
        for descriptor in descriptors:
            descriptor.close()


@app.command()
def categories() -> None:
    """Show the size ceiling and accepted types of every category."""
    policy = UploadPolicy()
    table = Table(title="Upload Categories")
    table.add_column("Category", style="cyan", no_wrap=True)
    table.add_column("Max size", justify="right")
    table.add_column("Allowed types")

    for category in LogicalCategory:
        table.add_row(
            category.value,
            f"{policy.ceiling(category) // MIB} MiB",
            ", ".join(policy.allowed_types(category)),
        )
    console.print(table)


@app.command()
def reconcile(
    ledger_path: Annotated[
        Path | None,
        typer.Option("--ledger", "-l", help="Path to the unconfirmed-object ledger"),
    ] = None,
    origin: Annotated[
        str | None,
        typer.Option("--origin", help="Origin server URL (overrides config)"),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to upload_config.json"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
) -> None:
    """Re-run the confirmation handshake for stored-but-unconfirmed objects."""
    _configure_logging(verbose)

    config = load_upload_config(config_path)
    if origin is not None:
        config.origin_url = origin
    if ledger_path is None:
        ledger_path = _ledger_path(config)

    if not ledger_path.exists():
        console.print(f"[yellow]Nothing to reconcile:[/yellow] no ledger at {ledger_path}")
        return

    token = _load_token()
    result = asyncio.run(_run_reconcile(ledger_path, config, token))

    table = Table(title="Reconcile Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Count", justify="right")
    table.add_row("Confirmed", f"[green]{len(result.confirmed)}[/green]")
    table.add_row("Still pending", f"[red]{len(result.still_pending)}[/red]")
    console.print(table)

    for error in result.errors:
        console.print(f"[red]•[/red] {escape(error)}")
    if result.still_pending:
        raise typer.Exit(code=1)


async def _run_reconcile(ledger_path: Path, config: UploadConfig, token: str):
    from donorhub.upload.confirmation import ConfirmationHandshake
    from donorhub.upload.ledger import UnconfirmedObjectLedger, reconcile_unconfirmed
    from donorhub.upload.origin import OriginApiClient

    async with UnconfirmedObjectLedger(str(ledger_path)) as ledger:
        async with OriginApiClient(
            config.origin_url, token, timeout=config.origin_timeout_seconds
        ) as origin_client:
            return await reconcile_unconfirmed(ledger, ConfirmationHandshake(origin_client))


@config_app.command("set-token")
def set_token(
    token: Annotated[
        str,
        typer.Argument(help="Origin bearer token to store in the system keyring"),
    ],
) -> None:
    """Store the origin bearer token in the system keyring (service: donorhub)."""
    try:
        set_auth_token(token)
    except (ValueError, KeyringError) as e:
        console.print(f"[red]Error:[/red] Failed to store token: {e}")
        raise typer.Exit(code=1)
    console.print(
        "[green]✓[/green] Token stored successfully in system keyring (service: donorhub)"
    )


if __name__ == "__main__":
    app()
