"""
Implements command-line commands and user interaction.
"""

import logging
import os
import sys
from datetime import datetime
from typing import List, Optional, Sequence

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from prsync.core.config import ConfigManager, ConfigurationError, TransferConfig, UserDefaults
from prsync.core.filesystem import EnumerationError, FileEnumerator, FileRecord
from prsync.core.partition import partition
from prsync.core.remote import check_dependencies, endpoint_for_worker, resolve_transfer
from prsync.core.scheduler import (
    CompletionTracker,
    IncompleteTransfer,
    Mode,
    RunReport,
    WorkerPool,
)
from prsync.core.transfer import RsyncExecutor
from prsync.core.transfer_log import TransferLogEntry, TransferLogError, TransferLogger

# Rich console for pretty output
console = Console()

PASS_THROUGH = {"ignore_unknown_options": True}


def setup_logging():
    """Route prsync log records through rich"""
    logger = logging.getLogger("prsync")
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(RichHandler(console=console, show_path=False))
    level = os.environ.get("PRSYNC_LOG_LEVEL", "WARNING").upper()
    try:
        logger.setLevel(level)
    except ValueError:
        logger.setLevel(logging.WARNING)
        logger.warning("Unknown PRSYNC_LOG_LEVEL %r, using WARNING", level)


def format_size(size: int) -> str:
    """Format size in bytes to human readable string"""
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} PB"


def _fail(message: str):
    console.print(f"[red]{escape(message)}[/red]")
    sys.exit(1)


def _prepare(
    rsync_args: Sequence[str],
    parallel: int,
    batch_size: Optional[int],
    host_start: Optional[int],
    total_bw: Optional[int],
    files_from: Optional[str],
    defaults: UserDefaults,
) -> tuple[TransferConfig, List[FileRecord]]:
    """Resolve the configuration and list the files, exiting on errors"""
    try:
        config = resolve_transfer(
            rsync_args,
            workers=parallel,
            batch_size=batch_size or defaults.batch_size,
            host_start=host_start,
            total_bw=total_bw if total_bw is not None else defaults.total_bw,
            rsync_path=defaults.rsync_path,
        )
        check_dependencies(config.rsync_path, config.options)

        enumerator = FileEnumerator(config.rsync_path)
        with console.status("[bold blue]Listing files to transfer...[/bold blue]"):
            if files_from:
                files = enumerator.from_listing_file(files_from)
            else:
                # List against the first worker's host; the base name may not exist
                source, destination = config.sides(endpoint_for_worker(config, 0))
                files = enumerator.enumerate(config.options, source, destination)
    except ConfigurationError as e:
        _fail(f"Configuration error: {e}")
    except EnumerationError as e:
        _fail(f"Failed to list files: {e}")

    return config, files


def _show_report(report: RunReport):
    """Print a per-worker summary table"""
    table = Table(title="Workers")
    table.add_column("Worker", justify="right", style="cyan")
    table.add_column("Host", style="blue")
    table.add_column("Batches", justify="right")
    table.add_column("Files", justify="right", style="green")
    table.add_column("Size", justify="right", style="magenta")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Error", style="yellow")

    for w in report.workers:
        table.add_row(
            str(w.worker_id),
            w.host,
            str(w.batches),
            str(w.files_transferred),
            format_size(w.bytes_transferred),
            str(w.failed_files),
            w.error or "",
        )

    console.print(table)


def _log_run(report: RunReport, config: TransferConfig, log_dir: str):
    try:
        TransferLogger(log_dir).add_entry(
            TransferLogEntry.from_report(report, config.source, config.destination)
        )
    except OSError as e:
        console.print(f"[yellow]Warning: failed to write run log: {e}[/yellow]")


@click.group()
def cli():
    """prsync - Parallel rsync

    Splits one rsync transfer across several rsync processes, each
    moving its own share of the files.

    Common commands:
    \b
    - sync      Transfer files with parallel rsync workers
    - plan      Show how files would be split across workers
    - logs      Show past runs
    - config    Show or change defaults
    """
    setup_logging()


@cli.command(context_settings=PASS_THROUGH)
@click.option("--parallel", type=click.IntRange(min=1), help="Number of rsync workers (required in dynamic mode)")
@click.option("--hosts", "host_start", type=click.IntRange(min=0), help="Index of the first remote host; worker N uses START+N")
@click.option("--total_bw", "total_bw", type=click.IntRange(min=0), help="Total bandwidth in Mbit/s, split evenly across workers")
@click.option("--batch_size", "batch_size", type=click.IntRange(min=1), help="Files claimed per batch (default: 10)")
@click.option("--files-from", "files_from", type=str, help="Saved '<size> <path>' listing; skips the dry run")
@click.option("--static", is_flag=True, help="Pre-assign size-balanced chunks instead of a shared queue")
@click.option("--tolerate-errors", is_flag=True, help="Succeed even if some batches failed, as long as the queue drained")
@click.option("--no-log", is_flag=True, help="Do not record this run in the transfer log")
@click.argument("rsync_args", nargs=-1, type=click.UNPROCESSED)
def sync(
    parallel: Optional[int],
    host_start: Optional[int],
    total_bw: Optional[int],
    batch_size: Optional[int],
    files_from: Optional[str],
    static: bool,
    tolerate_errors: bool,
    no_log: bool,
    rsync_args: tuple,
):
    """Transfer files with parallel rsync workers

    RSYNC_ARGS are passed to rsync unchanged. Exactly one of them must be
    a remote [user@]host:/path, as the source or the destination.

    Examples:
    \b
    - Upload with 8 workers:
      prsync sync --parallel=8 -a data/ user@dtn:/archive/data/

    - Download from dtn1..dtn4 with 1000 Mbit/s in total:
      prsync sync --parallel=4 --hosts=1 --total_bw=1000 -a dtn:/data/ data/
    """
    mode = Mode.STATIC if static else Mode.DYNAMIC
    manager = ConfigManager()
    defaults = manager.defaults

    if parallel is None:
        if mode == Mode.DYNAMIC:
            _fail("Configuration error: --parallel is required")
        parallel = defaults.parallel

    config, files = _prepare(
        rsync_args, parallel, batch_size, host_start, total_bw, files_from, defaults
    )

    if not files:
        console.print("[green]Nothing to transfer[/green]")
        return

    total_size = sum(f.size for f in files)
    console.print(
        f"Transferring {len(files)} files ({format_size(total_size)}) "
        f"with {config.workers} workers ({mode.value} mode)"
    )
    if config.bandwidth_limit_kbs:
        console.print(f"Bandwidth limit per worker: {config.bandwidth_limit_kbs} KB/s")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console
    ) as progress:
        task = progress.add_task("Transferring files...", total=len(files))

        def update_progress(worker_id: int, count: int, size: int):
            progress.advance(task, count)

        pool = WorkerPool(
            config,
            RsyncExecutor(config.rsync_path),
            tracker=CompletionTracker(strict=not tolerate_errors),
            progress_callback=update_progress,
        )
        try:
            report = pool.run(files, mode)
            failure = None
        except IncompleteTransfer as e:
            report = e.report
            failure = e

    _show_report(report)
    if not no_log:
        _log_run(report, config, manager.log_dir)

    if failure:
        _fail(f"Incomplete transfer: {failure}")

    if not report.success:
        console.print(
            f"[yellow]Transferred {report.files_transferred} files; "
            f"{report.failed_files} files in failed batches were ignored[/yellow]"
        )
        return

    console.print(
        f"[green]Successfully transferred {report.files_transferred} files "
        f"({format_size(report.bytes_transferred)}) in {report.duration:.1f}s[/green]"
    )


@cli.command(context_settings=PASS_THROUGH)
@click.option("--parallel", type=click.IntRange(min=1), help="Number of rsync workers")
@click.option("--files-from", "files_from", type=str, help="Saved '<size> <path>' listing; skips the dry run")
@click.option("--show-files", is_flag=True, help="List the files of every chunk")
@click.argument("rsync_args", nargs=-1, type=click.UNPROCESSED)
def plan(parallel: Optional[int], files_from: Optional[str], show_files: bool, rsync_args: tuple):
    """Show how files would be split across workers

    Runs the dry-run listing and prints the size-balanced chunks without
    transferring anything.
    """
    defaults = ConfigManager().defaults
    config, files = _prepare(
        rsync_args, parallel or defaults.parallel, None, None, None, files_from, defaults
    )

    if not files:
        console.print("[green]Nothing to transfer[/green]")
        return

    table = Table(title=f"{len(files)} files across {config.workers} workers")
    table.add_column("Worker", justify="right", style="cyan")
    table.add_column("Files", justify="right", style="green")
    table.add_column("Size", justify="right", style="magenta")

    chunks = partition(files, config.workers)
    for chunk in chunks:
        table.add_row(str(chunk.id), str(len(chunk.files)), format_size(chunk.total_size))
    console.print(table)

    if show_files:
        for chunk in chunks:
            console.print(f"\n[cyan]Worker {chunk.id}:[/cyan]")
            for f in chunk.files:
                console.print(f"  {escape(f.path)} ({format_size(f.size)})")


@cli.command()
@click.option(
    "--date",
    type=str,
    help="Show logs for specific date (YYYY-MM-DD format)"
)
@click.option(
    "--show-files",
    is_flag=True,
    help="Show failed files and worker errors"
)
def logs(date: str = None, show_files: bool = False):
    """View past runs

    Examples:
    \b
    - View today's logs:
      prsync logs

    - View logs for specific date:
      prsync logs --date 2025-03-22
    """
    logger = TransferLogger(ConfigManager().log_dir)

    # Get available dates if no date specified
    if date is None:
        dates = logger.get_log_dates()
        if not dates:
            console.print("[yellow]No transfer logs found[/yellow]")
            return
        date = dates[-1]

    try:
        entries = logger.get_entries(date)
    except TransferLogError as e:
        _fail(str(e))

    if not entries:
        console.print(f"[yellow]No transfer logs found for {date}[/yellow]")
        return

    table = Table(title=f"Transfer Logs for {date}")
    table.add_column("Time", style="cyan")
    table.add_column("Source", style="green")
    table.add_column("Destination", style="blue")
    table.add_column("Mode")
    table.add_column("Status", style="yellow")
    table.add_column("Size", style="magenta")
    table.add_column("Duration", style="cyan")

    for entry in entries:
        time = datetime.fromisoformat(entry.timestamp).strftime("%H:%M:%S")
        if entry.total_files == 0:
            status = "No files"
        else:
            status = f"{entry.files_transferred}/{entry.total_files}"
            if entry.residual:
                status += f" ({entry.residual} left)"

        table.add_row(
            time,
            entry.source,
            entry.destination,
            f"{entry.mode} x{entry.workers}",
            status,
            format_size(entry.total_size),
            f"{entry.duration:.1f}s"
        )

    console.print(table)

    if show_files:
        for entry in entries:
            if not (entry.failed_files or entry.errors):
                continue
            console.print(f"\n[cyan]{entry.timestamp}[/cyan]")
            for error in entry.errors:
                console.print(f"  [red]✗ {escape(error)}[/red]")
            for path in entry.failed_files:
                console.print(f"  ✗ {escape(path)}")


@cli.group()
def config():
    """Show or change defaults"""
    pass


@config.command("show")
def config_show():
    """Show current defaults"""
    manager = ConfigManager()
    table = Table(title=str(manager.config_file))
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in vars(manager.defaults).items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@config.command("set")
@click.argument("key", type=click.Choice(sorted(UserDefaults.__dataclass_fields__)))
@click.argument("value", type=str)
def config_set(key: str, value: str):
    """Change a default"""
    if key in ("parallel", "batch_size", "total_bw"):
        try:
            converted = int(value)
        except ValueError:
            _fail(f"{key} must be an integer")
        if converted < (0 if key == "total_bw" else 1):
            _fail(f"{key} is out of range: {converted}")
    else:
        converted = value

    try:
        ConfigManager().update(**{key: converted})
    except ConfigurationError as e:
        _fail(str(e))
    console.print(f"[green]{key} = {converted}[/green]")


if __name__ == "__main__":
    cli()
