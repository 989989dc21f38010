#!/usr/bin/env python3
"""
File Transfer CLI

Command-line interface for sending and receiving single files over TCP.

Usage:
    filetransfer send FILE --host HOST --port PORT   # Send a file
    filetransfer receive --dir DIR --port PORT       # Receive one file
    filetransfer receive --keep                      # Keep receiving files
    filetransfer history                             # List past transfers
    filetransfer serve                               # Start the REST API
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.progress import (
    Progress, SpinnerColumn, TextColumn, BarColumn, DownloadColumn,
    TransferSpeedColumn,
)
from rich.panel import Panel
from rich.logging import RichHandler

from .config import Config, load_config
from .service import TransferHandle, TransferService
from .storage import init_history
from .transfer import TransferDirection, TransferError

console = Console()

PORT = click.IntRange(1, 65535)


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON config file')
@click.option('--data-dir', default=None, help='Directory for the transfer history')
@click.pass_context
def cli(ctx, verbose, config_path, data_dir):
    """File Transfer - send and receive single files over TCP."""
    try:
        config = load_config(Path(config_path) if config_path else None)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='configuration')

    if data_dir:
        config.data_dir = Path(data_dir)

    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


async def track_progress(handle: TransferHandle, poll_interval: float,
                         description: str):
    """Poll a running transfer and draw a progress bar until it finishes."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(description, total=None)

        while True:
            state = handle.endpoint.snapshot()
            if state.total_bytes >= 0:
                progress.update(
                    task,
                    total=max(state.total_bytes, 1),
                    completed=state.transferred_bytes if state.total_bytes else 1,
                    description=f"{description} {state.filename}",
                )
            if handle.done:
                break
            await asyncio.sleep(poll_interval)


async def _open_service(config: Config):
    history = await init_history(config.data_dir)
    service = TransferService(
        history,
        chunk_size=config.chunk_size,
        connect_timeout=config.connect_timeout,
    )
    return service, history


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--host', default=None, help='Receiver host')
@click.option('--port', '-p', type=PORT, default=None, help='Receiver port')
@click.pass_context
def send(ctx, file_path, host, port):
    """Send a file to a listening receiver."""
    config = ctx.obj['config']
    host = host or config.host
    port = port or config.port

    async def run() -> int:
        service, db = await _open_service(config)
        try:
            handle = await service.start_send(Path(file_path), host, port)
            await track_progress(handle, config.poll_interval, "Sending")
            await service.wait(handle.id)
        except TransferError as e:
            console.print(f"[red]✗ Send failed: {e}[/red]")
            return 1
        finally:
            await service.close()
            await db.close()

        state = handle.state
        console.print(Panel.fit(
            f"[bold green]File Sent Successfully[/bold green]\n\n"
            f"Name: [cyan]{state.filename}[/cyan]\n"
            f"Size: [yellow]{state.total_bytes:,} bytes[/yellow]\n"
            f"To: [blue]{host}:{port}[/blue]",
            title="Sent File"
        ))
        return 0

    ctx.exit(asyncio.run(run()))


@cli.command()
@click.option('--dir', 'save_dir', type=click.Path(file_okay=False), default=None,
              help='Directory to save into')
@click.option('--port', '-p', type=PORT, default=None, help='Port to listen on')
@click.option('--host', default=None, help='Address to bind')
@click.option('--keep', is_flag=True, help='Keep receiving files until interrupted')
@click.pass_context
def receive(ctx, save_dir, port, host, keep):
    """Receive a file from a sender."""
    config = ctx.obj['config']
    save_dir = Path(save_dir) if save_dir else config.save_dir
    port = port or config.listen_port
    host = host or config.listen_host

    save_dir.mkdir(parents=True, exist_ok=True)

    def show_received(handle: TransferHandle):
        state = handle.state
        console.print(
            f"[green]✓ Received {state.filename} ({format_size(state.total_bytes)}) "
            f"from {state.peer_host}:{state.peer_port}[/green]"
        )

    async def run() -> int:
        service, db = await _open_service(config)
        try:
            if keep:
                console.print(f"[dim]Receiving into {save_dir} on port {port}. "
                              f"Press Ctrl+C to stop[/dim]")
                await service.receive_forever(save_dir, port, host=host,
                                              on_complete=show_received)
                return 0

            handle = await service.start_receive(save_dir, port, host=host)
            console.print(f"[dim]Waiting for a file on port {port}...[/dim]")
            await track_progress(handle, config.poll_interval, "Receiving")
            await service.wait(handle.id)
        except TransferError as e:
            console.print(f"[red]✗ Receive failed: {e}[/red]")
            return 1
        finally:
            await service.close()
            await db.close()

        show_received(handle)
        console.print(f"[dim]Saved to {handle.endpoint.output_path}[/dim]")
        return 0

    try:
        code = asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")
        code = 0
    ctx.exit(code)


@cli.command()
@click.option('--direction', type=click.Choice([d.value for d in TransferDirection]),
              default=None, help='Only sent or only received transfers')
@click.option('--limit', '-n', type=click.IntRange(min=1), default=None,
              help='Show only the most recent N transfers')
@click.pass_context
def history(ctx, direction, limit):
    """List past transfers."""
    config = ctx.obj['config']

    async def run():
        db = await init_history(config.data_dir)
        try:
            return await db.get_all_transfers(
                direction=TransferDirection(direction) if direction else None,
                limit=limit,
            )
        finally:
            await db.close()

    records = asyncio.run(run())

    if not records:
        console.print("[yellow]No transfers recorded[/yellow]")
        return

    table = Table(title="Transfer History")
    table.add_column("#", justify="right", style="dim")
    table.add_column("File", style="cyan")
    table.add_column("Size", justify="right", style="yellow")
    table.add_column("Direction")
    table.add_column("Time")
    table.add_column("Peer", style="green")

    for r in records:
        arrow = "[blue]→ sent[/blue]" if r.direction is TransferDirection.SENT \
            else "[magenta]← received[/magenta]"
        table.add_row(
            str(r.id),
            r.filename,
            format_size(r.filesize),
            arrow,
            r.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
            f"{r.peer_host}:{r.peer_port}",
        )

    console.print(table)


@cli.command()
@click.option('--api-host', default=None, help='REST API host')
@click.option('--api-port', type=PORT, default=None, help='REST API port')
@click.pass_context
def serve(ctx, api_host, api_port):
    """Start the REST API."""
    config = ctx.obj['config']
    api_host = api_host or config.api_host
    api_port = api_port or config.api_port

    async def run():
        service, db = await _open_service(config)
        console.print(f"\n[dim]REST API available at http://{api_host}:{api_port}[/dim]")
        console.print(f"[dim]API docs at http://{api_host}:{api_port}/docs[/dim]\n")
        try:
            from .api import run_api_server
            await run_api_server(service, db, host=api_host, port=api_port,
                                 poll_interval=config.poll_interval)
        finally:
            await service.close()
            await db.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


def format_size(bytes_count: int) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


def main(argv: Optional[list] = None):
    cli(args=argv, obj={})


if __name__ == '__main__':
    main()
