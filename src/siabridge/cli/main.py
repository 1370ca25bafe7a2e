"""Main CLI entry point for siabridge.

Provides command-line access to buckets, objects and the cache manager.
"""

import logging
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

import click
import orjson
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from siabridge import SiaBridge
from siabridge.cache.eviction import get_purge_remaining
from siabridge.catalog.models import ObjectInfo
from siabridge.config import BridgeConfig
from siabridge.errors import BridgeError

# Global console for Rich output
console = Console()
err_console = Console(stderr=True)


def load_config(
    config_path: Optional[str] = None,
    cache_dir: Optional[str] = None,
    db_file: Optional[str] = None,
    siad: Optional[str] = None,
    remote: Optional[str] = None,
) -> BridgeConfig:
    """Build the bridge configuration from multiple sources.

    Priority:
    1. Explicit command-line options
    2. --config JSON file
    3. SIABRIDGE_* environment variables
    4. Defaults

    Returns:
        BridgeConfig instance
    """
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise click.ClickException(f"Config file not found: {config_path}")
        config = BridgeConfig.load(path)
    else:
        config = BridgeConfig.from_env()

    if cache_dir:
        config.cache_dir = Path(cache_dir).expanduser()
    if db_file:
        config.db_file = Path(db_file).expanduser()
    if siad:
        config.siad_address = siad
    if remote:
        config.remote_url = remote
    return config


def setup_logging(verbose: int) -> None:
    """Send library logging to stderr through Rich."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@contextmanager
def open_bridge(ctx: click.Context) -> Generator[SiaBridge, None, None]:
    """Start a bridge for one command and stop it afterwards."""
    bridge = SiaBridge(ctx.obj["config"])
    bridge.start()
    try:
        yield bridge
    finally:
        bridge.stop()


def fail(message: str) -> None:
    """Print an error and exit with status 1."""
    console.print(f"[red]✗[/red] Error: {message}", style="red")
    sys.exit(1)


def format_time(value) -> str:
    """Format an optional datetime for tables."""
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S")


@click.group()
@click.option("--config", "config_path", type=click.Path(), help="Path to a JSON config file")
@click.option("--cache-dir", type=click.Path(), help="Cache directory")
@click.option("--db", "db_file", type=click.Path(), help="Metadata database file")
@click.option("--siad", help="Sia daemon address (default 127.0.0.1:9980)")
@click.option("--remote", help="cloudfiles URL to store objects at instead of the Sia daemon")
@click.option("-v", "--verbose", count=True, help="Increase log output (-v, -vv)")
@click.pass_context
def cli(ctx, config_path, cache_dir, db_file, siad, remote, verbose):
    """siabridge CLI - Buckets and objects on the Sia network with a local cache.

    Settings come from --config, SIABRIDGE_* environment variables, or defaults.
    """
    setup_logging(verbose)
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config_path, cache_dir, db_file, siad, remote)
    except ValueError as e:
        raise click.ClickException(str(e))


# ==================== Bucket Commands ====================


@cli.group()
def bucket():
    """Manage buckets - create, list, inspect, delete."""
    pass


@bucket.command("create")
@click.argument("name")
@click.pass_context
def bucket_create(ctx, name):
    """Create a bucket (succeeds if it already exists).

    Example:
        siabridge bucket create photos
    """
    try:
        with open_bridge(ctx) as bridge:
            bridge.create_bucket(name)
        console.print(f"[green]✓[/green] Bucket '{name}' ready")
    except BridgeError as e:
        fail(str(e))


@bucket.command("list")
@click.pass_context
def bucket_list(ctx):
    """List all buckets."""
    try:
        with open_bridge(ctx) as bridge:
            buckets = bridge.list_buckets()
    except BridgeError as e:
        fail(str(e))
        return

    if not buckets:
        console.print("[yellow]No buckets found[/yellow]")
        return

    table = Table(title=f"Buckets ({len(buckets)})")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Created", style="blue")
    for b in buckets:
        table.add_row(b.name, format_time(b.created))
    console.print(table)


@bucket.command("info")
@click.argument("name")
@click.pass_context
def bucket_info(ctx, name):
    """Show a bucket and how many objects it holds."""
    try:
        with open_bridge(ctx) as bridge:
            info = bridge.get_bucket_info(name)
            objects = bridge.list_objects(name)
    except BridgeError as e:
        fail(str(e))
        return

    durable = sum(1 for obj in objects if obj.is_durable)
    console.print(f"\n[bold cyan]Bucket: {info.name}[/bold cyan]")
    console.print(f"[bold]Created:[/bold] {format_time(info.created)}")
    console.print(f"[bold]Objects:[/bold] {len(objects)} ({durable} durable)")
    console.print(f"[bold]Size:[/bold] {sum(obj.size for obj in objects)} bytes")
    console.print()


@bucket.command("delete")
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def bucket_delete(ctx, name, yes):
    """Delete a bucket and every object in it.

    Example:
        siabridge bucket delete photos -y
    """
    if not yes and not click.confirm(f"Delete bucket '{name}' and all its objects?"):
        console.print("[yellow]Cancelled[/yellow]")
        return

    try:
        with open_bridge(ctx) as bridge:
            bridge.delete_bucket(name)
        console.print(f"[green]✓[/green] Deleted bucket '{name}'")
    except BridgeError as e:
        fail(str(e))


# ==================== Object Commands ====================


@cli.group("object")
def object_group():
    """Manage objects - put, get, inspect, list, delete."""
    pass


@object_group.command("put")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.argument("bucket_name")
@click.argument("name", required=False)
@click.option(
    "--purge-after",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Evict the cached copy after this many idle seconds (0 = never)",
)
@click.pass_context
def object_put(ctx, file, bucket_name, name, purge_after):
    """Upload FILE into BUCKET_NAME as NAME (defaults to the file name).

    Example:
        siabridge object put ./cat.jpg photos --purge-after 86400
    """
    name = name or Path(file).name
    try:
        with open_bridge(ctx) as bridge:
            info = bridge.put_object_from_file(file, bucket_name, name, purge_after=purge_after)
        console.print(f"[green]✓[/green] Queued '{info.key}' ({info.size} bytes) for upload")
    except BridgeError as e:
        fail(str(e))


@object_group.command("get")
@click.argument("bucket_name")
@click.argument("name")
@click.argument("dest", type=click.File("wb"))
@click.pass_context
def object_get(ctx, bucket_name, name, dest):
    """Download an object into DEST ('-' for stdout).

    Example:
        siabridge object get photos cat.jpg ./cat-copy.jpg
    """
    try:
        with open_bridge(ctx) as bridge:
            copied = bridge.get_object(bucket_name, name, dest)
        err_console.print(f"[green]✓[/green] Wrote {copied} bytes")
    except BridgeError as e:
        fail(str(e))


@object_group.command("info")
@click.argument("bucket_name")
@click.argument("name")
@click.option("--json", "as_json", is_flag=True, help="Print the record as JSON")
@click.pass_context
def object_info(ctx, bucket_name, name, as_json):
    """Show an object's record and cache state."""
    try:
        with open_bridge(ctx) as bridge:
            info = bridge.get_object_info(bucket_name, name)
            cached = bridge.cache.exists(bucket_name, name)
    except BridgeError as e:
        fail(str(e))
        return

    if as_json:
        click.echo(orjson.dumps(info, option=orjson.OPT_INDENT_2).decode())
        return

    print_object(info, cached)


def print_object(info: ObjectInfo, cached: bool) -> None:
    """Print a detailed view of an object record."""
    remaining = get_purge_remaining(info)
    console.print(f"\n[bold cyan]Object: {info.key}[/bold cyan]")
    console.print("=" * 60)
    console.print(f"[bold]Size:[/bold] {info.size} bytes")
    console.print(f"[bold]Queued:[/bold] {format_time(info.queued)}")
    if info.is_durable:
        console.print(f"[bold]Uploaded:[/bold] {format_time(info.uploaded)}")
    else:
        console.print("[bold]Uploaded:[/bold] [yellow]not yet durable[/yellow]")
    console.print(f"[bold]Cached:[/bold] {'yes' if cached else 'no'}")
    if info.purge_after:
        console.print(f"[bold]Purge after:[/bold] {info.purge_after}s")
        if remaining is not None:
            console.print(f"[bold]Purgeable in:[/bold] {remaining}s")
    else:
        console.print("[bold]Purge after:[/bold] never")
    console.print(
        f"[bold]Fetches:[/bold] {info.cached_fetches} cached, {info.sia_fetches} remote"
    )
    console.print(f"[bold]Last fetch:[/bold] {format_time(info.last_fetch)}")
    console.print()


@object_group.command("list")
@click.argument("bucket_name")
@click.pass_context
def object_list(ctx, bucket_name):
    """List the objects in a bucket."""
    try:
        with open_bridge(ctx) as bridge:
            objects = bridge.list_objects(bucket_name)
    except BridgeError as e:
        fail(str(e))
        return

    if not objects:
        console.print("[yellow]No objects found[/yellow]")
        return

    table = Table(title=f"Objects in {bucket_name} ({len(objects)})")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Size", justify="right", style="green")
    table.add_column("Queued", style="blue")
    table.add_column("Uploaded", style="magenta")
    table.add_column("Fetches", justify="right")
    for obj in objects:
        table.add_row(
            obj.name,
            str(obj.size),
            format_time(obj.queued),
            format_time(obj.uploaded) if obj.is_durable else "pending",
            str(obj.cached_fetches + obj.sia_fetches),
        )
    console.print(table)


@object_group.command("delete")
@click.argument("bucket_name")
@click.argument("name")
@click.pass_context
def object_delete(ctx, bucket_name, name):
    """Delete an object."""
    try:
        with open_bridge(ctx) as bridge:
            bridge.delete_object(bucket_name, name)
        console.print(f"[green]✓[/green] Deleted '{bucket_name}/{name}'")
    except BridgeError as e:
        fail(str(e))


# ==================== Manager Commands ====================


@cli.command("manage")
@click.pass_context
def manage(ctx):
    """Run one upload-reconciliation and cache-eviction pass."""
    try:
        with open_bridge(ctx) as bridge:
            report = bridge.run_manager()
    except BridgeError as e:
        fail(str(e))
        return

    if report is None:
        console.print("[yellow]A management pass is already running[/yellow]")
        return

    console.print(f"[green]✓[/green] Management pass complete")
    console.print(f"  Promoted to durable: {report.promoted}")
    console.print(f"  Evicted from cache: {report.evicted}")
    console.print(f"  Orphans reclaimed: {report.orphans_removed}")
    if report.failures:
        console.print(f"  [red]Failures: {report.failures}[/red]")


@cli.command("run")
@click.pass_context
def run(ctx):
    """Start the bridge and keep the cache manager running until interrupted."""
    config = ctx.obj["config"]
    try:
        with open_bridge(ctx):
            console.print(
                f"[green]✓[/green] siabridge running "
                f"(manager every {config.manager_interval}s); press Ctrl+C to stop"
            )
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")
    except BridgeError as e:
        fail(str(e))


if __name__ == "__main__":
    cli()
