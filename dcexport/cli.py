"""
CLI interface for DCExport.

Provides command-line access to the export core:
- Asset path derivation (asset-path)
- Asset downloads into a media directory (fetch)
- Inspection of reference tables written by normalized JSON exports (tables)
- Interactive configuration (init)
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, List

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.prompt import Prompt, Confirm

from . import __version__
from .backends.http import ResilientTransport
from .config import Config
from .errors import ConfigError
from .media import AssetDownloader
from .models import AssetOutcome, AssetStatus
from .paths import asset_relative_path, skip_reason
from .progress import create_progress, format_duration
from .stats import ApiCallStatistics
from .storage import MEMBERS_FILE, ROLES_FILE, USERS_FILE, load_members, load_roles, load_users

console = Console()


def setup_logging(level: str, log_file: Optional[str] = None) -> None:
    """Configure logging."""
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers
    )


@click.group()
@click.version_option(__version__, prog_name="dcexport")
@click.option('--config', '-c', type=click.Path(exists=True), help='Config file path')
@click.option('--log-level', '-l', default=None, help='Log level')
@click.option('--log-file', type=click.Path(), default=None, help='Also write logs to this file')
@click.pass_context
def cli(ctx, config, log_level, log_file):
    """
    DCExport - Discord export core toolkit

    Derives deterministic asset paths, downloads media with
    de-duplication and inspects the reference tables written by
    normalized JSON exports.
    """
    ctx.ensure_object(dict)

    try:
        if config:
            ctx.obj['config'] = Config.from_file(Path(config))
        else:
            ctx.obj['config'] = Config.from_env()
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)

    if log_level:
        ctx.obj['config'].log_level = log_level
    if log_file:
        ctx.obj['config'].log_file = log_file

    setup_logging(ctx.obj['config'].log_level, ctx.obj['config'].log_file)


@cli.command('asset-path')
@click.argument('urls', nargs=-1, required=True)
@click.option('--legacy', is_flag=True, help='Use the flat legacy naming scheme')
def asset_path(urls, legacy):
    """
    Show where assets would be stored.

    Examples:

        dcexport asset-path https://cdn.discordapp.com/emojis/123.png

        dcexport asset-path --legacy https://example.com/image.jpg
    """
    table = Table(title="Asset Paths")
    table.add_column("URL", style="cyan", overflow="fold")
    table.add_column("Path", style="green", overflow="fold")

    for url in urls:
        reason = skip_reason(url)
        if reason:
            table.add_row(url, f"[yellow]skipped ({reason})[/yellow]")
        else:
            table.add_row(url, asset_relative_path(url, nested=not legacy))

    console.print(table)


@cli.command()
@click.argument('urls', nargs=-1, required=True)
@click.option('--output', '-o', type=click.Path(file_okay=False), default='./media', help='Media directory')
@click.option('--reuse/--no-reuse', default=False, help='Reuse previously downloaded files')
@click.option('--legacy', is_flag=True, help='Use the flat legacy naming scheme')
@click.option('--parallel', '-p', type=int, default=4, help='Concurrent downloads')
@click.option('--stats', 'show_stats', is_flag=True, help='Show request statistics')
@click.pass_context
def fetch(ctx, urls, output, reuse, legacy, parallel, show_stats):
    """
    Download assets into a media directory.

    Duplicate URLs, and URLs that map to the same file, are downloaded once.

    Examples:

        dcexport fetch https://cdn.discordapp.com/attachments/1/2/photo.png

        dcexport fetch -o media --reuse URL1 URL2 URL3
    """
    config = ctx.obj['config']

    if parallel < 1:
        console.print("[red]Error: --parallel must be >= 1[/red]")
        raise SystemExit(1)

    outcomes = asyncio.run(_fetch_assets(
        urls=list(urls),
        output=Path(output),
        reuse=reuse,
        nested=not legacy,
        parallel=parallel,
        config=config,
        show_stats=show_stats or config.show_stats
    ))

    if not any(o.ok for o in outcomes) and any(o.status is AssetStatus.FAILED for o in outcomes):
        raise SystemExit(1)


async def _fetch_assets(
    urls: List[str],
    output: Path,
    reuse: bool,
    nested: bool,
    parallel: int,
    config: Config,
    show_stats: bool
) -> List[AssetOutcome]:
    """Internal async fetch implementation."""
    stats = ApiCallStatistics()
    semaphore = asyncio.Semaphore(parallel)
    loop = asyncio.get_running_loop()
    started = loop.time()

    async with ResilientTransport(
        max_retries=config.max_retries,
        timeout=config.request_timeout,
        stats=stats
    ) as transport:
        downloader = AssetDownloader(output, transport, reuse=reuse, nested_paths=nested)

        with create_progress(console) as progress:
            task = progress.add_task("Downloading assets...", total=len(urls), status="")

            async def materialize(url: str) -> AssetOutcome:
                async with semaphore:
                    outcome = await downloader.materialize(url)
                progress.advance(task)
                return outcome

            outcomes = await asyncio.gather(*(materialize(url) for url in urls))

    table = Table(title="Assets")
    table.add_column("Status", style="cyan")
    table.add_column("URL", overflow="fold")
    table.add_column("Path", style="green", overflow="fold")

    colors = {AssetStatus.SUCCESS: "green", AssetStatus.SKIPPED: "yellow", AssetStatus.FAILED: "red"}
    for outcome in outcomes:
        color = colors[outcome.status]
        table.add_row(
            f"[{color}]{outcome.status.value}[/{color}]",
            outcome.url,
            str(outcome.path) if outcome.path else "-"
        )
    console.print(table)

    counts = downloader.get_stats()
    console.print(Panel.fit(
        f"[green]Downloaded {counts['downloaded']}[/green] | Reused {counts['reused']} | "
        f"[yellow]Skipped {counts['skipped']}[/yellow] | [red]Failed {counts['failed']}[/red]\n"
        f"Finished in {format_duration(loop.time() - started)}",
        title="Complete"
    ))

    if show_stats and stats.has_calls:
        console.print(stats.to_table())

    return list(outcomes)


@cli.command()
@click.argument('directory', type=click.Path(exists=True, file_okay=False))
@click.option('--limit', '-n', type=int, default=20, help='Maximum rows per table')
def tables(directory, limit):
    """
    Summarize users.json, members.json and roles.json in an export directory.

    Examples:

        dcexport tables ./exports
    """
    asyncio.run(_show_tables(Path(directory), limit))


async def _show_tables(directory: Path, limit: int) -> None:
    users = await load_users(directory / USERS_FILE)
    members, fallback_users = await load_members(directory / MEMBERS_FILE)
    roles = await load_roles(directory / ROLES_FILE)

    if not (users or members or fallback_users or roles):
        console.print(f"[yellow]No reference tables found in: {directory}[/yellow]")
        return

    summary = Table(title=f"Reference tables in {directory}")
    summary.add_column("Table", style="cyan")
    summary.add_column("Entries", style="green", justify="right")
    summary.add_row(USERS_FILE, f"{len(users):,}")
    summary.add_row(f"{MEMBERS_FILE} (members)", f"{len(members):,}")
    summary.add_row(f"{MEMBERS_FILE} (fallback users)", f"{len(fallback_users):,}")
    summary.add_row(ROLES_FILE, f"{len(roles):,}")
    console.print(summary)

    if roles:
        table = Table(title="Roles")
        table.add_column("ID", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Position", justify="right")
        table.add_column("Color", style="magenta")
        for role in sorted(roles.values(), key=lambda r: r.position, reverse=True)[:limit]:
            table.add_row(str(role.id), role.name, str(role.position), role.color_hex or "-")
        console.print(table)

    if members:
        table = Table(title="Members")
        table.add_column("ID", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Display Name", style="yellow")
        table.add_column("Roles", style="magenta")
        for member in list(members.values())[:limit]:
            role_names = [roles[r].name if r in roles else str(r) for r in member.role_ids]
            table.add_row(
                str(member.id),
                member.user.full_name,
                member.display_name or "-",
                ", ".join(role_names) or "-"
            )
        console.print(table)


@cli.command()
@click.pass_context
def init(ctx):
    """Initialize configuration file interactively."""
    console.print(Panel.fit(
        "[bold blue]DCExport Setup[/bold blue]\n\n"
        "This will create a configuration file with your export defaults.",
        title="Welcome"
    ))

    token = Prompt.ask("Enter your Discord token", password=True, default="")
    output_path = Prompt.ask("Output directory", default="./exports/")
    export_format = Prompt.ask(
        "Export format",
        choices=["txt", "htmldark", "htmllight", "csv", "json"],
        default="htmldark"
    )
    download_assets = Confirm.ask("Download media?", default=False)
    nested = download_assets and Confirm.ask("Use nested media paths?", default=True)
    reuse = download_assets and Confirm.ask("Reuse previously downloaded media?", default=True)
    parallel = int(Prompt.ask("Channels to export in parallel", default="1"))

    config = Config(
        token=token or None,
        output_path=output_path,
        export_format=export_format,
        download_assets=download_assets,
        nested_media_paths=nested,
        reuse_assets=reuse,
        parallel=parallel
    )

    errors = config.validate()
    if errors:
        for error in errors:
            console.print(f"[red]Error: {error}[/red]")
        raise SystemExit(1)

    config_path = Path("dcexport_config.json")
    config.to_file(config_path)

    console.print(f"\n[green]Configuration saved to: {config_path}[/green]")
    console.print("\nYou can now run:")
    console.print(f"  [cyan]dcexport -c {config_path} fetch URL[/cyan]")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == '__main__':
    main()
