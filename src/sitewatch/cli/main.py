"""Main CLI application using Click framework."""

import asyncio
import functools
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

import click
import structlog
from rich.console import Console
from rich.table import Table

from ..config import get_settings
from ..scheduler import BulkScope, ScanFilters, SchedulerRunner, SchedulingOrchestrator
from ..storage import DatabaseManager
from ..storage.types import ChannelType, NotFoundError
from ..utils.logging import get_structured_logger, setup_logging
from .types import CLIContext, CommandResult, OutputFormat

console = Console()
logger = get_structured_logger(__name__)


def async_command(f):
    """Decorator to run async functions in Click commands."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            # Check if we're already in an event loop (e.g., during testing)
            try:
                asyncio.get_running_loop()
                import concurrent.futures

                def run_in_new_loop():
                    return asyncio.run(f(*args, **kwargs))

                with concurrent.futures.ThreadPoolExecutor() as executor:
                    future = executor.submit(run_in_new_loop)
                    return future.result()

            except RuntimeError:
                return asyncio.run(f(*args, **kwargs))
        except KeyboardInterrupt:
            console.print("❌ Operation cancelled by user", style="red")
            sys.exit(1)
        except Exception as e:
            console.print(f"❌ Error: {str(e)}", style="red")
            logger.error(f"CLI command failed: {str(e)}")
            sys.exit(1)

    return wrapper


def handle_result(result: CommandResult, ctx: CLIContext) -> None:
    """Handle command result output."""
    if ctx.json_output:
        console.print_json(
            data={"success": result.success, "message": result.message, **result.data},
            default=str,
        )
    elif result.success:
        if result.message:
            console.print(f"✅ {result.message}", style="green")
        if result.data and ctx.verbose:
            console.print_json(data=result.data, default=str)
    else:
        console.print(f"❌ {result.message}", style="red")
        if result.data and ctx.debug:
            console.print_json(data=result.data, default=str)

    if not result.success:
        sys.exit(result.exit_code)


@asynccontextmanager
async def open_orchestrator(ctx: CLIContext) -> AsyncIterator[SchedulingOrchestrator]:
    """Build the engine against the configured database for one command."""
    settings = ctx.settings or get_settings()
    db = DatabaseManager(settings.database)
    orchestrator = SchedulingOrchestrator(settings=settings, db=db)
    await orchestrator.setup()
    try:
        yield orchestrator
    finally:
        try:
            await orchestrator.cleanup()
        finally:
            await db.cleanup()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.option("--json", "json_output", is_flag=True, help="Print results as JSON")
@click.option("--database-url", help="Override the configured database URL")
@click.pass_context
def cli(
    ctx, verbose: bool, debug: bool, json_output: bool, database_url: Optional[str]
) -> None:
    """Sitewatch - sitemap change monitoring."""
    settings = get_settings()
    if database_url:
        settings = settings.model_copy(
            update={"database": settings.database.model_copy(update={"url": database_url})}
        )

    ctx.obj = CLIContext(
        verbose=verbose,
        debug=debug,
        output_format=OutputFormat.JSON if json_output else OutputFormat.TEXT,
        settings=settings,
    )

    if not structlog.is_configured():
        level = "DEBUG" if debug else ("INFO" if verbose else "WARNING")
        setup_logging(level, settings.json_logs, stream=sys.stderr)


# Trigger commands, the CLI counterpart of /api/cron
@cli.group()
def cron():
    """Scheduled trigger operations."""
    pass


@cron.command("scan")
@click.option("--max", "max_sites", type=int, help="Enqueue at most this many due sites")
@click.pass_obj
@async_command
async def cron_scan(ctx: CLIContext, max_sites: Optional[int]) -> None:
    """Enqueue a scan for every site whose interval has elapsed."""
    async with open_orchestrator(ctx) as orchestrator:
        summary = await orchestrator.run_due_scan_pass(max_sites=max_sites)

    handle_result(
        CommandResult(
            success=True,
            message=(
                f"Checked {summary.checked} sites: {summary.queued} queued, "
                f"{summary.already_active} already active, {summary.errors} errors"
            ),
            data=summary.to_dict(),
        ),
        ctx,
    )


@cron.command("cleanup")
@click.option("--timeout", type=click.IntRange(min=1), default=60, show_default=True)
@click.pass_obj
@async_command
async def cron_cleanup(ctx: CLIContext, timeout: int) -> None:
    """Fail running scans older than TIMEOUT minutes."""
    async with open_orchestrator(ctx) as orchestrator:
        summary = await orchestrator.reap_stuck_scans(timeout_minutes=timeout)

    handle_result(
        CommandResult(
            success=True,
            message=(
                f"Cleaned up {summary.reaped} stuck scans "
                f"(timeout: {summary.timeout_minutes} minutes)"
            ),
            data=summary.to_dict(),
        ),
        ctx,
    )


@cron.command("process-queue")
@click.option("--max", "max_concurrent", type=click.IntRange(min=0), default=3, show_default=True)
@click.pass_obj
@async_command
async def cron_process_queue(ctx: CLIContext, max_concurrent: int) -> None:
    """Start queued scans up to the concurrency cap and wait for them."""
    async with open_orchestrator(ctx) as orchestrator:
        summary = await orchestrator.advance_queue(max_concurrent=max_concurrent)
        # The process exits with the command, so started scans must finish first
        await orchestrator.dispatcher.wait_for_pending()

    handle_result(
        CommandResult(
            success=True,
            message=(
                f"Started {len(summary.started)} scans "
                f"({summary.running_before} already running, {len(summary.skipped)} skipped)"
            ),
            data=summary.to_dict(),
        ),
        ctx,
    )


@cli.group()
def scan():
    """Manual scan commands."""
    pass


@scan.command("enqueue")
@click.argument("site_id")
@click.pass_obj
@async_command
async def scan_enqueue(ctx: CLIContext, site_id: str) -> None:
    """Queue a scan for one site."""
    async with open_orchestrator(ctx) as orchestrator:
        result = await orchestrator.lifecycle.enqueue(site_id)

    handle_result(
        CommandResult(
            success=True,
            message=f"Scan {result.scan_id} {result.status.value}",
            data={"status": result.status.value, "scan_id": result.scan_id},
        ),
        ctx,
    )


@scan.command("all")
@click.option("--owner", help="Only sites of this owner")
@click.option(
    "--scope",
    type=click.Choice([s.value for s in BulkScope]),
    default=BulkScope.ALL.value,
    show_default=True,
)
@click.option("--tag", "tags", multiple=True, help="Tag filter (filtered scope)")
@click.option("--group", "group_id", help="Group filter (filtered scope)")
@click.pass_obj
@async_command
async def scan_all(
    ctx: CLIContext,
    owner: Optional[str],
    scope: str,
    tags: tuple[str, ...],
    group_id: Optional[str],
) -> None:
    """Queue scans for every matching site without an active scan."""
    async with open_orchestrator(ctx) as orchestrator:
        summary = await orchestrator.dispatcher.scan_all(
            owner_id=owner,
            scope=scope,
            filters=ScanFilters(tags=list(tags), group_id=group_id),
        )

    handle_result(
        CommandResult(success=True, message=summary.message, data=summary.to_dict()), ctx
    )


@scan.command("diff")
@click.argument("site_id")
@click.argument("scan_id")
@click.pass_obj
@async_command
async def scan_diff(ctx: CLIContext, site_id: str, scan_id: str) -> None:
    """Show the changes recorded by one scan."""
    async with open_orchestrator(ctx) as orchestrator:
        diff = await orchestrator.registry.get_scan_diff(site_id, scan_id)

    if not ctx.json_output:
        table = Table(title=f"Scan {scan_id}")
        table.add_column("Type", style="cyan")
        table.add_column("Detail", style="blue")
        table.add_column("Occurred", style="yellow")
        for item in diff.items:
            table.add_row(
                item["type"], item["detail"] or "", item["occurred_at"].strftime("%Y-%m-%d %H:%M")
            )
        console.print(table)

    handle_result(
        CommandResult(
            success=True,
            message=f"{diff.added} added, {diff.removed} removed, {diff.updated} updated",
            data={
                "scan_id": diff.scan_id,
                "summary": {
                    "added": diff.added,
                    "removed": diff.removed,
                    "updated": diff.updated,
                },
                "items": diff.items,
            },
        ),
        ctx,
    )


@cli.group()
def site():
    """Site management commands."""
    pass


@site.command("discover")
@click.argument("url")
@click.option("--owner", default="cli-user", show_default=True)
@click.option("--tag", "tags", multiple=True, help="Tag to attach to the site")
@click.pass_obj
@async_command
async def site_discover(ctx: CLIContext, url: str, owner: str, tags: tuple[str, ...]) -> None:
    """Register a site and record its baseline snapshot."""
    async with open_orchestrator(ctx) as orchestrator:
        result = await orchestrator.discovery.discover(url, owner, tags=list(tags))

    data = {
        "site_id": result.site.id,
        "baseline_scan_id": result.scan.id,
        "url_count": result.url_count,
    }
    if result.success:
        message = f"Site {result.site.id} registered with {result.url_count} URLs"
        handle_result(CommandResult(success=True, message=message, data=data), ctx)
    else:
        message = f"Site {result.site.id} registered but discovery failed: {result.error}"
        handle_result(
            CommandResult(success=False, message=message, data=data, exit_code=2), ctx
        )


@site.command("list")
@click.option("--owner", help="Only sites of this owner")
@click.pass_obj
@async_command
async def site_list(ctx: CLIContext, owner: Optional[str]) -> None:
    """List registered sites."""
    async with open_orchestrator(ctx) as orchestrator:
        sites = await orchestrator.registry.list_sites(owner_id=owner)

    rows = [
        {
            "id": s.id,
            "root_url": s.root_url,
            "enabled": s.enabled,
            "tags": s.tag_list,
            "scan_interval_minutes": s.scan_interval_minutes,
            "last_scan_at": s.last_scan_at.isoformat() if s.last_scan_at else None,
        }
        for s in sites
    ]

    if not ctx.json_output:
        table = Table()
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Root URL", style="blue")
        table.add_column("Status", justify="center")
        table.add_column("Tags", style="green")
        table.add_column("Last Scan", style="yellow")
        for s in sites:
            table.add_row(
                s.id,
                s.root_url,
                "🟢 Enabled" if s.enabled else "🔴 Disabled",
                ", ".join(s.tag_list),
                s.last_scan_at.strftime("%Y-%m-%d %H:%M") if s.last_scan_at else "Never",
            )
        console.print(table)

    handle_result(
        CommandResult(success=True, message=f"Found {len(sites)} sites", data={"sites": rows}),
        ctx,
    )


@cli.group()
def notify():
    """Notification channel commands."""
    pass


@notify.command("add")
@click.argument("site_id")
@click.argument("channel_type", type=click.Choice([c.value for c in ChannelType]))
@click.argument("target")
@click.option("--secret", help="HMAC secret for webhook channels")
@click.pass_obj
@async_command
async def notify_add(
    ctx: CLIContext, site_id: str, channel_type: str, target: str, secret: Optional[str]
) -> None:
    """Attach a notification channel to a site."""
    async with open_orchestrator(ctx) as orchestrator:
        channel = await orchestrator.registry.add_channel(
            site_id, channel_type, target, secret=secret
        )

    handle_result(
        CommandResult(
            success=True,
            message=f"Added {channel_type} channel {channel.id}",
            data={"channel_id": channel.id, "type": channel_type, "target": target},
        ),
        ctx,
    )


@notify.command("list")
@click.argument("site_id")
@click.pass_obj
@async_command
async def notify_list(ctx: CLIContext, site_id: str) -> None:
    """List the notification channels and legacy webhooks of a site."""
    async with open_orchestrator(ctx) as orchestrator:
        if await orchestrator.registry.get_site(site_id) is None:
            raise NotFoundError(f"Site not found: {site_id}")
        channels = await orchestrator.registry.list_channels(site_id)
        webhooks = await orchestrator.registry.list_webhooks(site_id)

    rows = [{"id": c.id, "type": c.type, "target": c.target} for c in channels]
    rows += [{"id": w.id, "type": "webhook (legacy)", "target": w.target_url} for w in webhooks]

    if not ctx.json_output:
        table = Table()
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Type", style="green")
        table.add_column("Target", style="blue")
        for row in rows:
            table.add_row(row["id"], row["type"], row["target"])
        console.print(table)

    handle_result(
        CommandResult(success=True, message=f"Found {len(rows)} channels", data={"channels": rows}),
        ctx,
    )


@notify.command("remove")
@click.argument("site_id")
@click.argument("channel_id")
@click.pass_obj
@async_command
async def notify_remove(ctx: CLIContext, site_id: str, channel_id: str) -> None:
    """Detach a notification channel from a site."""
    async with open_orchestrator(ctx) as orchestrator:
        await orchestrator.registry.remove_channel(site_id, channel_id)

    handle_result(
        CommandResult(
            success=True,
            message=f"Removed channel {channel_id}",
            data={"channel_id": channel_id},
        ),
        ctx,
    )


@notify.command("webhook")
@click.argument("site_id")
@click.argument("target_url")
@click.option("--secret", help="HMAC secret used to sign deliveries")
@click.pass_obj
@async_command
async def notify_webhook(
    ctx: CLIContext, site_id: str, target_url: str, secret: Optional[str]
) -> None:
    """Register a legacy webhook for a site."""
    async with open_orchestrator(ctx) as orchestrator:
        webhook = await orchestrator.registry.add_webhook(site_id, target_url, secret=secret)

    handle_result(
        CommandResult(
            success=True,
            message=f"Added webhook {webhook.id}",
            data={"webhook_id": webhook.id, "target_url": target_url},
        ),
        ctx,
    )


@notify.command("test")
@click.argument("site_id")
@click.pass_obj
@async_command
async def notify_test(ctx: CLIContext, site_id: str) -> None:
    """Send a synthetic notification to every channel of a site."""
    async with open_orchestrator(ctx) as orchestrator:
        results = await orchestrator.notifier.send_test(site_id)

    deliveries = [
        {
            "channel_type": r.channel_type,
            "target": r.target,
            "success": r.success,
            "attempts": r.attempts,
            "error_message": r.error_message,
        }
        for r in results
    ]
    failed = [d for d in deliveries if not d["success"]]
    handle_result(
        CommandResult(
            success=not failed,
            message=f"Delivered to {len(deliveries) - len(failed)} of {len(deliveries)} channels",
            data={"deliveries": deliveries},
            exit_code=1,
        ),
        ctx,
    )


@cli.command()
@click.pass_obj
@async_command
async def worker(ctx: CLIContext) -> None:
    """Run the periodic scan triggers in-process until interrupted."""
    async with open_orchestrator(ctx) as orchestrator:
        runner = SchedulerRunner(orchestrator)
        console.print("🚀 Sitewatch worker running (Ctrl+C to stop)", style="bold blue")
        await runner.run_forever()


def create_cli() -> click.Group:
    """Create and return the CLI application."""
    return cli


if __name__ == "__main__":
    cli()
