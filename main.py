#!/usr/bin/env python3
"""
FeedRelay - Feed Ingestion and Notification Relay
=================================================

Main application entry point with CLI interface for management and operation.

Usage:
    python main.py --help                      # Show all commands
    python main.py check-config                # Validate configuration
    python main.py init-db                     # Initialize database
    python main.py run                         # Poll feeds until interrupted
    python main.py scan FEED_ID                # Scan one feed now
    python main.py test-rule KEYWORD TEXT      # Try a keyword rule
    python main.py stats weekly                # Per-day scan totals
"""

import sys
import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from feedrelay.application import Application
from feedrelay.config.settings import get_settings
from feedrelay.database.models import StatsRange
from feedrelay.database.schema import DatabaseSchema
from feedrelay.database.connection import get_db_manager
from feedrelay.routing.keyword_router import KeywordRouter
from feedrelay.utils.logging import configure_application_logging
from feedrelay.utils.exceptions import FeedRelayError, handle_exception, get_user_friendly_message

console = Console()
logger = logging.getLogger(__name__)

RANGE_CHOICES = [r.value for r in StatsRange]


def _configure_logging(debug: bool) -> None:
    settings = get_settings()
    configure_application_logging(
        log_level="DEBUG" if debug else settings.get_effective_log_level(),
        log_file=settings.logging.file_path,
        enable_console=settings.logging.console_logging,
        structured_logging=settings.logging.structured_logging,
        max_file_size=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )


def _fail(message: str, code: int = 1) -> None:
    console.print(f"[bold red]❌ {message}[/bold red]")
    sys.exit(code)


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.pass_context
def cli(ctx, debug):
    """FeedRelay - relay new feed items to Discord and Telegram."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
def check_config():
    """Validate environment configuration."""
    console.print("[bold blue]🔧 Checking FeedRelay Configuration[/bold blue]")

    try:
        settings = get_settings()

        table = Table(title="Configuration Status")
        table.add_column("Component", style="cyan")
        table.add_column("Status", style="green")
        table.add_column("Details")

        checks = [
            ("Database", _check_database_config),
            ("Logging", _check_logging_config),
            ("Scheduler", _check_scheduler_config),
            ("Delivery", _check_delivery_config),
        ]

        all_passed = True
        for name, check_func in checks:
            status, details = check_func(settings)
            table.add_row(name, "✅ Valid" if status else "❌ Invalid", details)
            all_passed = all_passed and status

        console.print(table)

        if all_passed:
            console.print("[bold green]✅ All configuration checks passed![/bold green]")
        else:
            _fail("Configuration validation failed")

    except FeedRelayError as e:
        _fail(f"Configuration error: {e}")


@cli.command()
@click.option('--reset', is_flag=True, help='Drop every table before creating the schema')
def init_db(reset):
    """Initialize database with schema."""
    console.print("[bold blue]🗄️ Initializing FeedRelay Database[/bold blue]")

    try:
        settings = get_settings()
        Path(settings.database.path).parent.mkdir(parents=True, exist_ok=True)

        schema = DatabaseSchema(settings.database.path)
        if reset:
            click.confirm('This deletes all feeds, routes and statistics. Continue?', abort=True)
            schema.drop_tables()
        schema.create_tables()

        if not schema.verify_schema():
            _fail("Database schema verification failed")

        console.print("[bold green]✅ Database initialized successfully![/bold green]")

        info = get_db_manager(settings.database.path).get_database_info()
        info_table = Table(title="Database Information")
        info_table.add_column("Property", style="cyan")
        info_table.add_column("Value", style="green")
        info_table.add_row("Database Path", settings.database.path)
        info_table.add_row("Size", f"{info['database_size_mb']:.2f} MB")
        for table_name, count in info['table_counts'].items():
            info_table.add_row(f"Rows in {table_name}", str(count))
        console.print(info_table)

    except FeedRelayError as e:
        _fail(f"Database initialization error: {e}")


@cli.command()
@click.pass_context
def run(ctx):
    """Start the scheduler and relay notifications until interrupted."""
    _configure_logging(ctx.obj.get('debug', False))

    async def serve():
        app = Application.build()
        count = await app.start()
        console.print(f"[bold green]🚀 FeedRelay running with {count} feeds (Ctrl+C to stop)[/bold green]")
        try:
            await asyncio.Event().wait()
        finally:
            await app.shutdown()

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 FeedRelay stopped[/yellow]")
    except Exception as e:
        error = handle_exception(e, logger, "run")
        _fail(get_user_friendly_message(error))


@cli.command()
@click.argument('feed_id')
@click.pass_context
def scan(ctx, feed_id):
    """Scan one feed now and deliver its new items."""
    _configure_logging(ctx.obj.get('debug', False))

    async def run_scan():
        app = Application.build()
        feed = app.feed_service.get_feed(feed_id)
        await app.scheduler.register_feed(feed, delay=3600)
        try:
            report = await app.scheduler.scan_feed(feed_id)
        finally:
            await app.shutdown()
        return report

    try:
        report = asyncio.run(run_scan())
    except FeedRelayError as e:
        _fail(str(e))
        return

    if report is None:
        _fail("A scan for this feed is already running")
        return

    table = Table(title=f"Scan of {feed_id}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Status", report.status.value)
    table.add_row("Details", report.status_details)
    table.add_row("Items", str(report.items_found))
    table.add_row("New items", str(len(report.new_items)))
    table.add_row("Notifications", str(report.notifications_queued))
    table.add_row("Bytes", str(report.bytes_transferred))
    table.add_row("Time", f"{report.processing_time_ms} ms")
    console.print(table)

    for item in report.new_items:
        console.print(f"  • [bold]{item.title or 'Untitled'}[/bold] {item.link or ''}")

    if not report.success:
        sys.exit(1)


@cli.command()
@click.argument('keyword')
@click.argument('content')
@click.option('--regex', 'is_regex', is_flag=True, help='Treat keyword as a regular expression')
@click.option('--case-sensitive', is_flag=True, help='Match case exactly')
def test_rule(keyword, content, is_regex, case_sensitive):
    """Check whether KEYWORD matches CONTENT."""
    try:
        matched = KeywordRouter().test_rule(keyword, content, is_regex, case_sensitive)
    except FeedRelayError as e:
        _fail(e.user_message)
        return

    if matched:
        console.print("[bold green]✅ Match[/bold green]")
    else:
        console.print("[yellow]No match[/yellow]")
        sys.exit(1)


@cli.command()
@click.argument('range_name', metavar='RANGE', type=click.Choice(RANGE_CHOICES))
@click.option('--feed', 'feed_id', help='Restrict to one feed')
@click.option('--summary', is_flag=True, help='Show per-feed totals instead of per-day rows')
def stats(range_name, feed_id, summary):
    """Show scan statistics for a time range."""
    app = Application.build()

    if summary:
        table = Table(title=f"Feed summary ({range_name})")
        table.add_column("Feed", style="cyan")
        table.add_column("Scans", justify="right")
        table.add_column("Bytes", justify="right")
        for row in app.stats.get_feed_summary(range_name):
            table.add_row(row['title'] or row['id'], str(row['scan_count']), str(row['total_bytes']))
        console.print(table)
        return

    table = Table(title=f"Scan statistics ({range_name})")
    table.add_column("Date", style="cyan")
    table.add_column("Scans", justify="right")
    table.add_column("Bytes", justify="right")
    table.add_column("Avg time (ms)", justify="right")
    rows = app.stats.get_stats(range_name, feed_id=feed_id)
    for row in rows:
        table.add_row(
            row['date'],
            str(row['total_items']),
            str(row['total_bytes']),
            f"{row['avg_processing_time'] or 0:.2f}",
        )
    console.print(table)
    if not rows:
        console.print("[yellow]⚠️ No scans recorded in this range[/yellow]")


@cli.command()
@click.argument('range_name', metavar='RANGE', type=click.Choice(RANGE_CHOICES), default='all-time')
@click.option('--feed', 'feed_id', help='Restrict to one feed')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write to a file instead of stdout')
def export_stats(range_name, feed_id, output):
    """Export per-day statistics as CSV."""
    csv_text = Application.build().stats.export_csv(range_name, feed_id=feed_id)
    if output:
        Path(output).write_text(csv_text, encoding='utf-8')
        console.print(f"[bold green]✅ Statistics written to {output}[/bold green]")
    else:
        click.echo(csv_text, nl=False)


@cli.command()
@click.confirmation_option(prompt='Delete all recorded statistics?')
def clear_stats():
    """Delete every recorded scan statistic."""
    try:
        removed = Application.build().stats.clear_stats()
    except FeedRelayError as e:
        _fail(str(e))
        return
    console.print(f"[bold green]✅ Removed {removed} records[/bold green]")


@cli.command()
def list_feeds():
    """Show all feeds with their status."""
    feeds = Application.build().feed_service.list_feeds()
    if not feeds:
        console.print("[yellow]⚠️ No feeds found in database[/yellow]")
        return

    table = Table(title="Feeds")
    table.add_column("ID", style="dim")
    table.add_column("Status", style="green")
    table.add_column("Title", style="cyan")
    table.add_column("Interval", justify="right")
    table.add_column("Details")
    table.add_column("Last Checked")

    for feed in feeds:
        status = "⏸️" if feed.paused else {"ok": "🟢", "error": "🔴"}.get(feed.status.value, "🟡")
        title = feed.title if len(feed.title) <= 30 else feed.title[:27] + "..."
        table.add_row(
            feed.id,
            status,
            title,
            f"{feed.interval} min",
            feed.status_details,
            str(feed.last_checked) if feed.last_checked else "Never",
        )
    console.print(table)


@cli.command()
@click.argument('title')
@click.argument('url')
@click.option('--interval', type=int, help='Minutes between scans')
@click.option('--integration', 'integrations', multiple=True, help='Default integration id (repeatable)')
def add_feed(title, url, interval, integrations):
    """Add a feed. Fields are detected from the source."""

    async def run_add():
        app = Application.build()
        return await app.feed_service.add_feed(
            title, url, interval=interval, associated_integrations=list(integrations)
        )

    try:
        feed = asyncio.run(run_add())
    except FeedRelayError as e:
        _fail(e.user_message)
        return
    console.print(f"[bold green]✅ Added feed {feed.id}[/bold green] fields: {', '.join(feed.selected_fields)}")


@cli.command()
@click.argument('feed_id')
def delete_feed(feed_id):
    """Delete a feed with its routes and statistics."""

    async def run_delete():
        await Application.build().feed_service.delete_feed(feed_id)

    try:
        asyncio.run(run_delete())
    except FeedRelayError as e:
        _fail(e.user_message)
        return
    console.print(f"[bold green]✅ Deleted feed {feed_id}[/bold green]")


@cli.command()
@click.argument('feed_id')
@click.option('--resume', is_flag=True, help='Resume instead of pausing')
def pause(feed_id, resume):
    """Pause (or resume) polling of a feed."""

    async def run_pause():
        return await Application.build().feed_service.set_paused(feed_id, not resume)

    try:
        feed = asyncio.run(run_pause())
    except FeedRelayError as e:
        _fail(e.user_message)
        return
    console.print(f"[bold green]✅ {feed.title} {'paused' if feed.paused else 'resumed'}[/bold green]")


@cli.command()
@click.argument('name')
@click.argument('integration_type', metavar='TYPE', type=click.Choice(['discord', 'telegram']))
@click.option('--webhook-url', help='Discord webhook URL')
@click.option('--token', help='Telegram bot token')
@click.option('--chat-id', help='Telegram chat id')
def add_integration(name, integration_type, webhook_url, token, chat_id):
    """Add a Discord or Telegram destination."""
    try:
        integration = Application.build().integration_service.add(
            name, integration_type, webhook_url=webhook_url, token=token, chat_id=chat_id
        )
    except FeedRelayError as e:
        _fail(e.user_message)
        return
    console.print(f"[bold green]✅ Added integration {integration.id}[/bold green]")


@cli.command()
def list_integrations():
    """Show configured destinations."""
    table = Table(title="Integrations")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="green")
    for integration in Application.build().integration_service.list():
        table.add_row(integration.id, integration.name, integration.type.value)
    console.print(table)


@cli.command()
@click.argument('feed_id')
@click.argument('keyword')
@click.argument('integration_id')
@click.option('--regex', 'is_regex', is_flag=True, help='Treat keyword as a regular expression')
@click.option('--case-sensitive', is_flag=True, help='Match case exactly')
@click.option('--field', 'fields', multiple=True, help='Restrict matching to a field (repeatable)')
def add_route(feed_id, keyword, integration_id, is_regex, case_sensitive, fields):
    """Route items of FEED_ID matching KEYWORD to INTEGRATION_ID."""
    try:
        route = Application.build().route_service.create_route(
            feed_id,
            keyword,
            integration_id,
            is_regex=is_regex,
            case_sensitive=case_sensitive,
            fields=list(fields),
        )
    except FeedRelayError as e:
        _fail(e.user_message)
        return
    console.print(f"[bold green]✅ Added route {route.id}[/bold green]")


# Helper functions for configuration checks
def _check_database_config(settings) -> tuple[bool, str]:
    """Check database configuration."""
    try:
        db_path = Path(settings.database.path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return True, f"Path: {settings.database.path}"
    except OSError as e:
        return False, str(e)


def _check_logging_config(settings) -> tuple[bool, str]:
    """Check logging configuration."""
    try:
        if settings.logging.file_path:
            Path(settings.logging.file_path).parent.mkdir(parents=True, exist_ok=True)
        return True, f"Level: {settings.logging.level.value}, Console: {settings.logging.console_logging}"
    except OSError as e:
        return False, str(e)


def _check_scheduler_config(settings) -> tuple[bool, str]:
    scheduler = settings.scheduler
    return True, (
        f"Default interval: {scheduler.default_interval_minutes} min, "
        f"history: {scheduler.history_capacity}, "
        f"startup delay: {scheduler.startup_delay_min_seconds}-{scheduler.startup_delay_max_seconds}s"
    )


def _check_delivery_config(settings) -> tuple[bool, str]:
    delivery = settings.delivery
    if delivery.min_send_interval_seconds < 1:
        return True, f"Send spacing {delivery.min_send_interval_seconds}s is below 1s, channels may rate limit"
    return True, f"Send spacing: {delivery.min_send_interval_seconds}s"


if __name__ == "__main__":
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 FeedRelay interrupted by user[/yellow]")
        sys.exit(130)
