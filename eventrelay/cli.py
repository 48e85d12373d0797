"""
eventrelay CLI - Built with Click.

Operational commands around the outbox:

    eventrelay init-db                         create the outbox tables
    eventrelay crawl --subscribers app.events:register
    eventrelay crawl --once                    run a single crawling cycle
    eventrelay status                          count pending, failed and quarantined events
    eventrelay show EVENT_ID                   print an event with its publications

Configuration comes from the environment (see ``RelayConfig.from_env``);
``--database-url`` overrides DATABASE_URL.
"""

import asyncio
import importlib
import json
from collections.abc import Callable

import click
from rich.console import Console
from rich.json import JSON
from rich.table import Table

from eventrelay.bus.alerting import LoggingAlertSink
from eventrelay.bus.event_bus import EventBus
from eventrelay.bus.registry import SubscriptionRegistry
from eventrelay.core.config import RelayConfig
from eventrelay.core.logger import configure_default_logging
from eventrelay.outbox.crawler import EventCrawler
from eventrelay.outbox.storage import OutboxStorage, create_outbox_storage

console = Console()


def _load_config(ctx: click.Context) -> RelayConfig:
    return ctx.obj["config"]


def _open_storage(config: RelayConfig) -> OutboxStorage:
    return create_outbox_storage(config.storage_url)


def load_subscriber_hook(path: str) -> Callable[[SubscriptionRegistry], None]:
    """
    Resolve ``module:function`` to the function that registers subscriptions.

    Raises:
        click.BadParameter: If the path is malformed or cannot be imported
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        msg = f"expected 'module:function', got {path!r}"
        raise click.BadParameter(msg, param_hint="--subscribers")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        msg = f"cannot import module {module_name!r}: {e}"
        raise click.BadParameter(msg, param_hint="--subscribers") from e

    hook = getattr(module, attr, None)
    if not callable(hook):
        msg = f"{module_name!r} has no callable {attr!r}"
        raise click.BadParameter(msg, param_hint="--subscribers")
    return hook


# ============================================================================
# CLI Group
# ============================================================================


@click.group()
@click.version_option(package_name="eventrelay", prog_name="eventrelay")
@click.option("--database-url", default=None, help="Outbox storage URL")
@click.option("--env-file", type=click.Path(dir_okay=False), default=None, help=".env file to load")
@click.pass_context
def cli(ctx: click.Context, database_url: str | None, env_file: str | None):
    """
    eventrelay - Transactional outbox and event delivery.

    \b
    Commands:
        init-db    Create the outbox schema
        crawl      Deliver pending and failed events
        status     Count events by delivery state
        show       Show one event and its publications
    """
    try:
        config = RelayConfig.from_env(env_file)
    except ValueError as e:
        raise click.UsageError(str(e)) from e
    if database_url:
        config.storage_url = database_url

    configure_default_logging(config.log_level, json_format=config.log_format == "json")
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# ============================================================================
# eventrelay init-db
# ============================================================================


@cli.command("init-db")
@click.pass_context
def init_db_cmd(ctx: click.Context):
    """Create the outbox tables if they do not exist."""
    config = _load_config(ctx)

    async def _run():
        async with _open_storage(config):
            pass

    asyncio.run(_run())
    click.echo(f"Outbox schema ready ({_redact(config.storage_url)})")


# ============================================================================
# eventrelay crawl
# ============================================================================


@cli.command("crawl")
@click.option("--once", is_flag=True, help="Run a single cycle and exit")
@click.option(
    "--subscribers",
    "-s",
    "subscriber_hooks",
    multiple=True,
    help="module:function called with the subscription registry (repeatable)",
)
@click.option("--metrics-port", type=int, default=None, help="Expose Prometheus metrics on this port")
@click.pass_context
def crawl_cmd(
    ctx: click.Context,
    once: bool,
    subscriber_hooks: tuple[str, ...],
    metrics_port: int | None,
):
    """
    Deliver unpublished and failed events to their subscribers.

    \b
    Example:
        eventrelay crawl -s myapp.subscriptions:register
    """
    config = _load_config(ctx)

    registry = SubscriptionRegistry()
    for path in subscriber_hooks:
        load_subscriber_hook(path)(registry)
    if not len(registry):
        click.echo("Warning: no subscriptions registered, events will be marked published", err=True)

    if metrics_port is not None:  # pragma: no cover
        from eventrelay.monitoring.metrics import start_metrics_server

        start_metrics_server(metrics_port)

    async def _run() -> int:
        async with _open_storage(config) as storage:
            bus = EventBus(
                storage,
                registry,
                alert_sink=LoggingAlertSink(),
                quarantine_threshold=config.quarantine_threshold,
            )
            crawler = EventCrawler(storage, bus, config)
            if once:
                return await crawler.process_batch()
            await crawler.start()  # pragma: no cover
            return crawler.get_stats()["events_published"]  # pragma: no cover

    published = asyncio.run(_run())
    click.echo(f"Published {published} event(s)")


# ============================================================================
# eventrelay status
# ============================================================================


@cli.command("status")
@click.option("--json", "as_json", is_flag=True, help="Print machine readable output")
@click.pass_context
def status_cmd(ctx: click.Context, as_json: bool):
    """Count events waiting for delivery, failing and quarantined."""
    config = _load_config(ctx)

    async def _run() -> dict[str, int]:
        async with _open_storage(config) as storage:
            return {
                "unpublished": len(await storage.get_all_unpublished_events()),
                "failed": len(await storage.get_all_failed_events()),
                "quarantined": len(await storage.get_quarantined_events()),
            }

    counts = asyncio.run(_run())

    if as_json:
        click.echo(json.dumps(counts))
        return

    table = Table(title=f"Outbox ({_redact(config.storage_url)})")
    table.add_column("State", style="cyan")
    table.add_column("Events", justify="right")
    for state, count in counts.items():
        table.add_row(state, str(count))
    console.print(table)


# ============================================================================
# eventrelay show
# ============================================================================


@cli.command("show")
@click.argument("event_id")
@click.option("--no-payload", is_flag=True, help="Leave the payload out")
@click.pass_context
def show_cmd(ctx: click.Context, event_id: str, no_payload: bool):
    """Print an event and its publications as JSON."""
    config = _load_config(ctx)

    async def _run():
        async with _open_storage(config) as storage:
            return await storage.get_by_id(event_id)

    event = asyncio.run(_run())
    if event is None:
        raise click.ClickException(f"Event {event_id} not found")

    console.print(JSON(json.dumps(event.to_dict(include_payload=not no_payload), default=str)))


def _redact(url: str) -> str:
    """Hide the password of a database URL."""
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


def main():  # pragma: no cover
    cli(obj={})


if __name__ == "__main__":  # pragma: no cover
    main()
