"""
Channel Sync CLI
Worker processes, the scheduler and administrative commands for the channel sync engine
"""

import asyncio
import json
import signal

import click
import yaml

from channel_sync.config import get_settings
from channel_sync.errors import ChannelSyncError
from channel_sync.queue.messages import InboundTrigger
from channel_sync.runtime import SyncRuntime
from channel_sync.utils.crypto import CredentialCipher
from channel_sync.utils.logging import configure_logging

CONFIG_OPTION_KEYS = {
    "sync_enabled",
    "sync_reservations_inbound",
    "sync_reservations_outbound",
    "sync_guests_inbound",
    "sync_guests_outbound",
    "sync_room_types_inbound",
    "sync_room_types_outbound",
    "sync_rooms_inbound",
    "sync_availability",
    "sync_rates",
    "sync_interval_minutes",
}


async def _run_until_stopped(*workers) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: [worker.stop() for worker in workers])
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass
    await asyncio.gather(*(worker.run() for worker in workers))


@click.group()
@click.option('--log-level', default=None, help='Override CHANNEL_SYNC_LOG_LEVEL')
@click.option('--console-logs', is_flag=True, help='Human-readable logs instead of JSON')
@click.pass_context
def cli(ctx, log_level, console_logs):
    """Hotel channel sync engine"""
    settings = get_settings()
    configure_logging(log_level or settings.log_level, json_logs=settings.log_json and not console_logs)
    ctx.ensure_object(dict)
    ctx.obj['settings'] = settings


@cli.command('outbound-worker')
@click.option('--concurrency', default=1, show_default=True, help='Number of sequential consumers')
@click.pass_context
def outbound_worker(ctx, concurrency):
    """Consume the outbound channel and push local changes"""

    async def _run():
        runtime = SyncRuntime(ctx.obj['settings'])
        try:
            workers = [runtime.outbound_dispatcher() for _ in range(concurrency)]
            await _run_until_stopped(*workers)
        finally:
            await runtime.aclose()

    asyncio.run(_run())


@cli.command('inbound-worker')
@click.pass_context
def inbound_worker(ctx):
    """Consume inbound triggers and run pulls"""

    async def _run():
        runtime = SyncRuntime(ctx.obj['settings'])
        try:
            await _run_until_stopped(runtime.inbound_worker())
        finally:
            await runtime.aclose()

    asyncio.run(_run())


@cli.command('scheduler')
@click.pass_context
def scheduler(ctx):
    """Enqueue incremental pulls as configurations fall due"""

    async def _run():
        runtime = SyncRuntime(ctx.obj['settings'])
        try:
            await _run_until_stopped(runtime.scheduler())
        finally:
            await runtime.aclose()

    asyncio.run(_run())


@cli.command('sync')
@click.argument('config_id')
@click.option('--full/--incremental', default=False, help='Sync mode (default: incremental)')
@click.option('--inline', is_flag=True, help='Run in this process instead of enqueueing')
@click.pass_context
def sync(ctx, config_id, full, inline):
    """Trigger an inbound sync for one configuration"""

    async def _sync():
        runtime = SyncRuntime(ctx.obj['settings'])
        try:
            admin = runtime.admin(with_runner=inline)
            if full:
                result = await admin.run_full_sync(config_id, inline=inline)
            else:
                result = await admin.run_incremental_sync(config_id, inline=inline)
        except ChannelSyncError as e:
            click.echo(f"✗ Sync failed: {e.message}", err=True)
            return 1
        finally:
            await runtime.aclose()

        if isinstance(result, InboundTrigger):
            click.echo(f"✓ {result.mode.value} sync queued: {result.message_id}")
            return 0

        click.echo(f"✓ {result.mode.value} sync {result.status.value}: {result.id}")
        click.echo(f"  Processed: {result.counts.processed}")
        click.echo(f"  Created: {result.counts.created}")
        click.echo(f"  Updated: {result.counts.updated}")
        click.echo(f"  Failed: {result.counts.failed}")
        if result.cursor:
            click.echo(f"  Cursor: {result.cursor.isoformat()}")
        return 0

    ctx.exit(asyncio.run(_sync()))


@cli.command('test-connection')
@click.argument('config_id')
@click.pass_context
def test_connection(ctx, config_id):
    """Check that a configuration's credentials reach the remote API"""

    async def _test():
        runtime = SyncRuntime(ctx.obj['settings'])
        try:
            result = await runtime.admin().test_connection(config_id)
        except ChannelSyncError as e:
            click.echo(f"✗ {e.message}", err=True)
            return 1
        finally:
            await runtime.aclose()

        click.echo(json.dumps(result.model_dump(), indent=2))
        return 0 if result.success else 1

    ctx.exit(asyncio.run(_test()))


@cli.command('init-db')
@click.pass_context
def init_db(ctx):
    """Create the sync tables"""

    async def _init():
        runtime = SyncRuntime(ctx.obj['settings'])
        try:
            await runtime.database.create_tables()
            click.echo("✓ Sync tables created")
        finally:
            await runtime.aclose()

    asyncio.run(_init())


@cli.command('load-configs')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def load_configs(ctx, path):
    """Create sync configurations from a YAML file of accounts"""
    with open(path) as f:
        document = yaml.safe_load(f) or {}

    accounts = document.get('configurations', []) if isinstance(document, dict) else document
    if not isinstance(accounts, list):
        raise click.BadParameter("expected a list of configurations", param_hint='path')

    async def _load():
        runtime = SyncRuntime(ctx.obj['settings'])
        try:
            for account in accounts:
                options = {key: value for key, value in account.items() if key in CONFIG_OPTION_KEYS}
                config = await runtime.configurations.create(
                    hotel_id=str(account['hotel_id']),
                    base_url=account['base_url'],
                    api_key=account['api_key'],
                    remote_hotel_id=str(account['remote_hotel_id']),
                    **options,
                )
                click.echo(f"✓ Configuration created: {config.id} (hotel {config.hotel_id})")
            return 0
        except (ChannelSyncError, KeyError) as e:
            click.echo(f"✗ Failed to load configurations: {e}", err=True)
            return 1
        finally:
            await runtime.aclose()

    ctx.exit(asyncio.run(_load()))


@cli.command('generate-key')
def generate_key():
    """Print a new key for CHANNEL_SYNC_ENCRYPTION_KEY"""
    click.echo(CredentialCipher.generate_key())


if __name__ == '__main__':
    cli()
