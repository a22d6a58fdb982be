# Overview: Flask CLI commands for inspecting and driving the offline sync core.

# backend/stocksync/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "stocksync:create_app".
# - Use: python -m flask sync <command> [options]
#
# - python -m flask sync status
#   Connectivity-independent summary: pending count, cursor, last sync, dirty entities.
# - python -m flask sync pending
#   Pending mutation records in replay order.
# - python -m flask sync alerts --days 30
#   Low-stock products and products expiring within the window.
# - python -m flask sync run
#   One reconciliation pass against REMOTE_STORE_URL.
# - python -m flask sync serve
#   Run the core (probe, periodic sync) until interrupted.

import asyncio

import click
from flask import current_app
from flask.cli import with_appcontext

from .events import SyncConflict, SyncExhausted, SyncFailed
from .services.local_store import LocalStore
from .services.network_monitor import Connectivity
from .services.sync_core import build_sync_core
from .services.alerts_service import DerivedAlertsEngine
from .time_utils import to_utc_z


def _open_store() -> LocalStore:
    return LocalStore.from_url(current_app.config["SQLALCHEMY_DATABASE_URI"])


@click.group('sync')
def sync_group():
    """Offline sync inspection and control."""


@sync_group.command('status')
@with_appcontext
def status_cli():
    """Show pending count, cursor and dirty entities."""
    store = _open_store()
    try:
        cursor = store.get_cursor()
        dirty = store.dirty_snapshots()

        click.echo(f"Pending mutations: {store.count_pending()}")
        click.echo(f"Cursor revision:   {cursor.revision or 0}")
        click.echo(f"Last synced at:    {to_utc_z(cursor.last_synced_at) or 'never'}")
        click.echo(f"Dirty entities:    {len(dirty)}")
        for snapshot in dirty:
            flag = " (deleted)" if snapshot.deleted else ""
            click.echo(f"  - {snapshot.entity_type}:{snapshot.entity_id}{flag}")
    finally:
        store.dispose()


@sync_group.command('pending')
@with_appcontext
def pending_cli():
    """List pending mutation records in replay order."""
    store = _open_store()
    try:
        records = store.pending_records()
        if not records:
            click.echo("No pending mutations.")
            return

        click.echo("\n" + "="*100)
        click.echo(f"{'Seq':<6} {'Kind':<8} {'Entity':<30} {'Attempts':<9} {'Queued':<22} {'Last error'}")
        click.echo("="*100)
        for record in records:
            entity = f"{record.entity_type}:{record.entity_id}"
            error = (record.last_error or "-")[:30]
            click.echo(f"{record.seq:<6} {record.kind:<8} {entity:<30} {record.attempts:<9} "
                       f"{to_utc_z(record.client_timestamp):<22} {error}")
        click.echo("="*100 + "\n")
    finally:
        store.dispose()


@sync_group.command('alerts')
@click.option('--days', type=int, default=None, help='Expiry window in days (default: ALERT_EXPIRY_HORIZON_DAYS)')
@with_appcontext
def alerts_cli(days):
    """List low-stock and soon-to-expire products."""
    if days is None:
        days = current_app.config["ALERT_EXPIRY_HORIZON_DAYS"]
    if days < 0:
        raise click.BadParameter("must be >= 0", param_hint="--days")

    store = _open_store()
    alerts = DerivedAlertsEngine(store, horizon_days=days)
    try:
        low = alerts.low_stock()
        click.echo(f"Low stock ({len(low)}):")
        for product in low:
            payload = product.payload
            click.echo(f"  - {product.entity_id:<20} {payload.get('name', ''):<30} "
                       f"qty={payload.get('quantity')} threshold={payload.get('reorder_threshold')}")

        expiring = alerts.expiring_within(days)
        click.echo(f"Expiring within {days} days ({len(expiring)}):")
        for product in expiring:
            payload = product.payload
            click.echo(f"  - {product.entity_id:<20} {payload.get('name', ''):<30} expires {payload.get('expiry_date')}")
    finally:
        alerts.close()
        store.dispose()


def _log_event(logger, event):
    if isinstance(event, SyncConflict):
        logger.warning("Conflict abandoned %s %s; local payload %s", event.kind, event.entity_id, event.payload)
    elif isinstance(event, SyncExhausted):
        logger.warning("Gave up on %s %s after %d attempts: %s", event.kind, event.entity_id, event.attempts, event.error)
    elif isinstance(event, SyncFailed):
        logger.error("Sync failed: %s", event.error)


@sync_group.command('run')
@with_appcontext
def run_cli():
    """Run one reconciliation pass now."""
    app = current_app._get_current_object()

    async def _run():
        # An explicit run assumes the remote store is reachable
        core = build_sync_core(app, initial=Connectivity.ONLINE)
        core.on_sync_event(lambda event: _log_event(app.logger, event))
        try:
            return await core.sync_once("cli")
        finally:
            await core.aclose()
            core.store.dispose()

    result = asyncio.run(_run())

    if result.failed:
        raise click.ClickException(f"Sync aborted: {result.error}")
    click.echo(f"PASS pushed={result.pushed} pulled={result.pulled} "
               f"abandoned={result.abandoned} deferred={result.deferred}")


@sync_group.command('serve')
@with_appcontext
def serve_cli():
    """Run the sync core until interrupted (Ctrl+C)."""
    app = current_app._get_current_object()

    async def _serve():
        core = build_sync_core(app)
        core.on_sync_event(lambda event: _log_event(app.logger, event))
        core.on_connectivity_change(
            lambda state: app.logger.info("Remote store %s", "reachable" if state is Connectivity.ONLINE else "unreachable")
        )
        core.on_alerts_changed(
            lambda summary: app.logger.info(
                "Alerts: %d low stock, %d expiring", summary.low_stock_count, summary.expiring_count
            )
        )
        await core.start()
        try:
            await asyncio.Event().wait()
        finally:
            await core.aclose()
            core.store.dispose()

    click.echo("Sync core running; press Ctrl+C to stop.")
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        pass
    click.echo("Stopped.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(sync_group)
