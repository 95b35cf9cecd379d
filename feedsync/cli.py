"""CLI commands for the application."""

import json

import click
from flask.cli import with_appcontext

from feedsync.domain.sync_run import SyncMode
from feedsync.extensions import db
from feedsync.services.container import container

@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create database tables."""
    click.echo("Creating database tables...")
    db.create_all()
    click.echo("Database tables created!")

@click.command('run-sync')
@click.option('--mode', type=click.Choice([m.value for m in SyncMode]), default=SyncMode.INCREMENTAL.value,
              help='Incremental pull since the watermark, or a full pull')
@click.option('--wait/--no-wait', default=True, help='Wait for the run to finish')
@with_appcontext
def run_sync_command(mode, wait):
    """Trigger a sync run."""
    orchestrator = container().get('sync_orchestrator')
    sync_id = orchestrator.trigger_sync(mode, trigger="cli", wait=wait)
    run = orchestrator.get_sync_status(sync_id)

    click.echo(f"Sync {sync_id}: {run.stage.value if run else 'unknown'}")
    if run and run.message:
        click.echo(run.message)
    if run and run.error_detail:
        click.echo(f"Error: {run.error_detail}", err=True)
        raise SystemExit(1)

@click.command('sync-status')
@click.argument('sync_id')
@with_appcontext
def sync_status_command(sync_id):
    """Show the status of a sync run."""
    run = container().get('sync_orchestrator').get_sync_status(sync_id)
    if run is None:
        click.echo(f"Sync {sync_id} not found or expired", err=True)
        raise SystemExit(1)
    click.echo(json.dumps(run.to_dict(), indent=2))

@click.command('queue-stats')
@with_appcontext
def queue_stats_command():
    """Show change queue depth."""
    stats = container().get('change_queue').stats()
    for key, value in stats.items():
        click.echo(f"{key}: {value}")

@click.command('requeue-dead')
@click.option('--id', 'entry_ids', type=int, multiple=True, help='Entry to requeue; repeat for several. Default: all')
@with_appcontext
def requeue_dead_command(entry_ids):
    """Move dead-lettered changes back to the pending queue."""
    count = container().get('change_queue').requeue_dead(list(entry_ids) if entry_ids else None)
    click.echo(f"Requeued {count} changes")

@click.command('cleanup-statuses')
@with_appcontext
def cleanup_statuses_command():
    """Purge sync statuses past the retention window."""
    count = container().get('progress_tracker').cleanup()
    click.echo(f"Removed {count} expired sync statuses")

def register_commands(app):
    """Register CLI commands with the Flask application."""
    app.cli.add_command(init_db_command)
    app.cli.add_command(run_sync_command)
    app.cli.add_command(sync_status_command)
    app.cli.add_command(queue_stats_command)
    app.cli.add_command(requeue_dead_command)
    app.cli.add_command(cleanup_statuses_command)
