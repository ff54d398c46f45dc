"""
CLI Commands for order history imports.

`flask migrations run` runs the job in the foreground, which suits a
one-off backfill from a shell or a release task.
"""
import click
from flask.cli import with_appcontext

from ..services.migration_service import MigrationService
from ..models.migration_job import MigrationJob
from ..utils.exceptions import RewardsError


@click.group('migrations')
def migrations_cli():
    """Order history import commands."""
    pass


def _print_job(job):
    click.echo(f"Job {job.id} ({job.shop_domain}): {job.status}")
    click.echo(f"  Total: {job.total_records or 0}")
    click.echo(f"  Processed: {job.processed_records or 0}")
    click.echo(f"  Skipped: {job.skipped_records or 0}")
    click.echo(f"  Failed: {job.failed_records or 0}")
    click.echo(f"  Progress: {job.progress_percent}%")
    for error in (job.errors or [])[:5]:
        click.echo(f"    - Order {error.get('order_id')}: {error.get('error')}")


@migrations_cli.command('run')
@click.option('--shop', 'shop_domain', required=True, help='Shop domain')
@click.option('--start-date', help='Only import orders created on or after this date (YYYY-MM-DD)')
@click.option('--end-date', help='Only import orders created on or before this date (YYYY-MM-DD)')
@click.option('--batch-size', type=int, help='Orders per page (max 250)')
@click.option('--update-tiers/--no-update-tiers', default=True, help='Re-evaluate tiers during and after the import')
@with_appcontext
def run_migration(shop_domain, start_date, end_date, batch_size, update_tiers):
    """Import a shop's paid order history into the cashback ledger."""
    service = MigrationService(shop_domain)
    try:
        job = service.start_job(
            start_date=start_date,
            batch_size=batch_size,
            end_date=end_date,
            update_tiers=update_tiers,
        )
        click.echo(f"Started job {job.id} for {shop_domain}")
        job = service.run_job(job.id)
    except RewardsError as e:
        raise click.ClickException(e.message)

    _print_job(job)


@migrations_cli.command('status')
@click.option('--job-id', type=int, required=True, help='Migration job ID')
@with_appcontext
def migration_status(job_id):
    """Show a job's progress."""
    job = MigrationJob.query.get(job_id)
    if not job:
        raise click.ClickException(f"Migration job {job_id} not found")
    _print_job(job)


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(migrations_cli)
