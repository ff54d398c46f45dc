"""
CLI Commands for ledger checks.
"""
import click
from flask.cli import with_appcontext

from ..services.ledger_service import ledger_service
from ..utils.exceptions import RewardsError


@click.group('ledger')
def ledger_cli():
    """Store credit ledger commands."""
    pass


@ledger_cli.command('verify')
@click.option('--customer-id', type=int, required=True, help='Customer ID')
@with_appcontext
def verify(customer_id):
    """Recompute a customer's ledger and compare it with the cached balance."""
    try:
        report = ledger_service.verify_integrity(customer_id)
    except RewardsError as e:
        raise click.ClickException(e.message)

    click.echo(f"Entries: {report['entry_count']}")
    click.echo(f"Ledger sum: {report['ledger_sum']} (cached {report['cached_balance']})")
    click.echo(f"Earned sum: {report['earned_sum']} (cached {report['cached_total_earned']})")
    click.echo(f"Chain breaks: {len(report['chain_breaks'])}")
    click.echo('OK' if report['is_consistent'] else 'INCONSISTENT')

    if not report['is_consistent']:
        raise click.exceptions.Exit(1)


@ledger_cli.command('reconcile')
@click.option('--customer-id', type=int, required=True, help='Customer ID')
@click.option('--balance', required=True, help='Balance reported by Shopify')
@with_appcontext
def reconcile(customer_id, balance):
    """Reconcile a customer's ledger with an externally reported balance."""
    try:
        entry = ledger_service.reconcile(customer_id, balance, triggered_by='cli:reconcile')
    except RewardsError as e:
        raise click.ClickException(e.message)

    if entry is None:
        click.echo('Balances agree; no correction needed')
    else:
        click.echo(f"Correction {entry.amount} appended (balance now {entry.balance})")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(ledger_cli)
