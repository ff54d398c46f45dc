"""
CLI Commands for tier maintenance.

# Expired manual/promotional assignments (also run by the scheduler at 1 AM UTC)
0 1 * * * cd /app && flask tiers process-expirations
"""
import click
from flask.cli import with_appcontext

from ..models.shop import Shop
from ..services.tier_catalog import TierCatalog
from ..services.tier_evaluator import TierEvaluator
from ..utils.exceptions import RewardsError


@click.group('tiers')
def tiers_cli():
    """Tier management commands."""
    pass


@tiers_cli.command('seed')
@click.option('--shop', 'shop_domain', required=True, help='Shop domain')
@with_appcontext
def seed_tiers(shop_domain):
    """Create the default Bronze/Silver/Gold/Platinum tiers."""
    try:
        tiers = TierCatalog(shop_domain).seed_default_tiers()
    except RewardsError as e:
        raise click.ClickException(e.message)

    if not tiers:
        click.echo(f"{shop_domain} already has tiers; nothing seeded")
        return

    for tier in tiers:
        click.echo(f"  {tier.level}. {tier.name}: {tier.cashback_percent}% (min spend {tier.min_spend or 0})")
    click.echo(f"Seeded {len(tiers)} tiers for {shop_domain}")


@tiers_cli.command('evaluate-all')
@click.option('--shop', 'shop_domain', required=True, help='Shop domain')
@click.option('--batch-size', type=int, default=100, show_default=True, help='Customers per batch')
@with_appcontext
def evaluate_all(shop_domain, batch_size):
    """Re-evaluate every customer's tier against their qualifying spend."""
    result = TierEvaluator(shop_domain).evaluate_all(batch_size=batch_size, triggered_by='cli:evaluate-all')

    click.echo(f"Processed: {result['processed']} customers")
    click.echo(f"  Upgraded: {result['upgraded']}")
    click.echo(f"  Downgraded: {result['downgraded']}")
    click.echo(f"  Enrolled: {result['enrolled']}")
    click.echo(f"  Reverted: {result['reverted']}")
    click.echo(f"  Unchanged: {result['unchanged']}")

    if result['errors']:
        click.echo(f"  Errors: {len(result['errors'])}")
        for error in result['errors'][:5]:
            click.echo(f"    - Customer {error['customer_id']}: {error['error']}")


@tiers_cli.command('process-expirations')
@click.option('--shop', 'shop_domain', help='Specific shop (or all active shops if not specified)')
@with_appcontext
def process_expirations(shop_domain):
    """Revert expired manual/promotional tier assignments."""
    if shop_domain:
        shop_domains = [shop_domain]
    else:
        shop_domains = [s.shop_domain for s in Shop.query.filter_by(is_active=True).all()]

    total_reverted = 0
    for domain in shop_domains:
        result = TierEvaluator(domain).process_expired_memberships()
        click.echo(f"{domain}: {result['processed']} expired, {result['reverted']} reverted, {result['errors']} errors")
        total_reverted += result['reverted']

    click.echo(f"\nTOTAL: {total_reverted} reverted")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(tiers_cli)
