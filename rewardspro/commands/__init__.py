"""
CLI Commands for RewardsPro.

Provides Flask CLI commands for tier maintenance, order history imports
and ledger checks.

Usage:
    flask tiers seed --shop example.myshopify.com              # Create default tiers
    flask tiers evaluate-all --shop example.myshopify.com      # Re-evaluate every customer
    flask tiers process-expirations                            # Revert expired assignments

    flask migrations run --shop example.myshopify.com          # Import paid order history
    flask migrations status --job-id 1                         # Show job progress

    flask ledger verify --customer-id 1                        # Recompute a customer's ledger
    flask ledger reconcile --customer-id 1 --balance 12.50     # Reconcile with Shopify
"""
from .tiers import init_app as init_tier_commands
from .migrations import init_app as init_migration_commands
from .ledger import init_app as init_ledger_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_tier_commands(app)
    init_migration_commands(app)
    init_ledger_commands(app)
