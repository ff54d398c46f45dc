"""Initial cashback schema: shops, customers, ledger, tiers, memberships, transactions, import jobs

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create the cashback engine tables."""
    op.create_table(
        'shops',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_domain', sa.String(255), nullable=False),
        sa.Column('shop_name', sa.String(255), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_shops'))
    )
    op.create_index('ix_shops_shop_domain', 'shops', ['shop_domain'], unique=True)

    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_domain', sa.String(255), nullable=False),
        sa.Column('external_customer_id', sa.String(50), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('store_credit', sa.Numeric(18, 6), nullable=False),
        sa.Column('total_earned', sa.Numeric(18, 6), nullable=False),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_customers')),
        sa.UniqueConstraint('shop_domain', 'external_customer_id', name='uq_shop_external_customer')
    )
    op.create_index('ix_customers_shop_domain', 'customers', ['shop_domain'])

    op.create_table(
        'tiers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_domain', sa.String(255), nullable=False),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('min_spend', sa.Numeric(18, 6), nullable=True),
        sa.Column('cashback_percent', sa.Numeric(5, 2), nullable=False),
        sa.Column('evaluation_period', sa.String(20), nullable=False),
        sa.Column('benefits', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_tiers')),
        sa.UniqueConstraint('shop_domain', 'name', name='uq_shop_tier_name'),
        sa.UniqueConstraint('shop_domain', 'level', name='uq_shop_tier_level')
    )
    op.create_index('ix_tiers_shop_domain', 'tiers', ['shop_domain'])

    op.create_table(
        'store_credit_ledger',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('shop_domain', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(18, 6), nullable=False),
        sa.Column('balance', sa.Numeric(18, 6), nullable=False),
        sa.Column('entry_type', sa.String(40), nullable=False),
        sa.Column('source', sa.String(30), nullable=False),
        sa.Column('external_reference', sa.String(100), nullable=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('reconciled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_store_credit_ledger'))
    )
    op.create_index('ix_store_credit_ledger_customer_id', 'store_credit_ledger', ['customer_id'])
    op.create_index('ix_store_credit_ledger_shop_domain', 'store_credit_ledger', ['shop_domain'])
    op.create_index('ix_store_credit_ledger_external_reference', 'store_credit_ledger', ['external_reference'])
    op.create_index('ix_store_credit_ledger_reconciled_at', 'store_credit_ledger', ['reconciled_at'])
    op.create_index('ix_store_credit_ledger_created_at', 'store_credit_ledger', ['created_at'])

    op.create_table(
        'customer_memberships',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('tier_id', sa.Integer(), nullable=True),
        sa.Column('previous_tier_id', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('assignment_type', sa.String(20), nullable=False),
        sa.Column('assigned_by', sa.String(100), nullable=True),
        sa.Column('reason', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_customer_memberships'))
    )
    op.create_index('ix_customer_memberships_customer_id', 'customer_memberships', ['customer_id'])
    op.create_index('ix_customer_memberships_tier_id', 'customer_memberships', ['tier_id'])
    op.create_index('ix_customer_memberships_is_active', 'customer_memberships', ['is_active'])

    op.create_table(
        'tier_change_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('shop_domain', sa.String(255), nullable=False),
        sa.Column('from_tier_id', sa.Integer(), nullable=True),
        sa.Column('to_tier_id', sa.Integer(), nullable=True),
        sa.Column('from_tier_name', sa.String(50), nullable=True),
        sa.Column('to_tier_name', sa.String(50), nullable=True),
        sa.Column('change_type', sa.String(30), nullable=False),
        sa.Column('reason', sa.String(500), nullable=True),
        sa.Column('triggered_by', sa.String(100), nullable=True),
        sa.Column('extra_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_tier_change_logs'))
    )
    op.create_index('ix_tier_change_logs_customer_id', 'tier_change_logs', ['customer_id'])
    op.create_index('ix_tier_change_logs_shop_domain', 'tier_change_logs', ['shop_domain'])
    op.create_index('ix_tier_change_logs_created_at', 'tier_change_logs', ['created_at'])

    op.create_table(
        'cashback_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_domain', sa.String(255), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(50), nullable=False),
        sa.Column('order_amount', sa.Numeric(18, 6), nullable=False),
        sa.Column('eligible_amount', sa.Numeric(18, 6), nullable=False),
        sa.Column('cashback_amount', sa.Numeric(18, 6), nullable=False),
        sa.Column('cashback_percent', sa.Numeric(5, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('external_transaction_id', sa.String(100), nullable=True),
        sa.Column('sync_error', sa.Text(), nullable=True),
        sa.Column('ordered_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_cashback_transactions')),
        sa.UniqueConstraint('shop_domain', 'order_id', name='uq_shop_order_cashback')
    )
    op.create_index('ix_cashback_transactions_shop_domain', 'cashback_transactions', ['shop_domain'])
    op.create_index('ix_cashback_transactions_customer_id', 'cashback_transactions', ['customer_id'])
    op.create_index('ix_cashback_transactions_ordered_at', 'cashback_transactions', ['ordered_at'])

    op.create_table(
        'migration_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop_domain', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('total_records', sa.Integer(), nullable=True),
        sa.Column('processed_records', sa.Integer(), nullable=True),
        sa.Column('failed_records', sa.Integer(), nullable=True),
        sa.Column('skipped_records', sa.Integer(), nullable=True),
        sa.Column('errors', sa.JSON(), nullable=True),
        sa.Column('options', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_migration_jobs'))
    )
    op.create_index('ix_migration_jobs_shop_domain', 'migration_jobs', ['shop_domain'])
    op.create_index('ix_migration_jobs_status', 'migration_jobs', ['status'])


def downgrade():
    """Drop the cashback engine tables."""
    op.drop_index('ix_migration_jobs_status', table_name='migration_jobs')
    op.drop_index('ix_migration_jobs_shop_domain', table_name='migration_jobs')
    op.drop_table('migration_jobs')

    op.drop_index('ix_cashback_transactions_ordered_at', table_name='cashback_transactions')
    op.drop_index('ix_cashback_transactions_customer_id', table_name='cashback_transactions')
    op.drop_index('ix_cashback_transactions_shop_domain', table_name='cashback_transactions')
    op.drop_table('cashback_transactions')

    op.drop_index('ix_tier_change_logs_created_at', table_name='tier_change_logs')
    op.drop_index('ix_tier_change_logs_shop_domain', table_name='tier_change_logs')
    op.drop_index('ix_tier_change_logs_customer_id', table_name='tier_change_logs')
    op.drop_table('tier_change_logs')

    op.drop_index('ix_customer_memberships_is_active', table_name='customer_memberships')
    op.drop_index('ix_customer_memberships_tier_id', table_name='customer_memberships')
    op.drop_index('ix_customer_memberships_customer_id', table_name='customer_memberships')
    op.drop_table('customer_memberships')

    op.drop_index('ix_store_credit_ledger_created_at', table_name='store_credit_ledger')
    op.drop_index('ix_store_credit_ledger_reconciled_at', table_name='store_credit_ledger')
    op.drop_index('ix_store_credit_ledger_external_reference', table_name='store_credit_ledger')
    op.drop_index('ix_store_credit_ledger_shop_domain', table_name='store_credit_ledger')
    op.drop_index('ix_store_credit_ledger_customer_id', table_name='store_credit_ledger')
    op.drop_table('store_credit_ledger')

    op.drop_index('ix_tiers_shop_domain', table_name='tiers')
    op.drop_table('tiers')

    op.drop_index('ix_customers_shop_domain', table_name='customers')
    op.drop_table('customers')

    op.drop_index('ix_shops_shop_domain', table_name='shops')
    op.drop_table('shops')
