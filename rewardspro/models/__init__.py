"""
Database models for the RewardsPro cashback engine.
Store credit ledger, spending tiers, and order history import.
"""
from .shop import Shop
from .customer import Customer
from .ledger import LedgerEntry, LedgerEntryType, LedgerSource, EARNING_ENTRY_TYPES
from .tier import Tier, EvaluationPeriod
from .membership import (
    CustomerMembership,
    TierChangeLog,
    AssignmentType,
    TierChangeType,
    PINNED_ASSIGNMENT_TYPES,
)
from .transaction import CashbackTransaction, TransactionStatus
from .migration_job import MigrationJob, MigrationStatus, TERMINAL_STATUSES

__all__ = [
    'Shop',
    'Customer',
    'LedgerEntry',
    'LedgerEntryType',
    'LedgerSource',
    'EARNING_ENTRY_TYPES',
    'Tier',
    'EvaluationPeriod',
    'CustomerMembership',
    'TierChangeLog',
    'AssignmentType',
    'TierChangeType',
    'PINNED_ASSIGNMENT_TYPES',
    'CashbackTransaction',
    'TransactionStatus',
    'MigrationJob',
    'MigrationStatus',
    'TERMINAL_STATUSES',
]
