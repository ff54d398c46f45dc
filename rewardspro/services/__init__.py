"""
Business logic services for the RewardsPro cashback engine.
"""
from .payment_analyzer import PaymentBreakdown, analyze_payment, breakdown_from_order
from .ledger_service import LedgerService, ledger_service
from .tier_catalog import TierCatalog
from .tier_evaluator import TierEvaluator, EvaluationResult
from .customer_service import CustomerService
from .transaction_recorder import TransactionRecorder, RecordResult
from .migration_service import MigrationService
from .shopify_client import ShopifyClient

__all__ = [
    'PaymentBreakdown',
    'analyze_payment',
    'breakdown_from_order',
    'LedgerService',
    'ledger_service',
    'TierCatalog',
    'TierEvaluator',
    'EvaluationResult',
    'CustomerService',
    'TransactionRecorder',
    'RecordResult',
    'MigrationService',
    'ShopifyClient',
]
