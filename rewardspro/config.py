"""
Configuration management for the RewardsPro cashback engine.
"""
import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Shopify Admin API (credentials are stored per shop)
    SHOPIFY_API_VERSION = os.getenv('SHOPIFY_API_VERSION', '2025-01')
    SHOPIFY_TIMEOUT_SECONDS = float(os.getenv('SHOPIFY_TIMEOUT_SECONDS', '30'))

    # Order feed retries (per page fetch)
    FEED_MAX_RETRIES = int(os.getenv('FEED_MAX_RETRIES', '3'))
    FEED_RETRY_WAIT_SECONDS = float(os.getenv('FEED_RETRY_WAIT_SECONDS', '1'))
    FEED_RETRY_MAX_WAIT_SECONDS = float(os.getenv('FEED_RETRY_MAX_WAIT_SECONDS', '10'))

    # Migration / import pipeline
    MIGRATION_BATCH_SIZE = int(os.getenv('MIGRATION_BATCH_SIZE', '250'))
    MIGRATION_MAX_ERRORS = int(os.getenv('MIGRATION_MAX_ERRORS', '100'))
    MIGRATION_WORKERS = int(os.getenv('MIGRATION_WORKERS', '1'))
    MIGRATION_RUN_INLINE = False

    # Used only if a customer has no active tier when an order is recorded
    DEFAULT_CASHBACK_PERCENT = Decimal(os.getenv('DEFAULT_CASHBACK_PERCENT', '1'))


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///rewardspro_dev.db'  # SQLite fallback for local dev
    )


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False

    _db_url = os.getenv('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # SQLAlchemy requires postgresql:// not postgres://
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 5,
        'pool_recycle': 300,
        'pool_pre_ping': True,  # Verify connections before using
    }

    _secret_key = os.getenv('SECRET_KEY', '')

    @classmethod
    def validate_secret_key(cls) -> str:
        """
        Validate SECRET_KEY in production environment.

        Raises:
            RuntimeError: If SECRET_KEY is missing or too short
        """
        if not cls._secret_key:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable is not set!\n"
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        if len(cls._secret_key) < 32:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY is too short (minimum 32 characters required)!"
            )

        return cls._secret_key

    SECRET_KEY = _secret_key  # Will be validated at app startup


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # No sleeping between feed retries in tests
    FEED_RETRY_WAIT_SECONDS = 0
    FEED_RETRY_MAX_WAIT_SECONDS = 0

    # Migration jobs run synchronously inside the request
    MIGRATION_RUN_INLINE = True


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config_name: str = 'development') -> None:
    """
    Validate configuration before app startup.

    Raises:
        RuntimeError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_secret_key()
