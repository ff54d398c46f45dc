"""
RewardsPro cashback engine
Flask application factory
"""
import os
import logging
from flask import Flask
from flask_cors import CORS

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()

    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Configure CORS - admin and storefront origins
    import re
    cors_origins = [
        'http://localhost:5173',
        'http://127.0.0.1:5173',
        'https://admin.shopify.com',
        re.compile(r'https://.*\.myshopify\.com'),
    ]
    CORS(app, origins=cors_origins, supports_credentials=True,
         allow_headers=['Content-Type', 'X-Shop-Domain', 'X-Staff-Email'])

    # Register blueprints
    register_blueprints(app)

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    # Initialize background scheduler (tier expirations, import jobs)
    from .utils.scheduler import init_scheduler
    init_scheduler(app)

    # Register error handlers
    register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'rewardspro'}

    logger.info(f'RewardsPro started ({config_name})')
    return app


def register_blueprints(app: Flask) -> None:
    """Register all API and webhook blueprints."""
    from .api.tiers import tiers_bp
    from .api.customers import customers_bp
    from .api.migrations import migrations_bp
    from .api.proxy import proxy_bp
    from .webhooks import order_lifecycle_bp

    app.register_blueprint(tiers_bp, url_prefix='/api/tiers')
    app.register_blueprint(customers_bp, url_prefix='/api/customers')
    app.register_blueprint(migrations_bp, url_prefix='/api/migrations')

    # Storefront app proxy
    app.register_blueprint(proxy_bp, url_prefix='/proxy')

    # Shopify webhooks
    app.register_blueprint(order_lifecycle_bp, url_prefix='/webhook')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from .utils.errors import bad_request, internal_error, not_found, rewards_error_response
    from .utils.exceptions import RewardsError

    @app.errorhandler(RewardsError)
    def handle_rewards_error(error):
        db.session.rollback()
        return rewards_error_response(error)

    @app.errorhandler(400)
    def handle_bad_request(error):
        return bad_request(str(error))

    @app.errorhandler(404)
    def handle_not_found(error):
        return not_found(str(error))

    @app.errorhandler(500)
    def handle_internal_error(error):
        db.session.rollback()
        return internal_error(details={'error': str(error)})
