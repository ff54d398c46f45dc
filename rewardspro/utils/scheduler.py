"""
Background scheduler for automated tasks.

Handles:
- Expired manual/promotional tier assignments (daily at 1 AM UTC)
- One-off background jobs such as order history imports
"""
import os
import atexit
import logging
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler = None
_flask_app = None  # Store Flask app reference for context


def _create_scheduler() -> BackgroundScheduler:
    return BackgroundScheduler(
        timezone='UTC',
        job_defaults={
            'coalesce': True,  # Combine missed runs
            'max_instances': 1,  # Prevent concurrent runs
            'misfire_grace_time': 3600  # 1 hour grace period
        }
    )


def _ensure_started() -> BackgroundScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = _create_scheduler()
    if not _scheduler.running:
        _scheduler.start()
        atexit.register(shutdown_scheduler)
    return _scheduler


def init_scheduler(app):
    """
    Initialize the background scheduler.

    The daily cron job only runs in production or when ENABLE_SCHEDULER=true.
    One-off jobs (run_in_background) start the scheduler lazily either way.
    """
    global _flask_app

    # Store app reference for context in job functions
    _flask_app = app

    # Don't run scheduler in testing
    if app.config.get('TESTING'):
        logger.debug('[Scheduler] Disabled in testing mode')
        return

    if not (os.getenv('FLASK_ENV') == 'production' or os.getenv('ENABLE_SCHEDULER') == 'true'):
        logger.info('[Scheduler] Cron jobs disabled (set FLASK_ENV=production or ENABLE_SCHEDULER=true)')
        return

    # Prevent multiple scheduler instances (important for gunicorn workers)
    if os.getenv('SCHEDULER_RUNNING') == 'true':
        logger.info('[Scheduler] Already running in another process')
        return

    scheduler = _ensure_started()

    # Tier expirations - Daily at 1 AM UTC
    scheduler.add_job(
        run_membership_expirations,
        trigger=CronTrigger(hour=1, minute=0),
        id='membership_expirations',
        name='Revert expired manual/promotional tiers',
        replace_existing=True
    )
    os.environ['SCHEDULER_RUNNING'] = 'true'

    logger.info('[Scheduler] Started: membership expirations daily at 1:00 UTC')


def run_in_background(func, *args):
    """Run func(*args) once, as soon as possible, on the scheduler's thread pool."""
    scheduler = _ensure_started()
    job = scheduler.add_job(
        func,
        trigger=DateTrigger(run_date=datetime.utcnow(), timezone='UTC'),
        args=list(args),
        misfire_grace_time=None,
    )
    logger.info(f'[Scheduler] Queued background job {job.id} ({getattr(func, "__name__", func)})')
    return job


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info('[Scheduler] Shutdown complete')


def run_membership_expirations():
    """
    Revert expired manual/promotional tier assignments for all active shops.
    Runs daily at 1 AM UTC.
    """
    global _flask_app

    if not _flask_app:
        logger.error('[Scheduler] Flask app not initialized')
        return

    logger.info('[Scheduler] Processing membership expirations...')

    with _flask_app.app_context():
        from ..models.shop import Shop
        from ..services.tier_evaluator import TierEvaluator

        shops = Shop.query.filter_by(is_active=True).all()
        total_reverted = 0

        for shop in shops:
            try:
                result = TierEvaluator(shop.shop_domain).process_expired_memberships()
                total_reverted += result['reverted']
            except Exception as e:
                logger.error(f'[Scheduler] Expirations failed for {shop.shop_domain}: {e}')

        logger.info(f'[Scheduler] Membership expirations complete: {total_reverted} reverted')
