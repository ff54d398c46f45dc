"""
Migration / Import Pipeline.

Backfills cashback from a shop's historical paid orders.

Job lifecycle:
    pending -> processing -> completed | failed | cancelled

Every status change out of processing, and every per-page progress write,
is an UPDATE guarded by status='processing'. A job cancelled mid-run keeps
the counts of the pages it finished and is never moved back to processing.

Recording goes through TransactionRecorder, so a rerun over orders that
were already imported never credits twice. Crashed jobs are not resumed;
operators start a new job.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
from flask import current_app
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..extensions import db
from ..models.ledger import LedgerEntryType, LedgerSource
from ..models.migration_job import MigrationJob, MigrationStatus, TERMINAL_STATUSES
from ..utils.exceptions import (
    DuplicateError,
    ExternalServiceError,
    FeedUnavailableError,
    InvalidStatusTransitionError,
    MigrationJobNotFoundError,
    PaymentDataMissingError,
    ValidationError,
)
from .payment_analyzer import breakdown_from_order
from .shopify_client import MAX_PAGE_SIZE, OrderFeed, ShopifyClient
from .tier_catalog import TierCatalog
from .tier_evaluator import TierEvaluator
from .transaction_recorder import TransactionRecorder

logger = logging.getLogger(__name__)

PROCESSED = 'processed'
SKIPPED = 'skipped'
FAILED = 'failed'


class MigrationService:
    """
    Historical order import for one shop.

    Usage:
        service = MigrationService(shop_domain)
        job = service.start_job(start_date='2024-01-01')
        service.run_job(job.id, ShopifyClient(shop_domain))
    """

    def __init__(self, shop_domain: str):
        self.shop_domain = shop_domain
        self.recorder = TransactionRecorder(shop_domain)

    # ==================== Job management ====================

    def start_job(
        self,
        start_date: Optional[str] = None,
        batch_size: Optional[int] = None,
        end_date: Optional[str] = None,
        update_tiers: bool = True,
    ) -> MigrationJob:
        """
        Create a pending job. Only one job per shop may be pending or processing.

        Args:
            start_date: ISO date; import orders created on or after it
            batch_size: Orders per feed page
            end_date: ISO date; import orders created on or before it
            update_tiers: Evaluate tiers as orders land and once more for
                every customer when the import completes
        """
        options = {
            'start_date': self._validate_date(start_date, 'start_date'),
            'end_date': self._validate_date(end_date, 'end_date'),
            'batch_size': self._validate_batch_size(batch_size),
            'update_tiers': bool(update_tiers),
        }
        if options['start_date'] and options['end_date'] and options['end_date'] < options['start_date']:
            raise ValidationError('end_date must not be before start_date', 'end_date')

        active = MigrationJob.query.filter(
            MigrationJob.shop_domain == self.shop_domain,
            MigrationJob.status.in_([MigrationStatus.PENDING.value, MigrationStatus.PROCESSING.value]),
        ).first()
        if active:
            raise DuplicateError('Migration job', f'status {active.status} (job {active.id})')

        job = MigrationJob(
            shop_domain=self.shop_domain,
            status=MigrationStatus.PENDING.value,
            options=options,
            errors=[],
        )
        db.session.add(job)
        db.session.commit()

        logger.info(f"Created migration job {job.id} for {self.shop_domain}: {options}")
        return job

    def get_job(self, job_id: int) -> MigrationJob:
        job = MigrationJob.query.filter_by(id=job_id, shop_domain=self.shop_domain).first()
        if not job:
            raise MigrationJobNotFoundError(job_id)
        return job

    def list_jobs(self, limit: int = 20, offset: int = 0) -> List[MigrationJob]:
        return MigrationJob.query.filter_by(
            shop_domain=self.shop_domain
        ).order_by(
            MigrationJob.created_at.desc(), MigrationJob.id.desc()
        ).offset(offset).limit(limit).all()

    def cancel_job(self, job_id: int) -> MigrationJob:
        """Cancel a pending or processing job. The run loop stops after its current page."""
        job = self.get_job(job_id)
        if job.status in TERMINAL_STATUSES:
            raise InvalidStatusTransitionError('migration job', job.status, MigrationStatus.CANCELLED.value)

        updated = MigrationJob.query.filter(
            MigrationJob.id == job_id,
            MigrationJob.status.in_([MigrationStatus.PENDING.value, MigrationStatus.PROCESSING.value]),
        ).update({
            'status': MigrationStatus.CANCELLED.value,
            'completed_at': datetime.utcnow(),
        }, synchronize_session=False)
        db.session.commit()

        job = self._reload(job_id)
        if not updated:
            raise InvalidStatusTransitionError('migration job', job.status, MigrationStatus.CANCELLED.value)

        logger.info(f"Cancelled migration job {job_id} for {self.shop_domain}")
        return job

    def launch_job(self, app, job_id: int, feed: Optional[OrderFeed] = None) -> MigrationJob:
        """
        Run a job in the background scheduler, or inline when
        MIGRATION_RUN_INLINE is set.
        """
        if app.config.get('MIGRATION_RUN_INLINE'):
            return self.run_job(job_id, feed)

        from ..utils.scheduler import run_in_background
        run_in_background(_run_job_in_app_context, app, self.shop_domain, job_id)
        return self.get_job(job_id)

    # ==================== Pipeline ====================

    def run_job(self, job_id: int, feed: Optional[OrderFeed] = None) -> MigrationJob:
        """
        Run a pending job to completion, cancellation or failure.

        Args:
            job_id: Pending job
            feed: Order feed (defaults to the shop's ShopifyClient)

        Raises:
            InvalidStatusTransitionError: Job was not pending
        """
        job = self.get_job(job_id)

        started = MigrationJob.query.filter_by(
            id=job_id, status=MigrationStatus.PENDING.value
        ).update({
            'status': MigrationStatus.PROCESSING.value,
            'started_at': datetime.utcnow(),
        }, synchronize_session=False)
        db.session.commit()
        if not started:
            job = self._reload(job_id)
            raise InvalidStatusTransitionError('migration job', job.status, MigrationStatus.PROCESSING.value)

        options = job.options or {}
        start_date = options.get('start_date')
        end_date = options.get('end_date')
        update_tiers = options.get('update_tiers', True)
        batch_size = options.get('batch_size') or self._default_batch_size()
        max_errors = int(current_app.config.get('MIGRATION_MAX_ERRORS', 100))

        counters = {PROCESSED: 0, SKIPPED: 0, FAILED: 0}
        errors: List[Dict[str, Any]] = []

        logger.info(f"Migration job {job_id} started for {self.shop_domain} (batch size {batch_size})")

        try:
            # Fails fast when there is no tier to enroll customers in
            TierCatalog(self.shop_domain).floor_tier()

            if feed is None:
                feed = ShopifyClient(self.shop_domain)

            total = self._with_retry(feed.count_orders, created_after=start_date, created_before=end_date)
            MigrationJob.query.filter_by(
                id=job_id, status=MigrationStatus.PROCESSING.value
            ).update({'total_records': total}, synchronize_session=False)
            db.session.commit()

            cursor = None
            page_number = 0
            while True:
                page = self._with_retry(
                    feed.fetch_page, cursor, batch_size,
                    created_after=start_date, financial_status='paid', created_before=end_date
                )
                page_number += 1

                for status, order_id, error in self._process_page(job_id, page.orders, update_tiers):
                    counters[status] += 1
                    if status == FAILED and len(errors) < max_errors:
                        errors.append({'order_id': order_id, 'error': error})

                if not self._persist_progress(job_id, counters, errors):
                    logger.info(
                        f"Migration job {job_id} stopped after page {page_number}: "
                        f"no longer processing (cancelled)"
                    )
                    return self._reload(job_id)

                logger.info(
                    f"Migration job {job_id} page {page_number}: {len(page.orders)} orders, "
                    f"totals {counters}"
                )

                if not page.has_next_page:
                    break
                if not page.end_cursor or page.end_cursor == cursor:
                    logger.warning(f"Migration job {job_id}: feed reported more pages without a new cursor")
                    break
                cursor = page.end_cursor

            if update_tiers and counters[PROCESSED]:
                self._update_tiers(job_id)

            MigrationJob.query.filter_by(
                id=job_id, status=MigrationStatus.PROCESSING.value
            ).update({
                'status': MigrationStatus.COMPLETED.value,
                'completed_at': datetime.utcnow(),
            }, synchronize_session=False)
            db.session.commit()

            logger.info(f"Migration job {job_id} completed for {self.shop_domain}: {counters}")

        except Exception as e:
            db.session.rollback()
            logger.error(f"Migration job {job_id} failed for {self.shop_domain}: {e}")
            errors = errors[:max_errors - 1] if max_errors > 0 else []
            errors.append({'order_id': None, 'error': f'Job failed: {e}'})
            MigrationJob.query.filter_by(
                id=job_id, status=MigrationStatus.PROCESSING.value
            ).update({
                'status': MigrationStatus.FAILED.value,
                'processed_records': counters[PROCESSED],
                'failed_records': counters[FAILED],
                'skipped_records': counters[SKIPPED],
                'errors': errors,
                'completed_at': datetime.utcnow(),
            }, synchronize_session=False)
            db.session.commit()

        return self._reload(job_id)

    def _process_page(
        self, job_id: int, orders: List[Dict[str, Any]], update_tiers: bool = True
    ) -> List[Tuple[str, Any, Optional[str]]]:
        workers = int(current_app.config.get('MIGRATION_WORKERS', 1))
        if workers <= 1 or len(orders) <= 1:
            return [self._process_order(job_id, order, update_tiers) for order in orders]

        app = current_app._get_current_object()
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(
                lambda order: _process_order_in_app_context(app, self.shop_domain, job_id, order, update_tiers),
                orders
            ))

    def _process_order(
        self, job_id: int, order: Dict[str, Any], update_tiers: bool = True
    ) -> Tuple[str, Any, Optional[str]]:
        """Record one historical order. Returns (outcome, order_id, error)."""
        order_id = order.get('id')

        if not order.get('customer_id'):
            logger.info(f"Skipping order {order.get('name') or order_id}: no customer")
            return SKIPPED, order_id, None

        try:
            breakdown = breakdown_from_order(order)
            self.recorder.record(
                order_id=order_id,
                customer_ref=order['customer_id'],
                order_amount=breakdown.order_total,
                cashback_eligible_amount=breakdown.cashback_eligible_amount,
                email=order.get('email'),
                currency=order.get('currency') or 'USD',
                ordered_at=order.get('created_at'),
                entry_type=LedgerEntryType.INITIAL_IMPORT,
                source=LedgerSource.MIGRATION,
                triggered_by=f'migration:{job_id}',
                evaluate_tier=update_tiers,
            )
        except PaymentDataMissingError as e:
            logger.info(f"Skipping order {order_id}: {e.message}")
            return SKIPPED, order_id, None
        except Exception as e:
            db.session.rollback()
            logger.warning(f"Migration job {job_id}: order {order_id} failed: {e}")
            return FAILED, order_id, str(e)

        return PROCESSED, order_id, None

    def _update_tiers(self, job_id: int) -> Dict[str, Any]:
        """Re-evaluate every customer once the import has landed."""
        summary = TierEvaluator(self.shop_domain).evaluate_all(triggered_by=f'migration:{job_id}')
        logger.info(
            f"Migration job {job_id} tier update for {self.shop_domain}: "
            f"{summary['processed']} customers, {summary['upgraded']} up, "
            f"{summary['downgraded']} down, {len(summary['errors'])} errors"
        )
        return summary

    def _persist_progress(self, job_id: int, counters: Dict[str, int], errors: List[Dict[str, Any]]) -> bool:
        """Write counters if the job is still processing. False once it is not."""
        updated = MigrationJob.query.filter_by(
            id=job_id, status=MigrationStatus.PROCESSING.value
        ).update({
            'processed_records': counters[PROCESSED],
            'failed_records': counters[FAILED],
            'skipped_records': counters[SKIPPED],
            'errors': list(errors),
        }, synchronize_session=False)
        db.session.commit()
        return bool(updated)

    def _with_retry(self, func, *args, **kwargs):
        """Call the feed with bounded retries; FeedUnavailableError once they run out."""
        config = current_app.config
        attempts = int(config.get('FEED_MAX_RETRIES', 3))
        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=float(config.get('FEED_RETRY_WAIT_SECONDS', 1)),
                max=float(config.get('FEED_RETRY_MAX_WAIT_SECONDS', 10)),
            ),
            retry=retry_if_exception_type((ExternalServiceError, httpx.HTTPError)),
            before_sleep=lambda state: logger.warning(
                f"Order feed call failed (attempt {state.attempt_number}/{attempts}) "
                f"for {self.shop_domain}: {state.outcome.exception()}"
            ),
        )
        try:
            return retrying(func, *args, **kwargs)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise FeedUnavailableError(
                f"Order feed unavailable after {attempts} attempts: {last_error}",
                last_error,
            )

    # ==================== Helpers ====================

    def _reload(self, job_id: int) -> MigrationJob:
        db.session.expire_all()
        return self.get_job(job_id)

    def _default_batch_size(self) -> int:
        return min(int(current_app.config.get('MIGRATION_BATCH_SIZE', MAX_PAGE_SIZE)), MAX_PAGE_SIZE)

    def _validate_date(self, value, field: str) -> Optional[str]:
        if value in (None, ''):
            return None
        if isinstance(value, (date, datetime)):
            return value.isoformat()[:10]
        try:
            return date.fromisoformat(str(value)[:10]).isoformat()
        except ValueError:
            raise ValidationError(f'{field} must be an ISO date (YYYY-MM-DD)', field)

    def _validate_batch_size(self, batch_size) -> int:
        if batch_size in (None, ''):
            return self._default_batch_size()
        try:
            batch_size = int(batch_size)
        except (TypeError, ValueError):
            raise ValidationError('batch_size must be an integer', 'batch_size')
        if batch_size < 1 or batch_size > MAX_PAGE_SIZE:
            raise ValidationError(f'batch_size must be between 1 and {MAX_PAGE_SIZE}', 'batch_size')
        return batch_size


def _process_order_in_app_context(
    app, shop_domain: str, job_id: int, order: Dict[str, Any], update_tiers: bool = True
):
    """Worker entry point: each thread gets its own app context and session."""
    with app.app_context():
        return MigrationService(shop_domain)._process_order(job_id, order, update_tiers)


def _run_job_in_app_context(app, shop_domain: str, job_id: int):
    """Background entry point for launch_job."""
    with app.app_context():
        try:
            MigrationService(shop_domain).run_job(job_id)
        except InvalidStatusTransitionError as e:
            logger.warning(f"Migration job {job_id} not started: {e.message}")
