"""
Historical order import job.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class MigrationStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


TERMINAL_STATUSES = (
    MigrationStatus.COMPLETED.value,
    MigrationStatus.FAILED.value,
    MigrationStatus.CANCELLED.value,
)


class MigrationJob(db.Model):
    """
    Progress record for one backfill of a shop's order history.

    Counters are written once per page, guarded by status='processing', so
    a cancelled or failed job is never moved back.
    """
    __tablename__ = 'migration_jobs'

    id = db.Column(db.Integer, primary_key=True)
    shop_domain = db.Column(db.String(255), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=MigrationStatus.PENDING.value, index=True)

    total_records = db.Column(db.Integer, default=0)
    processed_records = db.Column(db.Integer, default=0)
    failed_records = db.Column(db.Integer, default=0)
    skipped_records = db.Column(db.Integer, default=0)

    errors = db.Column(db.JSON, default=list)   # [{'order_id': ..., 'error': ...}]
    options = db.Column(db.JSON, default=dict)  # {'start_date': ..., 'batch_size': ...}

    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<MigrationJob {self.id} {self.status}>'

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress_percent(self) -> float:
        if not self.total_records:
            return 0.0
        done = (self.processed_records or 0) + (self.failed_records or 0) + (self.skipped_records or 0)
        return round(min(100.0, done * 100.0 / self.total_records), 1)

    def to_dict(self):
        return {
            'id': self.id,
            'shop_domain': self.shop_domain,
            'status': self.status,
            'total_records': self.total_records or 0,
            'processed_records': self.processed_records or 0,
            'failed_records': self.failed_records or 0,
            'skipped_records': self.skipped_records or 0,
            'progress_percent': self.progress_percent,
            'errors': self.errors or [],
            'options': self.options or {},
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
