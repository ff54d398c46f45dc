"""
Order history import API.

Start, inspect and cancel migration jobs that backfill cashback from a
shop's paid orders.
"""
from flask import Blueprint, request, jsonify, current_app

from . import get_shop, get_pagination
from ..services.migration_service import MigrationService


migrations_bp = Blueprint('migrations', __name__)


@migrations_bp.route('', methods=['POST'])
def start_migration():
    """
    Start an import job.

    Request body:
    {
        "start_date": "2024-01-01",  # optional - only orders created on or after
        "end_date": "2024-12-31",    # optional - only orders created on or before
        "batch_size": 250,           # optional - orders per page (max 250)
        "update_tiers": true         # optional - re-evaluate tiers (default true)
    }

    The job runs in the background; poll GET /api/migrations/<id>.
    """
    shop = get_shop()
    data = request.get_json(silent=True) or {}

    service = MigrationService(shop.shop_domain)
    job = service.start_job(
        start_date=data.get('start_date'),
        batch_size=data.get('batch_size'),
        end_date=data.get('end_date'),
        update_tiers=data.get('update_tiers', True),
    )
    job = service.launch_job(current_app._get_current_object(), job.id)

    current_app.logger.info(f'Migration job {job.id} launched for {shop.shop_domain}')
    return jsonify({'success': True, 'job': job.to_dict()}), 202


@migrations_bp.route('', methods=['GET'])
def list_migrations():
    """List import jobs, newest first."""
    shop = get_shop()
    limit, offset = get_pagination(default_limit=20)

    jobs = MigrationService(shop.shop_domain).list_jobs(limit=limit, offset=offset)
    return jsonify({'jobs': [j.to_dict() for j in jobs], 'limit': limit, 'offset': offset})


@migrations_bp.route('/<int:job_id>', methods=['GET'])
def get_migration(job_id):
    """Job status and progress."""
    shop = get_shop()
    job = MigrationService(shop.shop_domain).get_job(job_id)
    return jsonify({'job': job.to_dict()})


@migrations_bp.route('/<int:job_id>/cancel', methods=['POST'])
def cancel_migration(job_id):
    """Cancel a pending or running job; it stops after the current page."""
    shop = get_shop()
    job = MigrationService(shop.shop_domain).cancel_job(job_id)
    return jsonify({'success': True, 'job': job.to_dict()})
