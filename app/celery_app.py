"""
Invoicemonk - Celery Configuration

Background task queue for the recurring integrity jobs.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

# Create Celery app
celery_app = Celery(
    'invoicemonk',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['app.tasks.celery_tasks'],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=600,  # 10 minutes max
    task_soft_time_limit=540,

    # Result settings
    result_expires=86400,  # 24 hours

    # Worker settings
    worker_prefetch_multiplier=1,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Complete voids that created a credit note but never moved the invoice
        'reconcile-orphaned-credit-notes': {
            'task': 'app.tasks.celery_tasks.reconcile_orphaned_credit_notes_task',
            'schedule': settings.reconciliation_interval_minutes * 60.0,
        },

        # Walk every business audit chain once a day
        'verify-audit-chains-daily': {
            'task': 'app.tasks.celery_tasks.verify_audit_chains_task',
            'schedule': crontab(hour=2, minute=30),
        },
    },

    task_routes={
        'app.tasks.celery_tasks.reconcile_*': {'queue': 'integrity'},
        'app.tasks.celery_tasks.verify_*': {'queue': 'integrity'},
    },
)


def get_celery_app() -> Celery:
    """Get the Celery application instance."""
    return celery_app
