"""
Invoicemonk - Background Tasks Package

Celery background tasks.
"""

from app.tasks.celery_tasks import (
    reconcile_orphaned_credit_notes_task,
    verify_audit_chains_task,
)

__all__ = [
    "reconcile_orphaned_credit_notes_task",
    "verify_audit_chains_task",
]
