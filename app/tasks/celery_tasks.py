"""
Invoicemonk - Celery Tasks

Background tasks for scheduled integrity operations.
"""

import asyncio
import logging
from typing import Any, Dict

from celery import shared_task

from app.database import async_session_maker

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ===========================================
# VOID RECONCILIATION
# ===========================================

@shared_task(name='app.tasks.celery_tasks.reconcile_orphaned_credit_notes_task')
def reconcile_orphaned_credit_notes_task() -> Dict[str, Any]:
    """Complete voids whose credit note exists but whose invoice is still open."""
    return run_async(_reconcile_orphaned_credit_notes())


async def _reconcile_orphaned_credit_notes() -> Dict[str, Any]:
    from app.services.reconciliation_service import ReconciliationService

    async with async_session_maker() as db:
        summary = await ReconciliationService(db).reconcile()

    if summary["found"]:
        logger.warning(
            f"Reconciliation found {summary['found']} orphaned credit notes, "
            f"completed {len(summary['reconciled'])}"
        )
    return summary


# ===========================================
# AUDIT CHAIN VERIFICATION
# ===========================================

@shared_task(name='app.tasks.celery_tasks.verify_audit_chains_task')
def verify_audit_chains_task() -> Dict[str, Any]:
    """Recompute the audit hash chain of every business."""
    return run_async(_verify_audit_chains())


async def _verify_audit_chains() -> Dict[str, Any]:
    from sqlalchemy import select

    from app.models.business import Business
    from app.services.audit_service import AuditService

    async with async_session_maker() as db:
        result = await db.execute(select(Business.id))
        business_ids = [None] + list(result.scalars().all())

        audit = AuditService(db)
        broken = []
        for business_id in business_ids:
            is_valid, discrepancies = await audit.verify_chain(business_id)
            if not is_valid:
                broken.append({
                    "business_id": str(business_id) if business_id else None,
                    "discrepancies": len(discrepancies),
                })

    logger.info(f"Verified {len(business_ids)} audit chains, {len(broken)} broken")
    return {"checked": len(business_ids), "broken": broken}
