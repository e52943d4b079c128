"""
Invoicemonk - Void Reconciliation Service

Finds credit notes whose original invoice was never moved to VOIDED and
completes those voids from the credit note's own data. Run hourly by the
Celery beat schedule and on demand from the admin endpoint.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditEventType
from app.models.credit_note import CreditNote
from app.models.invoice import Invoice, InvoiceStatus, OPEN_STATUSES
from app.services.audit_service import ActorContext, AuditService

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Completes partially applied voids."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def find_orphaned_credit_notes(self, business_id: Optional[uuid.UUID] = None) -> List[CreditNote]:
        """Credit notes whose invoice is not voided."""
        query = (
            select(CreditNote)
            .join(Invoice, Invoice.id == CreditNote.original_invoice_id)
            .where(Invoice.status != InvoiceStatus.VOIDED)
            .order_by(CreditNote.issued_at)
        )
        if business_id:
            query = query.where(CreditNote.business_id == business_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def reconcile(
        self,
        business_id: Optional[uuid.UUID] = None,
        actor: Optional[ActorContext] = None,
    ) -> Dict[str, Any]:
        """
        Complete every orphaned void.

        Each invoice is flipped with a conditional UPDATE so a concurrent
        run, or a void that completed meanwhile, is skipped rather than
        audited twice.

        Returns:
            Summary with the reconciled and skipped credit note numbers
        """
        actor = actor or ActorContext.system()
        orphans = await self.find_orphaned_credit_notes(business_id)

        reconciled: List[str] = []
        skipped: List[str] = []

        for credit_note in orphans:
            invoice = await self.db.get(Invoice, credit_note.original_invoice_id, populate_existing=True)
            previous_status = invoice.status

            result = await self.db.execute(
                update(Invoice)
                .where(Invoice.id == credit_note.original_invoice_id, Invoice.status.in_(OPEN_STATUSES))
                .values(
                    status=InvoiceStatus.VOIDED,
                    voided_at=credit_note.issued_at,
                    voided_by=credit_note.issued_by,
                    void_reason=credit_note.reason,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.error(
                    f"Credit note {credit_note.credit_note_number} references invoice in status "
                    f"{previous_status.value}; manual review required"
                )
                skipped.append(credit_note.credit_note_number)
                continue

            await self.audit.log_event(
                AuditEventType.INVOICE_VOIDED,
                entity_type="invoice",
                entity_id=credit_note.original_invoice_id,
                business_id=credit_note.business_id,
                previous_state={"status": previous_status.value},
                new_state={
                    "status": InvoiceStatus.VOIDED.value,
                    "credit_note_id": str(credit_note.id),
                    "void_reason": credit_note.reason,
                },
                metadata={
                    "credit_note_number": credit_note.credit_note_number,
                    "credit_note_amount": str(credit_note.amount),
                    "reconciled": True,
                },
                **actor.audit_fields(),
            )
            await self.audit.log_event(
                AuditEventType.CREDIT_NOTE_RECONCILED,
                entity_type="credit_note",
                entity_id=credit_note.id,
                business_id=credit_note.business_id,
                metadata={
                    "invoice_id": str(credit_note.original_invoice_id),
                    "previous_invoice_status": previous_status.value,
                },
                **actor.audit_fields(),
            )
            await self.db.commit()

            logger.warning(
                f"Reconciled orphaned credit note {credit_note.credit_note_number}: "
                f"invoice {previous_status.value} -> voided"
            )
            reconciled.append(credit_note.credit_note_number)

        return {
            "found": len(orphans),
            "reconciled": reconciled,
            "skipped": skipped,
        }
